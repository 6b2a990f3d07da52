from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ValidationError, field_validator
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from config import gateway_config

from .address import normalize_phone_number
from .dispatch import DispatchCoordinator
from .errors import AuthError, GatewayError, InvalidRequestError
from .events import LifecycleEvent
from .pairing import PairingRenderer
from .state import SessionState, SessionStateMachine
from .transport import WawebTransport


logger = logging.getLogger("wagateway.api")

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class SendMessageRequest(BaseModel):
    number: str
    message: str

    @field_validator("number", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("number")
    @classmethod
    def _require_number(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("value_required")
        return value

    @field_validator("message")
    @classmethod
    def _require_message(cls, value: str) -> str:
        if not value:
            raise ValueError("value_required")
        return value


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def _read_json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def create_app() -> FastAPI:
    cfg = gateway_config()
    transport = WawebTransport(
        cfg.waweb_url,
        token=cfg.waweb_token,
        timeout=cfg.http_timeout,
    )
    pairing = PairingRenderer()
    session = SessionStateMachine(
        transport,
        on_qr=pairing.render,
        auth_grace=cfg.auth_grace,
        loading_grace=cfg.loading_grace,
        restart_delay=cfg.restart_delay,
    )
    coordinator = DispatchCoordinator(
        session,
        transport,
        pacing_delay=cfg.send_pacing,
        serialize=cfg.serialize_sends,
    )

    app = FastAPI(title="wagateway")
    app.state.session = session
    app.state.transport = transport
    app.state.coordinator = coordinator
    app.state.pairing = pairing

    def _json(body: dict[str, Any], status_code: int = 200) -> JSONResponse:
        return JSONResponse(body, status_code=status_code, headers=dict(NO_STORE_HEADERS))

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        return _json(exc.to_payload(), status_code=exc.status_code)

    def _authenticate(request: Request, body: dict[str, Any], route: str) -> None:
        supplied = request.headers.get("x-secret-key") or body.get("secret_key")
        supplied = str(supplied).strip() if supplied else ""
        if not supplied:
            logger.warning("event=secret_key_missing route=%s", route)
            raise AuthError(
                "secret_key_required",
                "secret key required; use header x-secret-key or body secret_key",
            )
        expected = cfg.secret_key
        if not expected or not secrets.compare_digest(
            supplied.encode("utf-8"), expected.encode("utf-8")
        ):
            logger.warning("event=secret_key_invalid route=%s", route)
            raise AuthError()

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - wiring
        if not cfg.secret_key:
            logger.warning("SECRET_KEY is not configured; protected routes reject all calls")
        if not cfg.waweb_token and not cfg.secret_key:
            logger.warning(
                "WA_INTERNAL_TOKEN and SECRET_KEY are not configured; /webhook/waweb rejects all events"
            )
        await session.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - wiring
        await session.shutdown()

    @app.post("/send-message")
    async def send_message(request: Request):
        body = await _read_json_body(request)
        _authenticate(request, body, "/send-message")

        try:
            payload = SendMessageRequest(**body)
        except ValidationError as exc:
            raise InvalidRequestError(
                "missing_params", "number and message are required"
            ) from exc

        address = normalize_phone_number(payload.number, country_code=cfg.country_code)
        outcome = await coordinator.dispatch(address, payload.message)
        error = outcome.to_error()
        if error is not None:
            raise error

        return _json(
            {
                "status": True,
                "message": "message sent",
                "to": address.jid,
                "messageId": outcome.message_id,
            }
        )

    @app.get("/status")
    async def status(request: Request):
        body = await _read_json_body(request)
        _authenticate(request, body, "/status")

        snapshot = session.snapshot()
        client_state = snapshot.state.value
        if snapshot.ready:
            try:
                client_state = await transport.get_state()
            except Exception:
                logger.warning(
                    "event=live_state_failed fallback=%s", client_state, exc_info=True
                )
        return _json(
            {
                "status": True,
                "message": "WhatsApp API is running",
                "clientReady": snapshot.ready,
                "clientState": client_state,
                "timestamp": _utc_timestamp(),
            }
        )

    @app.get("/restart")
    async def restart(request: Request):
        body = await _read_json_body(request)
        _authenticate(request, body, "/restart")

        await session.request_restart()
        return _json({"status": True, "message": "WhatsApp client is restarting"})

    @app.get("/qr.png")
    async def qr_png(request: Request):
        body = await _read_json_body(request)
        _authenticate(request, body, "/qr.png")

        blob = pairing.latest_png
        if session.current_state() is not SessionState.QR_PENDING or blob is None:
            return _json(
                {"status": False, "message": "no pairing code", "error": "qr_not_available"},
                status_code=404,
            )
        return Response(content=blob, media_type="image/png", headers=dict(NO_STORE_HEADERS))

    def _webhook_authorized(request: Request) -> bool:
        # Without WA_INTERNAL_TOKEN the sidecar must present SECRET_KEY instead.
        if cfg.waweb_token:
            expected = cfg.waweb_token
            supplied = request.headers.get("X-Internal-Token", "")
        else:
            expected = cfg.secret_key
            supplied = request.headers.get("X-Internal-Token") or request.headers.get(
                "x-secret-key", ""
            )
        supplied = supplied.strip()
        if not expected or not supplied:
            return False
        return secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))

    @app.post("/webhook/waweb")
    async def waweb_webhook(request: Request):
        if not _webhook_authorized(request):
            logger.warning("event=webhook_unauthorized route=/webhook/waweb")
            return _json({"ok": False, "error": "unauthorized"}, status_code=401)

        body = await _read_json_body(request)
        try:
            event = LifecycleEvent.from_payload(body)
        except ValueError as exc:
            logger.warning("event=webhook_rejected reason=%s", exc)
            return _json({"ok": False, "error": str(exc)}, status_code=422)

        await transport.publish(event)
        snapshot = session.snapshot()
        return _json(
            {
                "ok": True,
                "event": event.kind.value,
                "state": snapshot.state.value,
                "ready": snapshot.ready,
            }
        )

    @app.get("/health")
    async def health():
        snapshot = session.snapshot()
        return {"ok": True, "ready": snapshot.ready, "state": snapshot.state.value}

    @app.get("/metrics")
    async def metrics():
        data = generate_latest()
        return PlainTextResponse(data.decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    return app


__all__ = ["create_app", "SendMessageRequest"]
