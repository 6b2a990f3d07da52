from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from .events import LifecycleEvent


LOGGER = logging.getLogger("wagateway.transport")

EventHandler = Callable[[LifecycleEvent], Awaitable[None]]


class TransportError(Exception):
    """Raised by a transport when the sidecar rejects or fails a call.

    ``code`` carries the sidecar's structured error code when it sent one;
    the message keeps the raw failure text.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class SentMessage:
    id: str


class SessionTransport(Protocol):
    def subscribe(self, handler: EventHandler) -> None: ...

    async def initialize(self) -> None: ...

    async def destroy(self) -> None: ...

    async def get_state(self) -> str: ...

    async def send_message(self, address: str, text: str) -> SentMessage: ...

    async def aclose(self) -> None: ...


def _extract_message_id(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    raw_id = body.get("id")
    if isinstance(raw_id, dict):
        raw_id = raw_id.get("_serialized") or raw_id.get("id")
    if raw_id is None:
        raw_id = body.get("message_id") or body.get("messageId")
    if raw_id is None:
        return None
    return str(raw_id)


class WawebTransport:
    """HTTP client for the whatsapp-web sidecar that owns the browser session.

    Lifecycle events travel the other way: the sidecar posts them to the
    gateway webhook, which hands them to :meth:`publish`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = (token or "").strip() or None
        self._http = client or httpx.AsyncClient(timeout=timeout)
        self._handler: Optional[EventHandler] = None

    def subscribe(self, handler: EventHandler) -> None:
        self._handler = handler

    async def publish(self, event: LifecycleEvent) -> None:
        if self._handler is None:
            LOGGER.warning("event=lifecycle_dropped kind=%s reason=no_subscriber", event.kind.value)
            return
        await self._handler(event)

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._token:
            headers["X-Internal-Token"] = self._token
        return headers

    async def _request(
        self, method: str, path: str, payload: Optional[dict[str, Any]] = None
    ) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = await self._http.request(
                method, url, json=payload, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            LOGGER.warning("event=waweb_unreachable path=%s error=%s", path, exc)
            raise TransportError(str(exc) or exc.__class__.__name__) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            code: Optional[str] = None
            message = response.text
            if isinstance(body, dict):
                error_value = body.get("error")
                if isinstance(error_value, dict):
                    code = error_value.get("code")
                    message = str(error_value.get("message") or message)
                else:
                    code = body.get("code")
                    message = str(body.get("message") or error_value or message)
            LOGGER.warning(
                "event=waweb_error path=%s status=%s code=%s",
                path,
                response.status_code,
                code,
            )
            raise TransportError(
                message or f"HTTP {response.status_code}",
                code=str(code) if code else None,
                status_code=response.status_code,
            )
        return body

    async def initialize(self) -> None:
        await self._request("POST", "/session/start")

    async def destroy(self) -> None:
        await self._request("POST", "/session/destroy")

    async def get_state(self) -> str:
        body = await self._request("GET", "/session/state")
        if isinstance(body, dict) and body.get("state"):
            return str(body["state"])
        raise TransportError("state_unavailable")

    async def send_message(self, address: str, text: str) -> SentMessage:
        body = await self._request("POST", "/send", {"to": address, "text": text})
        message_id = _extract_message_id(body)
        if not message_id:
            raise TransportError("missing_message_id")
        return SentMessage(id=message_id)

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = [
    "EventHandler",
    "SentMessage",
    "SessionTransport",
    "TransportError",
    "WawebTransport",
]
