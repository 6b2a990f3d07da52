from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from .address import OutboundAddress
from .errors import (
    GatewayError,
    NotReadyError,
    RecipientInvalidError,
    RecipientUnregisteredError,
    TransportFault,
    UnknownDispatchError,
)
from .metrics import DISPATCH_TOTAL
from .state import SessionStateMachine
from .transport import SessionTransport, TransportError


LOGGER = logging.getLogger("wagateway.dispatch")


class OutcomeKind(str, Enum):
    SENT = "sent"
    NOT_READY = "not_ready"
    RECIPIENT_INVALID = "recipient_invalid"
    RECIPIENT_UNREGISTERED = "recipient_unregistered"
    TRANSPORT_FAULTED = "transport_faulted"
    UNKNOWN = "unknown"


# Structured codes reported by the sidecar, preferred over message matching.
_CODE_KINDS = {
    "chat_not_found": OutcomeKind.RECIPIENT_INVALID,
    "not_registered": OutcomeKind.RECIPIENT_UNREGISTERED,
    "phone_not_registered": OutcomeKind.RECIPIENT_UNREGISTERED,
    "evaluation_failed": OutcomeKind.TRANSPORT_FAULTED,
}

# Fallback: whatsapp-web.js error phrasing. Not a stable contract upstream.
_MESSAGE_KINDS = (
    ("chat not found", OutcomeKind.RECIPIENT_INVALID),
    ("phone number is not registered", OutcomeKind.RECIPIENT_UNREGISTERED),
    ("evaluation failed", OutcomeKind.TRANSPORT_FAULTED),
)


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    kind: OutcomeKind
    message_id: Optional[str] = None
    detail: Optional[str] = None
    state: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SENT

    def to_error(self) -> Optional[GatewayError]:
        if self.kind is OutcomeKind.SENT:
            return None
        if self.kind is OutcomeKind.NOT_READY:
            return NotReadyError(self.state or "UNKNOWN")
        if self.kind is OutcomeKind.RECIPIENT_INVALID:
            return RecipientInvalidError()
        if self.kind is OutcomeKind.RECIPIENT_UNREGISTERED:
            return RecipientUnregisteredError()
        if self.kind is OutcomeKind.TRANSPORT_FAULTED:
            return TransportFault()
        return UnknownDispatchError(self.detail or "")


def classify_failure(exc: BaseException) -> OutcomeKind:
    code = getattr(exc, "code", None) if isinstance(exc, TransportError) else None
    if code:
        kind = _CODE_KINDS.get(str(code).strip().lower())
        if kind is not None:
            return kind
    text = str(exc).lower()
    for needle, kind in _MESSAGE_KINDS:
        if needle in text:
            return kind
    return OutcomeKind.UNKNOWN


class DispatchCoordinator:
    """Readiness-gated, paced message sends with classified outcomes."""

    def __init__(
        self,
        session: SessionStateMachine,
        transport: SessionTransport,
        *,
        pacing_delay: float = 2.0,
        serialize: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session = session
        self._transport = transport
        self._pacing_delay = pacing_delay
        self._sleep = sleep
        self._send_lock: Optional[asyncio.Lock] = asyncio.Lock() if serialize else None

    @contextlib.asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        if self._send_lock is None:
            yield
            return
        async with self._send_lock:
            yield

    def _not_ready(self, address: OutboundAddress) -> DispatchOutcome:
        state = self._session.current_state().value
        LOGGER.warning(
            "event=dispatch_rejected to=%s state=%s ready=%s",
            address,
            state,
            self._session.is_ready(),
        )
        return self._record(DispatchOutcome(OutcomeKind.NOT_READY, state=state))

    @staticmethod
    def _record(outcome: DispatchOutcome) -> DispatchOutcome:
        DISPATCH_TOTAL.labels(outcome.kind.value).inc()
        return outcome

    async def dispatch(self, address: OutboundAddress, payload: str) -> DispatchOutcome:
        if not self._session.can_dispatch():
            return self._not_ready(address)

        async with self._slot():
            if self._pacing_delay > 0:
                await self._sleep(self._pacing_delay)
            if not self._session.can_dispatch():
                return self._not_ready(address)

            serial = self._session.restart_serial()
            try:
                sent = await self._transport.send_message(address.jid, payload)
            except Exception as exc:
                return await self._failed(address, exc, serial)

        LOGGER.info("event=dispatch_sent to=%s message_id=%s", address, sent.id)
        return self._record(DispatchOutcome(OutcomeKind.SENT, message_id=sent.id))

    async def _failed(
        self, address: OutboundAddress, exc: Exception, restart_serial: int
    ) -> DispatchOutcome:
        detail = str(exc) or exc.__class__.__name__
        kind = classify_failure(exc)
        if kind is OutcomeKind.UNKNOWN:
            LOGGER.exception("event=dispatch_failed to=%s", address)
        else:
            LOGGER.warning(
                "event=dispatch_failed to=%s outcome=%s detail=%s",
                address,
                kind.value,
                detail,
            )
        if kind is OutcomeKind.TRANSPORT_FAULTED:
            await self._session.mark_transport_fault(detail, restart_serial=restart_serial)
        return self._record(DispatchOutcome(kind, detail=detail))


__all__ = [
    "DispatchCoordinator",
    "DispatchOutcome",
    "OutcomeKind",
    "classify_failure",
]
