from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .errors import RestartError
from .events import EventKind, LifecycleEvent
from .metrics import (
    LIFECYCLE_EVENTS_TOTAL,
    RESTARTS_TOTAL,
    SESSION_READY,
    STATE_TRANSITIONS_TOTAL,
)
from .transport import SessionTransport


LOGGER = logging.getLogger("wagateway.state")


class SessionState(str, Enum):
    INITIALIZING = "INITIALIZING"
    QR_PENDING = "QR_PENDING"
    AUTHENTICATED = "AUTHENTICATED"
    CONNECTED = "CONNECTED"
    LOADING = "LOADING"
    AUTH_FAILURE = "AUTH_FAILURE"
    DISCONNECTED = "DISCONNECTED"
    ERROR = "ERROR"
    RESTARTING = "RESTARTING"


DISPATCH_STATES = frozenset({SessionState.CONNECTED, SessionState.AUTHENTICATED})

QRCallback = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Point-in-time copy of the session state."""

    state: SessionState
    ready: bool
    generation: int
    changed_at: float
    last_event: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def dispatch_allowed(self) -> bool:
        return self.ready and self.state in DISPATCH_STATES

    def to_payload(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "ready": self.ready,
            "changed_at": int(self.changed_at * 1000),
            "last_event": self.last_event,
            "last_error": self.last_error,
        }


class SessionStateMachine:
    """Single source of truth for the WhatsApp session lifecycle.

    Lifecycle events are applied one at a time under ``_lock`` (FIFO, so in
    arrival order). Grace and restart timers are fire-once tasks that capture
    what they expect at scheduling time and do nothing if that no longer
    holds when they wake up.
    """

    def __init__(
        self,
        transport: SessionTransport,
        *,
        on_qr: Optional[QRCallback] = None,
        auth_grace: float = 5.0,
        loading_grace: float = 3.0,
        restart_delay: float = 2.0,
    ) -> None:
        self._transport = transport
        self._on_qr = on_qr
        self._auth_grace = auth_grace
        self._loading_grace = loading_grace
        self._restart_delay = restart_delay
        self._state = SessionState.INITIALIZING
        self._ready = False
        self._generation = 0
        self._restart_serial = 0
        self._changed_at = time.time()
        self._last_event: Optional[str] = None
        self._last_error: Optional[str] = None
        self._lock = asyncio.Lock()
        self._timers: set[asyncio.Task[Any]] = set()
        self._started = False
        SESSION_READY.set(0)

    def current_state(self) -> SessionState:
        return self._state

    def is_ready(self) -> bool:
        return self._ready

    def can_dispatch(self) -> bool:
        return self._ready and self._state in DISPATCH_STATES

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            ready=self._ready,
            generation=self._generation,
            changed_at=self._changed_at,
            last_event=self._last_event,
            last_error=self._last_error,
        )

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._transport.subscribe(self.handle_event)
        await self._initialize_transport()

    async def shutdown(self) -> None:
        timers = list(self._timers)
        for task in timers:
            task.cancel()
        for task in timers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._timers.clear()
        await self._transport.aclose()

    async def handle_event(self, event: LifecycleEvent) -> None:
        async with self._lock:
            self._apply(event)
        if event.kind is EventKind.QR and event.qr and self._on_qr is not None:
            try:
                self._on_qr(event.qr)
            except Exception:
                LOGGER.exception("event=qr_render_failed")

    def restart_serial(self) -> int:
        return self._restart_serial

    async def mark_transport_fault(
        self, detail: str, *, restart_serial: Optional[int] = None
    ) -> None:
        """Demote the session to ERROR.

        When ``restart_serial`` is given the fault only applies if no restart
        has been requested since that serial was read.
        """

        async with self._lock:
            if restart_serial is not None and restart_serial != self._restart_serial:
                LOGGER.info(
                    "event=fault_stale serial=%s current=%s detail=%s",
                    restart_serial,
                    self._restart_serial,
                    detail,
                )
                return
            self._apply(LifecycleEvent(EventKind.TRANSPORT_FAULT, detail=detail))

    async def request_restart(self) -> None:
        """Tear the transport down and re-initialize it after ``restart_delay``.

        Safe to call repeatedly; each call supersedes the re-initialize timer
        armed by the previous one.
        """

        async with self._lock:
            self._apply(LifecycleEvent(EventKind.RESTART))
            self._restart_serial += 1
            serial = self._restart_serial

        try:
            await self._transport.destroy()
        except Exception as exc:
            RESTARTS_TOTAL.labels("failed").inc()
            LOGGER.exception("event=restart_failed stage=destroy")
            async with self._lock:
                self._last_error = str(exc) or exc.__class__.__name__
            raise RestartError(str(exc) or exc.__class__.__name__) from exc

        RESTARTS_TOTAL.labels("scheduled").inc()
        LOGGER.info(
            "event=restart_scheduled delay=%s serial=%s", self._restart_delay, serial
        )
        self._schedule(
            self._restart_delay, "restart", lambda: self._reinitialize(serial)
        )

    def _apply(self, event: LifecycleEvent) -> None:
        kind = event.kind
        LIFECYCLE_EVENTS_TOTAL.labels(kind.value).inc()
        self._last_event = kind.value

        if kind is EventKind.QR:
            self._transition(SessionState.QR_PENDING, ready=False, reason="qr")
        elif kind is EventKind.AUTHENTICATED:
            self._transition(SessionState.AUTHENTICATED, reason="authenticated")
            self._arm_promotion(self._auth_grace, "auth_grace")
        elif kind is EventKind.READY:
            self._last_error = None
            self._transition(SessionState.CONNECTED, ready=True, reason="ready")
        elif kind is EventKind.AUTH_FAILURE:
            self._last_error = event.detail or "auth_failure"
            self._transition(SessionState.AUTH_FAILURE, ready=False, reason="auth_failure")
        elif kind is EventKind.DISCONNECTED:
            self._transition(
                SessionState.DISCONNECTED,
                ready=False,
                reason=event.detail or "disconnected",
            )
        elif kind is EventKind.LOADING:
            LOGGER.info(
                "event=loading_screen percent=%s message=%s", event.percent, event.detail
            )
            self._transition(SessionState.LOADING, reason="loading_screen")
            if event.percent == 100:
                self._arm_promotion(
                    self._loading_grace, "loading_grace", require_not_ready=True
                )
        elif kind is EventKind.TRANSPORT_FAULT:
            self._last_error = event.detail or "transport_fault"
            self._transition(SessionState.ERROR, ready=False, reason="transport_fault")
        elif kind is EventKind.RESTART:
            self._transition(SessionState.RESTARTING, ready=False, reason="restart_requested")

    def _transition(
        self,
        state: SessionState,
        *,
        ready: Optional[bool] = None,
        reason: str,
    ) -> None:
        previous = self._state
        self._state = state
        if ready is not None:
            self._ready = ready
        self._generation += 1
        self._changed_at = time.time()
        SESSION_READY.set(1 if self._ready else 0)
        if previous is not state:
            STATE_TRANSITIONS_TOTAL.labels(state.value).inc()
        LOGGER.info(
            "event=state_transition from=%s to=%s ready=%s reason=%s",
            previous.value,
            state.value,
            self._ready,
            reason,
        )

    def _arm_promotion(
        self, delay: float, reason: str, *, require_not_ready: bool = False
    ) -> None:
        expected_state = self._state
        expected_generation = self._generation

        async def _promote() -> None:
            async with self._lock:
                stale = (
                    self._state is not expected_state
                    or self._generation != expected_generation
                    or (require_not_ready and self._ready)
                )
                if stale:
                    LOGGER.info(
                        "event=timer_stale timer=%s expected=%s current=%s",
                        reason,
                        expected_state.value,
                        self._state.value,
                    )
                    return
                self._transition(SessionState.CONNECTED, ready=True, reason=reason)

        self._schedule(delay, reason, _promote)

    async def _reinitialize(self, serial: int) -> None:
        async with self._lock:
            if serial != self._restart_serial:
                LOGGER.info(
                    "event=timer_stale timer=restart serial=%s current=%s",
                    serial,
                    self._restart_serial,
                )
                return
            self._transition(SessionState.INITIALIZING, ready=False, reason="reinitialize")
        RESTARTS_TOTAL.labels("reinitialized").inc()
        await self._initialize_transport()

    async def _initialize_transport(self) -> None:
        try:
            await self._transport.initialize()
        except Exception as exc:
            LOGGER.exception("event=initialize_failed")
            async with self._lock:
                self._last_error = str(exc) or exc.__class__.__name__

    def _schedule(
        self, delay: float, name: str, action: Callable[[], Awaitable[None]]
    ) -> None:
        async def _run() -> None:
            await asyncio.sleep(delay)
            await action()

        task = asyncio.get_running_loop().create_task(_run(), name=f"wagateway-{name}")
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)


__all__ = [
    "DISPATCH_STATES",
    "SessionSnapshot",
    "SessionState",
    "SessionStateMachine",
]
