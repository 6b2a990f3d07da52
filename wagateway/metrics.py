from __future__ import annotations

from prometheus_client import Counter, Gauge


DISPATCH_TOTAL = Counter(
    "wagateway_dispatch_total",
    "Outbound message dispatch attempts grouped by outcome",
    labelnames=("outcome",),
)
LIFECYCLE_EVENTS_TOTAL = Counter(
    "wagateway_lifecycle_events_total",
    "Lifecycle events processed by the session state machine",
    labelnames=("event",),
)
STATE_TRANSITIONS_TOTAL = Counter(
    "wagateway_state_transitions_total",
    "Session state transitions grouped by target state",
    labelnames=("state",),
)
SESSION_READY = Gauge(
    "wagateway_session_ready",
    "Whether the WhatsApp session currently accepts dispatches",
)
RESTARTS_TOTAL = Counter(
    "wagateway_restarts_total",
    "Session restart requests grouped by result",
    labelnames=("result",),
)

__all__ = [
    "DISPATCH_TOTAL",
    "LIFECYCLE_EVENTS_TOTAL",
    "STATE_TRANSITIONS_TOTAL",
    "SESSION_READY",
    "RESTARTS_TOTAL",
]
