from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class EventKind(str, Enum):
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    LOADING = "loading_screen"
    TRANSPORT_FAULT = "transport_fault"
    RESTART = "restart"


# Kinds the state machine raises for itself; never accepted from the sidecar.
INTERNAL_KINDS = frozenset({EventKind.TRANSPORT_FAULT, EventKind.RESTART})

_ALIASES = {
    "wa_qr": EventKind.QR,
    "loading": EventKind.LOADING,
}


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    kind: EventKind
    percent: Optional[int] = None
    qr: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def qr_issued(cls, qr: str) -> "LifecycleEvent":
        return cls(EventKind.QR, qr=qr)

    @classmethod
    def loading(cls, percent: int, detail: Optional[str] = None) -> "LifecycleEvent":
        return cls(EventKind.LOADING, percent=percent, detail=detail)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "LifecycleEvent":
        """Build an event from a sidecar webhook body.

        Raises ``ValueError`` for unknown, internal or malformed events.
        """

        raw_event = str(payload.get("event") or "").strip().lower()
        if not raw_event:
            raise ValueError("invalid_event")
        kind = _ALIASES.get(raw_event)
        if kind is None:
            try:
                kind = EventKind(raw_event)
            except ValueError as exc:
                raise ValueError("unknown_event") from exc
        if kind in INTERNAL_KINDS:
            raise ValueError("internal_event")

        detail_value = payload.get("message") or payload.get("reason")
        detail = str(detail_value).strip() if detail_value is not None else None

        if kind is EventKind.QR:
            qr_value = str(payload.get("qr") or payload.get("code") or "").strip()
            if not qr_value:
                raise ValueError("invalid_qr")
            return cls(kind, qr=qr_value)

        if kind is EventKind.LOADING:
            try:
                percent = int(float(payload.get("percent")))  # type: ignore[arg-type]
            except (TypeError, ValueError) as exc:
                raise ValueError("invalid_percent") from exc
            if percent < 0 or percent > 100:
                raise ValueError("invalid_percent")
            return cls(kind, percent=percent, detail=detail or None)

        return cls(kind, detail=detail or None)


__all__ = ["EventKind", "LifecycleEvent", "INTERNAL_KINDS"]
