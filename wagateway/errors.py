from __future__ import annotations

from typing import Any, Optional


class GatewayError(Exception):
    """Base class for failures reported through the control API."""

    status_code: int = 500
    error: str = "internal_error"
    message: str = "internal error"

    def __init__(self, error: Optional[str] = None, message: Optional[str] = None) -> None:
        if error is not None:
            self.error = error
        if message is not None:
            self.message = message
        super().__init__(self.error)

    def to_payload(self) -> dict[str, Any]:
        return {"status": False, "message": self.message, "error": self.error}


class InvalidRequestError(GatewayError):
    status_code = 400
    error = "invalid_request"
    message = "invalid request"


class AddressError(InvalidRequestError, ValueError):
    """Raised when a recipient phone number cannot be normalized."""

    error = "invalid_number"
    message = "invalid phone number format"

    def __init__(self, reason: str = "invalid_length") -> None:
        super().__init__()
        self.reason = reason

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["reason"] = self.reason
        return payload


class AuthError(GatewayError):
    status_code = 401
    error = "secret_key_invalid"
    message = "invalid secret key"


class NotReadyError(GatewayError):
    status_code = 503
    error = "client_not_ready"

    def __init__(self, state: str) -> None:
        super().__init__(
            message=f"WhatsApp client is not ready. Status: {state}. Try again shortly."
        )
        self.state = state

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["state"] = self.state
        return payload


class RecipientError(GatewayError):
    status_code = 404
    error = "recipient_error"
    message = "recipient cannot receive messages"


class RecipientInvalidError(RecipientError):
    error = "recipient_invalid"
    message = "WhatsApp number is invalid or not registered"


class RecipientUnregisteredError(RecipientError):
    error = "recipient_unregistered"
    message = "WhatsApp number is not registered"


class TransportFault(GatewayError):
    status_code = 503
    error = "session_error"
    message = "WhatsApp session failed. Restart the client."


class UnknownDispatchError(GatewayError):
    status_code = 500
    error = "send_failed"
    message = "failed to send message"

    def __init__(self, detail: str) -> None:
        super().__init__()
        self.detail = detail

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["detail"] = self.detail
        return payload


class RestartError(GatewayError):
    status_code = 500
    error = "restart_failed"
    message = "failed to restart client"

    def __init__(self, detail: str) -> None:
        super().__init__()
        self.detail = detail

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["detail"] = self.detail
        return payload


__all__ = [
    "GatewayError",
    "InvalidRequestError",
    "AddressError",
    "AuthError",
    "NotReadyError",
    "RecipientError",
    "RecipientInvalidError",
    "RecipientUnregisteredError",
    "TransportFault",
    "UnknownDispatchError",
    "RestartError",
]
