"""WhatsApp session gateway microservice."""

from .api import create_app
from .state import SessionState, SessionStateMachine

__all__ = ["create_app", "SessionState", "SessionStateMachine"]
