"""
Conversation Engine - Errors
============================

Exception taxonomy shared by skills, the completion layer, and the orchestrator.

Skills catch these at their own boundary and return failure envelopes; only
the completion layer and configuration loading let them propagate.
"""

from typing import Optional


CAPACITY_MESSAGE = "The service is temporarily unavailable. Please try again in a moment."
GENERIC_FAILURE_MESSAGE = "I'm sorry, something went wrong on our side. Please try again later."


class EngineError(Exception):
    """Base class for all engine errors."""

    error_type = "engine"


class ValidationError(EngineError):
    """A submitted field value failed validation. Recoverable: re-prompt the field."""

    error_type = "validation"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class NotFoundError(EngineError):
    """An entity id or workflow id does not exist."""

    error_type = "not_found"

    def __init__(self, resource: str, identifier: Optional[str] = None):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found")


class CapacityError(EngineError):
    """Transient completion-service failure (rate limit, overload, timeout)."""

    error_type = "capacity"


class ConfigurationError(EngineError):
    """A required capability or setting is missing."""

    error_type = "configuration"


class EscalationSignal(EngineError):
    """Routing outcome that hands the session to a human."""

    error_type = "escalation"

    def __init__(self, role: str, reason: str = ""):
        super().__init__(f"Escalation requested by {role}: {reason}")
        self.role = role
        self.reason = reason


def user_message_for(error_type: Optional[str]) -> str:
    """Map an internal error type to the text shown to the end user."""
    if error_type == CapacityError.error_type:
        return CAPACITY_MESSAGE
    return GENERIC_FAILURE_MESSAGE
