"""Exceptions for helpmatch-messaging."""

from __future__ import annotations


class HelpMatchError(Exception):
    """Root exception for the help-request messaging layer."""


class ConfigurationError(HelpMatchError):
    """Raised when broker settings cannot be built from the environment."""


class MessagingError(HelpMatchError):
    """Base class for all messaging-related infrastructure errors."""


class MessagingConnectionError(MessagingError):
    """Raised when a broker channel is required but not available."""


class MessagingSerializationError(MessagingError):
    """Raised when message serialization or deserialization fails."""


class TopologyConflictError(MessagingError):
    """Raised when a queue already exists with incompatible arguments.

    Retrying with the same arguments fails identically, so callers should
    not retry.
    """

    def __init__(self, queue_name: str, reason: str = "") -> None:
        self.queue_name = queue_name
        message = f"Queue {queue_name!r} exists with incompatible arguments"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class PayloadValidationError(MessagingError):
    """Raised when a decoded payload does not match its registered event schema."""

    def __init__(self, event_name: str, errors: str) -> None:
        self.event_name = event_name
        self.errors = errors
        super().__init__(f"Invalid {event_name} payload: {errors}")
