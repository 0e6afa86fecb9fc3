"""Exceptions raised by common-messaging."""

from __future__ import annotations

from typing import Any


class CommonMessagingError(Exception):
    """Root exception for the common-messaging library."""


class ConfigurationError(CommonMessagingError):
    """Raised when connection configuration or a schema file is malformed."""


class MessagingConnectionError(CommonMessagingError):
    """Raised when connectivity to the message broker fails."""


class NotFoundError(CommonMessagingError):
    """Raised when a schema path or a broker exchange does not exist."""


class InvalidArgumentError(CommonMessagingError, ValueError):
    """Raised when a caller violates a precondition."""


class ValidationError(CommonMessagingError):
    """Raised when a document fails schema validation.

    Carries structured errors: ``{path: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


class SerializationError(CommonMessagingError):
    """Raised when a message body cannot be encoded or decoded as JSON."""


class UnregisteredTypeError(CommonMessagingError):
    """Raised when a content-type has no registered schema."""

    def __init__(self, content_type: str) -> None:
        self.content_type = content_type
        super().__init__(f"No schema registered for content-type {content_type!r}")


class UndeliverableMessageError(CommonMessagingError):
    """Raised when the broker negatively acknowledges or returns a publish."""

    def __init__(self, message: str, message_id: str | None = None) -> None:
        self.message_id = message_id
        super().__init__(message)


class UnknownOutcomeError(CommonMessagingError):
    """Raised when a message handler returns something other than an outcome.

    This is a programming error and is never routed to exception hooks.
    """

    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        super().__init__(f"Unknown outcome returned by message handler: {outcome!r}")
