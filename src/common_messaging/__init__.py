"""Schema-validated JSON messaging over a RabbitMQ headers exchange."""

from __future__ import annotations

from .config import MessagingConfig
from .connection import ConnectionManager
from .context import MessagingContext
from .envelope import JsonValue, MessageEnvelope
from .exceptions import (
    CommonMessagingError,
    ConfigurationError,
    InvalidArgumentError,
    MessagingConnectionError,
    NotFoundError,
    SerializationError,
    UndeliverableMessageError,
    UnknownOutcomeError,
    UnregisteredTypeError,
    ValidationError,
)
from .header_detectors import HeaderDetectors, deep_key_select, detect_remote_uris
from .outcome import Outcome
from .publisher import Publisher
from .registry import SchemaRegistry, TypeDescriptor
from .serialization import EnvelopeSerializer
from .subscriber import Delivery, Subscriber, default_on_exception

__all__ = [
    "CommonMessagingError",
    "ConfigurationError",
    "ConnectionManager",
    "Delivery",
    "EnvelopeSerializer",
    "HeaderDetectors",
    "InvalidArgumentError",
    "JsonValue",
    "MessageEnvelope",
    "MessagingConfig",
    "MessagingConnectionError",
    "MessagingContext",
    "NotFoundError",
    "Outcome",
    "Publisher",
    "SchemaRegistry",
    "SerializationError",
    "Subscriber",
    "TypeDescriptor",
    "UndeliverableMessageError",
    "UnknownOutcomeError",
    "UnregisteredTypeError",
    "ValidationError",
    "deep_key_select",
    "default_on_exception",
    "detect_remote_uris",
]
