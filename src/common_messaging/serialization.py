"""EnvelopeSerializer — JSON bytes to and from MessageEnvelope."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from .envelope import MessageEnvelope
from .exceptions import SerializationError

if TYPE_CHECKING:
    from .registry import TypeDescriptor


class EnvelopeSerializer:
    """Serialize envelopes to UTF-8 JSON and validate incoming bodies.

    Decoding always goes through :class:`MessageEnvelope`, so a decoded
    message has been validated against its schema with defaults applied.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding

    def serialize(self, envelope: MessageEnvelope) -> bytes:
        """Encode the envelope's document to JSON bytes."""
        try:
            return envelope.to_json().encode(self._encoding)
        except (TypeError, ValueError) as e:
            raise SerializationError(str(e)) from e

    def deserialize(self, raw: bytes, descriptor: TypeDescriptor) -> MessageEnvelope:
        """Decode JSON bytes into an envelope of type *descriptor*.

        Raises:
            SerializationError: If *raw* is not JSON in the expected encoding.
            ValidationError: If the document does not satisfy the schema.
        """
        try:
            document = json.loads(raw.decode(self._encoding))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SerializationError(
                f"Unable to decode {descriptor.content_type} message: {e}"
            ) from e
        return MessageEnvelope(descriptor, document)
