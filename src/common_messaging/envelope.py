"""MessageEnvelope — immutable, schema-validated JSON document for transport."""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .registry import TypeDescriptor

JsonValue = Union[
    None, bool, int, float, str, list["JsonValue"], dict[str, "JsonValue"]
]

_MISSING = object()


def _stringify_keys(document: Any) -> Any:
    """Return *document* with top-level keys as strings; non-mappings pass through."""
    if isinstance(document, Mapping):
        return {str(key): value for key, value in document.items()}
    return document


class MessageEnvelope:
    """Wraps a JSON document validated against a :class:`TypeDescriptor`.

    Construction validates the document and applies schema defaults; the
    envelope owns a private copy and only hands out copies, so it cannot
    be changed after construction.

    Raises:
        ValidationError: If the document does not satisfy the schema.
    """

    __slots__ = ("_descriptor", "_document")

    def __init__(self, descriptor: TypeDescriptor, document: Any) -> None:
        self._descriptor = descriptor
        self._document: JsonValue = descriptor.validate(_stringify_keys(document))

    @property
    def descriptor(self) -> TypeDescriptor:
        return self._descriptor

    @property
    def content_type(self) -> str:
        return self._descriptor.content_type

    @property
    def type_name(self) -> str:
        return self._descriptor.type_name

    # ── Field access ─────────────────────────────────────────────

    def __getitem__(self, key: str) -> JsonValue:
        if not isinstance(self._document, dict):
            raise KeyError(key)
        return copy.deepcopy(self._document[str(key)])

    def get(self, key: str, default: Any = None) -> JsonValue:
        """Return a copy of field *key*, or *default* if it is absent."""
        if not isinstance(self._document, dict):
            return default
        value = self._document.get(str(key), _MISSING)
        return default if value is _MISSING else copy.deepcopy(value)

    def __contains__(self, key: object) -> bool:
        return isinstance(self._document, dict) and key in self._document

    def keys(self) -> list[str]:
        if not isinstance(self._document, dict):
            return []
        return list(self._document)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    # ── Rendering ────────────────────────────────────────────────

    def to_dict(self) -> JsonValue:
        """Return a deep copy of the underlying document."""
        return copy.deepcopy(self._document)

    def to_json(self) -> str:
        """Render the document as compact JSON."""
        return json.dumps(self._document, separators=(",", ":"), ensure_ascii=False)

    def __str__(self) -> str:
        return self.to_json()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MessageEnvelope):
            return NotImplemented
        return self._document == other._document

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        classification = self.get("classification")
        if isinstance(classification, list):
            pairs = ", ".join(
                f"{item.get('realm')}:{item.get('id')}"
                for item in classification
                if isinstance(item, dict)
            )
            return f"<{self.type_name} classification=[{pairs}]>"
        return f"<{self.type_name}>"
