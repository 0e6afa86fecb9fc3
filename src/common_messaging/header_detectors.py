"""HeaderDetectors — derive extra outgoing headers from message content."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from .envelope import JsonValue, MessageEnvelope

    HeaderDetector = Callable[[MessageEnvelope], "Mapping[str, Any] | None"]

logger = logging.getLogger(__name__)


def deep_key_select(
    document: JsonValue,
    predicate: Callable[[dict[str, Any]], bool],
    parent_key: str = "",
) -> list[str]:
    """Return the paths of every mapping in *document* matching *predicate*.

    Paths are dotted for mapping keys and indexed for sequence items, e.g.
    ``a.b[2].c``. A matching root is reported as ``""``.
    """
    keys: list[str] = []
    if isinstance(document, dict):
        if predicate(document):
            keys.append(parent_key)
        for key, value in document.items():
            child = f"{parent_key}.{key}" if parent_key else str(key)
            keys.extend(deep_key_select(value, predicate, child))
    elif isinstance(document, list):
        for index, item in enumerate(document):
            keys.extend(deep_key_select(item, predicate, f"{parent_key}[{index}]"))
    return keys


def _is_remote(mapping: dict[str, Any]) -> bool:
    return mapping.get("type") == "remote"


def detect_remote_uris(envelope: MessageEnvelope) -> dict[str, Any]:
    """Flag documents embedding ``{"type": "remote", ...}`` resource references.

    Consumers can use ``remote_uris`` to find the fields to resolve without
    parsing the schema.
    """
    paths = deep_key_select(envelope.to_dict(), _is_remote)
    if not paths:
        return {}
    return {"has_remote_uris": True, "remote_uris": paths}


class HeaderDetectors:
    """Ordered pipeline of header detectors.

    Each detector receives the outgoing envelope and returns a patch that is
    merged into the headers; detectors run in registration order, so a
    later detector overwrites an earlier one on key collision.

    Usage::

        detectors = HeaderDetectors.with_defaults()

        @detectors.register
        def detect_language(envelope):
            return {"language": envelope.get("language")}
    """

    def __init__(self) -> None:
        self._detectors: list[HeaderDetector] = []

    @classmethod
    def with_defaults(cls) -> HeaderDetectors:
        """Return a pipeline holding the built-in detectors."""
        pipeline = cls()
        pipeline.register(detect_remote_uris)
        return pipeline

    def register(self, detector: HeaderDetector) -> HeaderDetector:
        """Append *detector* to the pipeline. Usable as a decorator."""
        self._detectors.append(detector)
        logger.debug(
            "Registered header detector %s",
            getattr(detector, "__name__", repr(detector)),
        )
        return detector

    @property
    def detectors(self) -> tuple[HeaderDetector, ...]:
        return tuple(self._detectors)

    def run_all(
        self,
        envelope: MessageEnvelope,
        base_headers: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Fold every detector's patch into a copy of *base_headers*."""
        headers = dict(base_headers or {})
        for detector in self._detectors:
            patch = detector(envelope)
            if patch:
                headers.update(patch)
        return headers

    def clear(self) -> None:
        """Remove all detectors (testing utility)."""
        self._detectors.clear()
