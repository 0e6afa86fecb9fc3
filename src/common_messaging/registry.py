"""SchemaRegistry — binds JSON-Schema files to type descriptors and content-types."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .config import DEFAULT_NAMESPACE
from .exceptions import (
    ConfigurationError,
    InvalidArgumentError,
    NotFoundError,
    UnregisteredTypeError,
)
from .validation import SchemaValidator

if TYPE_CHECKING:
    from os import PathLike

    from .envelope import MessageEnvelope

logger = logging.getLogger(__name__)

SCHEMA_SUFFIX = ".schema.json"

_WORD_BOUNDARY = re.compile(r"[./\\_\-]+")


def schema_name_from_path(path: Path, root: Path) -> str:
    """Return the dot-delimited schema name of *path* relative to *root*.

    ``root/ingestion/book/metadata/v2.schema.json`` → ``ingestion.book.metadata.v2``
    """
    relative = path.relative_to(root).as_posix()
    if relative.endswith(SCHEMA_SUFFIX):
        relative = relative[: -len(SCHEMA_SUFFIX)]
    return relative.replace("/", ".")


def type_name_from_schema_name(schema_name: str) -> str:
    """Camel-case a schema name: ``one/two/three.four`` → ``OneTwoThreeFour``."""
    return "".join(
        segment[:1].upper() + segment[1:]
        for segment in _WORD_BOUNDARY.split(schema_name)
        if segment
    )


def content_type_for(namespace: str, schema_name: str) -> str:
    """Return ``application/vnd.<namespace>.<schema_name>+json``."""
    return f"application/vnd.{namespace}.{schema_name}+json"


@dataclass(frozen=True)
class TypeDescriptor:
    """A message type bound to one JSON schema.

    Descriptors compare by ``schema_name`` and ``content_type`` only, so a
    descriptor captured before a schema reload still matches its
    replacement.
    """

    schema_name: str
    type_name: str
    content_type: str
    schema_location: Path = field(compare=False)
    validator: SchemaValidator = field(compare=False, repr=False)

    @property
    def schema(self) -> dict[str, Any]:
        return self.validator.schema

    def validate(self, document: Any) -> Any:
        """Validate *document*, returning a copy with schema defaults applied."""
        return self.validator.validate(document)

    def envelope(self, document: Any) -> MessageEnvelope:
        """Wrap *document* in a validated :class:`MessageEnvelope`."""
        from .envelope import MessageEnvelope

        return MessageEnvelope(self, document)


class SchemaRegistry:
    """Registry of :class:`TypeDescriptor` keyed by type name.

    Create one per :class:`~common_messaging.context.MessagingContext` for
    isolation. Registering a schema whose type name already exists replaces
    the previous descriptor, which allows reloading schemas at runtime.

    Usage::

        registry = SchemaRegistry(namespace="blinkbox.books")
        registry.register("./schemas")
        descriptor = registry.resolve(
            "application/vnd.blinkbox.books.ingestion.book.metadata.v2+json"
        )
    """

    def __init__(self, namespace: str = DEFAULT_NAMESPACE) -> None:
        self._namespace = namespace
        self._prefix = content_type_for(namespace, "")[: -len("+json")]
        self._descriptors: dict[str, TypeDescriptor] = {}

    @property
    def namespace(self) -> str:
        return self._namespace

    # ── Registration ─────────────────────────────────────────────

    def register(
        self,
        path: str | PathLike[str],
        root: str | PathLike[str] | None = None,
    ) -> list[TypeDescriptor]:
        """Register a schema file, or every ``*.schema.json`` below a directory.

        Args:
            path: A schema file or a directory searched recursively.
            root: Directory that schema names are computed relative to.
                Defaults to *path* for directories and to the parent
                directory for single files.

        Raises:
            NotFoundError: If *path* does not exist.
            ConfigurationError: If a schema file is not valid JSON-Schema.
        """
        path = Path(path)
        if not path.exists():
            raise NotFoundError(f"The path {path} does not exist")
        if root is None:
            root = path if path.is_dir() else path.parent
        root = Path(root)

        if path.is_dir():
            return [
                self._register_file(file, root)
                for file in sorted(path.rglob(f"*{SCHEMA_SUFFIX}"))
                if file.is_file()
            ]
        return [self._register_file(path, root)]

    def _register_file(self, path: Path, root: Path) -> TypeDescriptor:
        try:
            schema = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Unable to load schema {path}: {e}") from e
        if not isinstance(schema, dict):
            raise ConfigurationError(f"Schema {path} is not a JSON object")
        try:
            schema_name = schema_name_from_path(path, root)
        except ValueError as e:
            raise ConfigurationError(f"Schema {path} is not below {root}") from e

        descriptor = TypeDescriptor(
            schema_name=schema_name,
            type_name=type_name_from_schema_name(schema_name),
            content_type=content_type_for(self._namespace, schema_name),
            schema_location=path,
            validator=SchemaValidator(schema),
        )
        if descriptor.type_name in self._descriptors:
            logger.info("Replacing schema %s with %s", descriptor.type_name, path)
        else:
            logger.debug("Registered schema %s from %s", descriptor.type_name, path)
        self._descriptors[descriptor.type_name] = descriptor
        return descriptor

    # ── Lookup ───────────────────────────────────────────────────

    def resolve(self, content_type: str | None) -> TypeDescriptor:
        """Return the descriptor whose content-type is *content_type*.

        Raises:
            InvalidArgumentError: If *content_type* is empty or ``None``.
            UnregisteredTypeError: If no registered schema matches.
        """
        if not content_type:
            raise InvalidArgumentError(
                f"No content type was given ({content_type!r})"
            )
        if not (
            content_type.startswith(self._prefix) and content_type.endswith("+json")
        ):
            raise UnregisteredTypeError(content_type)
        schema_name = content_type[len(self._prefix) : -len("+json")]
        descriptor = self._descriptors.get(type_name_from_schema_name(schema_name))
        if descriptor is None or descriptor.content_type != content_type:
            raise UnregisteredTypeError(content_type)
        return descriptor

    def get(self, type_name: str) -> TypeDescriptor | None:
        """Look up a descriptor by type name."""
        return self._descriptors.get(type_name)

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._descriptors

    def descriptors(self) -> list[TypeDescriptor]:
        """Return all registered descriptors."""
        return list(self._descriptors.values())

    def clear(self) -> None:
        """Remove all registrations (testing utility)."""
        self._descriptors.clear()
