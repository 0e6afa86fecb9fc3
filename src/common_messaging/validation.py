"""JSON-Schema validation with schema defaults inserted into the document."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from jsonschema import validators
from jsonschema.exceptions import SchemaError

from .exceptions import ConfigurationError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from jsonschema.protocols import Validator


def _extend_with_defaults(validator_class: type[Validator]) -> type[Validator]:
    """Return a validator class whose ``properties`` keyword fills in defaults."""
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults(
        validator: Validator,
        properties: dict[str, Any],
        instance: Any,
        schema: dict[str, Any],
    ) -> Iterator[Any]:
        if validator.is_type(instance, "object"):
            for name, subschema in properties.items():
                if isinstance(subschema, dict) and "default" in subschema:
                    instance.setdefault(name, copy.deepcopy(subschema["default"]))
        yield from validate_properties(validator, properties, instance, schema)

    return validators.extend(validator_class, {"properties": set_defaults})


class SchemaValidator:
    """Validates documents against one schema held as data.

    Validation runs in two passes: the first walks the document inserting
    every schema-declared default, the second validates the completed
    document strictly. Splitting the passes keeps ``required`` checks
    independent of keyword ordering inside the schema.
    """

    def __init__(self, schema: dict[str, Any]) -> None:
        validator_class = validators.validator_for(schema)
        try:
            validator_class.check_schema(schema)
        except SchemaError as e:
            raise ConfigurationError(f"Invalid JSON schema: {e.message}") from e
        self._schema = schema
        self._strict = validator_class(schema)
        self._filling = _extend_with_defaults(validator_class)(schema)

    @property
    def schema(self) -> dict[str, Any]:
        return self._schema

    def validate(self, document: Any) -> Any:
        """Return a copy of *document* with defaults applied.

        Raises:
            ValidationError: With ``{path: [messages]}`` for every failure.
        """
        document = copy.deepcopy(document)
        for _ in self._filling.iter_errors(document):
            pass

        errors: dict[str, list[str]] = {}
        for error in self._strict.iter_errors(document):
            path = _format_path(error.absolute_path) or "__root__"
            errors.setdefault(path, []).append(error.message)
        if errors:
            raise ValidationError(errors)
        return document


def _format_path(path: Any) -> str:
    """Render a jsonschema error path as ``a.b[2].c``."""
    rendered = ""
    for part in path:
        if isinstance(part, int):
            rendered += f"[{part}]"
        else:
            rendered = f"{rendered}.{part}" if rendered else str(part)
    return rendered
