"""Pytest fixtures for common-messaging tests (no real broker)."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from pamqp.commands import Basic

from common_messaging.context import MessagingContext

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from common_messaging.registry import TypeDescriptor

CONTENT_TYPE = "application/vnd.blinkbox.books.namespace.to.example.v1+json"
OPEN_CONTENT_TYPE = "application/vnd.blinkbox.books.open.document.v1+json"

EXAMPLE_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "A basic JSON schema file for tests",
    "type": "object",
    "properties": {
        "requiredField": {"type": "string"},
        "optionalField": {"type": "integer"},
        "defaultField": {"type": "string", "default": "default value"},
    },
    "additionalProperties": False,
    "required": ["requiredField"],
}

OPEN_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Accepts any object",
    "type": "object",
}


def write_schema(root: Path, relative: str, schema: dict[str, Any]) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(schema), encoding="utf-8")
    return path


@pytest.fixture
def schema_dir(tmp_path: Path) -> Path:
    root = tmp_path / "schemas"
    write_schema(root, "namespace/to/example/v1.schema.json", EXAMPLE_SCHEMA)
    write_schema(root, "open/document/v1.schema.json", OPEN_SCHEMA)
    return root


@pytest.fixture
def context(schema_dir: Path) -> MessagingContext:
    ctx = MessagingContext()
    ctx.registry.register(schema_dir)
    return ctx


@pytest.fixture
def descriptor(context: MessagingContext) -> TypeDescriptor:
    found = context.registry.get("NamespaceToExampleV1")
    assert found is not None
    return found


@pytest.fixture
def open_descriptor(context: MessagingContext) -> TypeDescriptor:
    found = context.registry.get("OpenDocumentV1")
    assert found is not None
    return found


@pytest.fixture
def mock_exchange() -> MagicMock:
    exchange = MagicMock()
    exchange.publish = AsyncMock(return_value=Basic.Ack())
    return exchange


@pytest.fixture
def mock_queue() -> MagicMock:
    queue = MagicMock()
    queue.name = "test.queue"
    queue.bind = AsyncMock()
    queue.consume = AsyncMock(return_value="ctag-1")
    queue.cancel = AsyncMock()
    queue.purge = AsyncMock()
    return queue


@pytest.fixture
def mock_channel(mock_exchange: MagicMock, mock_queue: MagicMock) -> MagicMock:
    channel = MagicMock()
    channel.declare_exchange = AsyncMock(return_value=mock_exchange)
    channel.declare_queue = AsyncMock(return_value=mock_queue)
    channel.set_qos = AsyncMock()
    return channel


@pytest.fixture
def mock_connection(mock_channel: MagicMock) -> MagicMock:
    conn = MagicMock()
    conn.connect = AsyncMock()
    conn.open_channel = AsyncMock(return_value=mock_channel)
    conn.health_check = AsyncMock(return_value=True)
    return conn


@pytest.fixture
def broker_context(
    context: MessagingContext, mock_connection: MagicMock
) -> MessagingContext:
    """A context whose connection is the mocked broker."""
    context.connection = AsyncMock(return_value=mock_connection)  # type: ignore[method-assign]
    return context


@pytest.fixture
def make_incoming() -> Callable[..., MagicMock]:
    """Build stand-ins for aio-pika incoming messages."""

    def factory(
        body: bytes | str,
        *,
        headers: dict[str, Any] | None = None,
        delivery_tag: int = 1,
        content_type: str | None = None,
        message_id: str | None = "0123456789abcdef",
    ) -> MagicMock:
        message = MagicMock()
        message.body = body.encode() if isinstance(body, str) else body
        message.headers = headers if headers is not None else {}
        message.delivery_tag = delivery_tag
        message.content_type = content_type
        message.message_id = message_id
        message.correlation_id = message_id
        message.app_id = "tests:v0.0.0"
        message.timestamp = None
        message.redelivered = False
        message.ack = AsyncMock()
        message.reject = AsyncMock()
        return message

    return factory
