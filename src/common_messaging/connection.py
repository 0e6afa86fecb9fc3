"""RabbitMQ connection lifecycle, per-consumer channels, and health check."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aio_pika

from .exceptions import MessagingConnectionError

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel, AbstractRobustConnection

    from .config import MessagingConfig
    from .publisher import Publisher

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages one robust connection for a :class:`MessagingConfig`.

    Uses connect_robust for automatic reconnection. Every publisher and
    subscriber gets a channel of its own from :meth:`open_channel`, so a
    channel-level broker error only affects that one message stream.
    """

    def __init__(self, config: MessagingConfig) -> None:
        self._config = config
        self._connection: AbstractRobustConnection | None = None
        self._publishers: list[Publisher] = []

    @property
    def config(self) -> MessagingConfig:
        return self._config

    async def connect(self) -> None:
        """Establish the connection. Idempotent if already connected."""
        if self._connection is not None and not self._connection.is_closed:
            return
        try:
            self._connection = await aio_pika.connect_robust(
                **self._config.connection_kwargs()
            )
        except (ConnectionError, OSError, ValueError) as e:
            raise MessagingConnectionError(str(e)) from e
        logger.info(
            "Connected to amqp://%s:%d/%s",
            self._config.host,
            self._config.port,
            self._config.vhost,
        )

    async def open_channel(self, *, publisher_confirms: bool = False) -> AbstractChannel:
        """Open a new channel on the (lazily established) connection."""
        await self.connect()
        if self._connection is None:
            raise MessagingConnectionError("Not connected; call connect() first")
        return await self._connection.channel(publisher_confirms=publisher_confirms)

    def track(self, publisher: Publisher) -> None:
        """Remember *publisher* so its confirms can be awaited on close."""
        self._publishers.append(publisher)

    @property
    def publishers(self) -> list[Publisher]:
        return list(self._publishers)

    async def close(self) -> None:
        """Close the connection and all of its channels."""
        self._publishers.clear()
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Closed connection to %s", self._config.host)

    async def health_check(self) -> bool:
        """Return True if the connection is open."""
        if self._connection is None:
            return False
        return not self._connection.is_closed
