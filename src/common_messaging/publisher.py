"""Publisher — publish envelopes to a headers exchange with lineage and confirms."""

from __future__ import annotations

import asyncio
import functools
import logging
import secrets
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika.exceptions import ChannelNotFoundEntity, DeliveryError
from pamqp.commands import Basic

from .envelope import MessageEnvelope
from .exceptions import InvalidArgumentError, NotFoundError, UndeliverableMessageError
from .serialization import EnvelopeSerializer

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from aio_pika.abc import AbstractExchange

    from .connection import ConnectionManager
    from .context import MessagingContext

logger = logging.getLogger(__name__)

DEFAULT_EXCHANGE = "amq.headers"
DEFAULT_FACILITY_VERSION = "0.0.0-unknown"


def generate_message_id() -> str:
    """Return a random message id of 16 lowercase hexadecimal characters."""
    return secrets.token_hex(8)


class Publisher:
    """Publishes :class:`MessageEnvelope` objects to one headers exchange.

    Every message carries its content-type both as the AMQP property and as
    a ``content-type`` header (headers exchanges cannot route on
    properties), plus a ``message_id_chain`` header tracing the causal
    chain of messages that led to it.

    Use :meth:`bind` to create one.
    """

    def __init__(
        self,
        context: MessagingContext,
        exchange: AbstractExchange,
        *,
        connection: ConnectionManager,
        app_id: str,
        serializer: EnvelopeSerializer | None = None,
    ) -> None:
        self._context = context
        self._exchange = exchange
        self._connection = connection
        self._app_id = app_id
        self._serializer = serializer or EnvelopeSerializer()
        self._pending: dict[str, asyncio.Future[None]] = {}
        self._nacked: set[str] = set()

    @classmethod
    async def bind(
        cls,
        context: MessagingContext,
        exchange_name: str = DEFAULT_EXCHANGE,
        *,
        facility: str | None = None,
        facility_version: str = DEFAULT_FACILITY_VERSION,
        serializer: EnvelopeSerializer | None = None,
    ) -> Publisher:
        """Open a confirming channel and bind to an existing headers exchange.

        Args:
            context: Supplies the connection, header detectors and config.
            exchange_name: Durable headers exchange, which must already exist.
            facility: Name of the publishing service; defaults to the
                running script's name.
            facility_version: Version of the publishing service.
            serializer: Default EnvelopeSerializer().

        Raises:
            NotFoundError: If the exchange does not exist.
        """
        connection = await context.connection()
        channel = await connection.open_channel(publisher_confirms=True)
        try:
            exchange = await channel.declare_exchange(
                exchange_name,
                aio_pika.ExchangeType.HEADERS,
                durable=True,
                auto_delete=False,
                passive=True,
            )
        except ChannelNotFoundEntity as e:
            raise NotFoundError(f"Exchange {exchange_name!r} does not exist") from e

        facility = facility or Path(sys.argv[0]).stem or "python"
        publisher = cls(
            context,
            exchange,
            connection=connection,
            app_id=f"{facility}:v{facility_version}",
            serializer=serializer,
        )
        connection.track(publisher)
        logger.info("Publisher %s bound to exchange %s", publisher.app_id, exchange_name)
        return publisher

    @property
    def app_id(self) -> str:
        return self._app_id

    # ── Publishing ───────────────────────────────────────────────

    async def publish(
        self,
        envelope: MessageEnvelope,
        headers: Mapping[str, Any] | None = None,
        message_id_chain: Iterable[str] | None = None,
        *,
        confirm: bool = True,
        mandatory: bool = False,
    ) -> str:
        """Publish *envelope* and return its newly generated message id.

        Headers are merged in increasing precedence: ``content-type`` and
        ``message_id_chain``, then header detector output, then *headers*.

        Args:
            envelope: The validated message to send.
            headers: Extra headers to route on.
            message_id_chain: Chain of the message that caused this one; the
                new message id is appended to a copy of it.
            confirm: Wait until the broker confirms the message. When False
                the confirmation is tracked; see :meth:`wait_for_confirms`.
            mandatory: Ask the broker to return the message if no queue
                is bound to receive it.

        Raises:
            InvalidArgumentError: If *envelope* is not a MessageEnvelope, or
                *message_id_chain* is a string.
            UndeliverableMessageError: If the broker rejects or returns the
                message (only when *confirm* is True).
        """
        if not isinstance(envelope, MessageEnvelope):
            raise InvalidArgumentError(
                f"Only MessageEnvelope objects can be published, "
                f"not {type(envelope).__name__}"
            )
        if isinstance(message_id_chain, (str, bytes)):
            raise InvalidArgumentError(
                "message_id_chain must be a sequence of message ids, not a string"
            )
        message_id = generate_message_id()
        chain = [*(message_id_chain or ()), message_id]

        merged = self._context.header_detectors.run_all(
            envelope,
            {"content-type": envelope.content_type, "message_id_chain": chain},
        )
        merged.update(headers or {})

        message = aio_pika.Message(
            body=self._serializer.serialize(envelope),
            content_type=envelope.content_type,
            correlation_id=chain[0],
            message_id=message_id,
            app_id=self._app_id,
            timestamp=datetime.now(timezone.utc).replace(microsecond=0),
            headers=merged,
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )

        if confirm:
            await self._deliver(message, message_id, mandatory)
        else:
            future = asyncio.ensure_future(self._deliver(message, message_id, mandatory))
            self._pending[message_id] = future
            future.add_done_callback(functools.partial(self._on_settled, message_id))
            # Yield once so the frame is handed to the channel before returning.
            await asyncio.sleep(0)
        logger.debug(
            "Published %s as %s (correlation %s)",
            envelope.content_type,
            message_id,
            chain[0],
        )
        return message_id

    async def _deliver(
        self, message: aio_pika.Message, message_id: str, mandatory: bool
    ) -> None:
        try:
            confirmation = await self._exchange.publish(
                message,
                routing_key="",
                mandatory=mandatory,
            )
        except DeliveryError as e:
            raise UndeliverableMessageError(
                f"Message {message_id} was returned by the broker",
                message_id=message_id,
            ) from e
        if confirmation is not None and not isinstance(confirmation, Basic.Ack):
            raise UndeliverableMessageError(
                f"Message {message_id} was not acknowledged by the broker",
                message_id=message_id,
            )

    def _on_settled(self, message_id: str, future: asyncio.Future[None]) -> None:
        self._pending.pop(message_id, None)
        if future.cancelled() or future.exception() is not None:
            logger.warning("Message %s was not confirmed by the broker", message_id)
            self._nacked.add(message_id)

    # ── Confirmation tracking ────────────────────────────────────

    async def flush(self) -> None:
        """Wait until every unconfirmed-mode delivery has been sent and settled."""
        pending = list(self._pending.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def wait_for_confirms(self) -> bool:
        """Wait for outstanding confirmations; True if none were negative."""
        await self.flush()
        return not self._nacked

    def nacked_ids(self) -> set[str]:
        """Ids of unconfirmed-mode messages the broker did not confirm."""
        return set(self._nacked)

    def pending_ids(self) -> set[str]:
        """Ids of unconfirmed-mode messages still awaiting confirmation."""
        return set(self._pending)

    async def health_check(self) -> bool:
        """Return True if the connection is healthy."""
        return await self._connection.health_check()
