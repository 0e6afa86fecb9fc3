"""Subscriber — consume a headers-bound queue and settle each message by outcome."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from inspect import isawaitable
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika.exceptions import ChannelNotFoundEntity

from .exceptions import InvalidArgumentError, NotFoundError, UnknownOutcomeError
from .outcome import Outcome
from .publisher import DEFAULT_EXCHANGE
from .serialization import EnvelopeSerializer

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue

    from .connection import ConnectionManager
    from .context import MessagingContext
    from .registry import TypeDescriptor

    MessageHandler = Callable[["Delivery", Any], Any]
    ExceptionHandler = Callable[[BaseException, "Subscriber", "Delivery"], Any]

logger = logging.getLogger(__name__)


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


@dataclass(frozen=True)
class Delivery:
    """One in-flight message as delivered by the broker.

    ``raw_payload`` is kept undecoded so it is available to exception hooks
    whatever went wrong while decoding.
    """

    delivery_tag: int
    headers: dict[str, Any] = field(default_factory=dict)
    raw_payload: bytes = b""
    content_type: str | None = None
    message_id: str | None = None
    correlation_id: str | None = None
    app_id: str | None = None
    timestamp: datetime | None = None
    redelivered: bool = False

    @classmethod
    def from_message(cls, message: AbstractIncomingMessage) -> Delivery:
        return cls(
            delivery_tag=message.delivery_tag or 0,
            headers={
                key: _decode(value) for key, value in (message.headers or {}).items()
            },
            raw_payload=message.body,
            content_type=message.content_type,
            message_id=message.message_id,
            correlation_id=message.correlation_id,
            app_id=message.app_id,
            timestamp=message.timestamp,
            redelivered=bool(message.redelivered),
        )

    @property
    def message_type(self) -> str | None:
        """The ``content-type`` header, falling back to the AMQP property."""
        return self.headers.get("content-type") or self.content_type

    @property
    def message_id_chain(self) -> list[str]:
        """Lineage of this message; pass it to ``Publisher.publish`` to extend it."""
        chain = self.headers.get("message_id_chain")
        if isinstance(chain, list):
            return [str(item) for item in chain]
        return [self.message_id] if self.message_id else []


async def default_on_exception(
    exception: BaseException, subscriber: Subscriber, delivery: Delivery
) -> None:
    """Log the failure and dead-letter the message."""
    logger.error(
        "Failed to process message %s (delivery %d); rejecting: %r",
        delivery.message_id,
        delivery.delivery_tag,
        delivery.raw_payload[:512],
        exc_info=exception,
    )
    await subscriber.reject(delivery.delivery_tag, requeue=False)


class Subscriber:
    """Consumes one durable queue bound to a headers exchange.

    Handlers return an :class:`Outcome` (or ``True``/``False``) which decides
    whether the message is acknowledged, dead-lettered or requeued. Any
    exception while resolving, decoding, validating or handling a message is
    passed to the exception hook instead, and consumption continues.

    Use :meth:`bind` to create one.
    """

    def __init__(
        self,
        context: MessagingContext,
        channel: AbstractChannel,
        queue: AbstractQueue,
        *,
        connection: ConnectionManager,
        serializer: EnvelopeSerializer | None = None,
    ) -> None:
        self._context = context
        self._channel = channel
        self._queue = queue
        self._connection = connection
        self._serializer = serializer or EnvelopeSerializer()
        self._in_flight: dict[int, AbstractIncomingMessage] = {}
        self._handler: MessageHandler | None = None
        self._on_exception: ExceptionHandler = default_on_exception
        self._accept: frozenset[TypeDescriptor] | None = None
        self._consumer_tag: str | None = None
        self._stopped: asyncio.Future[None] | None = None

    @classmethod
    async def bind(
        cls,
        context: MessagingContext,
        queue_name: str,
        exchange_name: str = DEFAULT_EXCHANGE,
        *,
        dead_letter_exchange: str | None = None,
        bindings: Iterable[Mapping[str, Any]] = (),
        prefetch: int = 10,
        serializer: EnvelopeSerializer | None = None,
    ) -> Subscriber:
        """Declare *queue_name* and bind it to an existing headers exchange.

        There is no way to know which bindings a queue already has, so
        handlers should cope with receiving messages they do not expect.

        Args:
            context: Supplies the connection and schema registry.
            queue_name: Durable queue, created if necessary.
            exchange_name: Durable headers exchange, which must already exist.
            dead_letter_exchange: Where rejected messages go; default
                ``<exchange_name>.DLX``.
            bindings: One header-match mapping per binding, e.g.
                ``{"content-type": ..., "x-match": "all"}``.
            prefetch: Maximum unacknowledged deliveries on the channel.
            serializer: Default EnvelopeSerializer().

        Raises:
            InvalidArgumentError: If *prefetch* is not a positive integer.
            NotFoundError: If the exchange does not exist.
        """
        if isinstance(prefetch, bool) or not isinstance(prefetch, int) or prefetch < 1:
            raise InvalidArgumentError("Prefetch must be a positive integer")
        bindings = [dict(binding) for binding in bindings]

        connection = await context.connection()
        channel = await connection.open_channel()
        await channel.set_qos(prefetch_count=prefetch)
        queue = await channel.declare_queue(
            queue_name,
            durable=True,
            exclusive=False,
            auto_delete=False,
            arguments={
                "x-dead-letter-exchange": dead_letter_exchange
                or f"{exchange_name}.DLX"
            },
        )
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

        if not bindings:
            logger.warning(
                "No bindings were given for queue %s, "
                "it is unlikely to receive any messages",
                queue_name,
            )
        for binding in bindings:
            await queue.bind(exchange, routing_key="", arguments=binding)
            logger.debug("Bound queue %s to %s with %s", queue_name, exchange_name, binding)

        logger.info("Queue %s bound to exchange %s", queue_name, exchange_name)
        return cls(context, channel, queue, connection=connection, serializer=serializer)

    # ── Consuming ────────────────────────────────────────────────

    async def subscribe(
        self,
        handler: MessageHandler,
        *,
        on_exception: ExceptionHandler | None = None,
        block: bool = True,
        accept: Iterable[TypeDescriptor] | None = None,
    ) -> None:
        """Start consuming, calling ``handler(delivery, payload)`` per message.

        Args:
            handler: Callable or coroutine function returning an Outcome,
                ``True`` (ack) or ``False`` (reject).
            on_exception: ``(exception, subscriber, delivery)`` hook replacing
                :func:`default_on_exception`; it must ack or reject the
                message itself.
            block: Wait until the subscription is cancelled (True) or return
                once consuming has started (False).
            accept: Types to accept. ``None`` passes the raw body to the
                handler without validation; otherwise messages are decoded
                into envelopes and other types are rejected unhandled.

        Raises:
            InvalidArgumentError: If *handler* is not callable or the
                subscriber is already consuming.
            UnknownOutcomeError: If a handler returns an unknown outcome
                (raised when *block* is True).
        """
        if not callable(handler):
            raise InvalidArgumentError(
                "Please give a handler to run when a message is received"
            )
        if on_exception is not None and not callable(on_exception):
            raise InvalidArgumentError("on_exception must be callable")
        if self._consumer_tag is not None:
            raise InvalidArgumentError("This subscriber is already consuming")

        self._handler = handler
        self._on_exception = on_exception or default_on_exception
        self._accept = None if accept is None else frozenset(accept)
        self._stopped = asyncio.get_running_loop().create_future()
        self._consumer_tag = await self._queue.consume(self._on_message, no_ack=False)
        logger.info("Consuming from queue %s", self._queue.name)
        if block:
            await self.wait()

    async def wait(self) -> None:
        """Wait until the subscription is cancelled or fails."""
        if self._stopped is None:
            return
        try:
            await self._stopped
        finally:
            await self.cancel()

    async def cancel(self) -> None:
        """Stop consuming. Messages already in flight are not settled."""
        if self._consumer_tag is not None:
            tag, self._consumer_tag = self._consumer_tag, None
            await self._queue.cancel(tag)
            logger.info("Stopped consuming from queue %s", self._queue.name)
        if self._stopped is not None and not self._stopped.done():
            self._stopped.set_result(None)

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        delivery = Delivery.from_message(message)
        self._in_flight[delivery.delivery_tag] = message
        try:
            result = await self._process(delivery)
        except Exception as exc:  # noqa: BLE001
            await self._handle_exception(exc, delivery, message)
            return

        try:
            outcome = Outcome.coerce(result)
        except UnknownOutcomeError as exc:
            logger.critical(
                "Handler returned %r for message %s; stopping consumer",
                result,
                delivery.message_id,
            )
            self._release(delivery.delivery_tag, message)
            if self._stopped is not None and not self._stopped.done():
                self._stopped.set_exception(exc)
            if self._consumer_tag is not None:
                tag, self._consumer_tag = self._consumer_tag, None
                await self._queue.cancel(tag)
            raise

        self._release(delivery.delivery_tag, message)
        if outcome is Outcome.ACK:
            await message.ack()
        else:
            await message.reject(requeue=outcome.requeue)

    async def _process(self, delivery: Delivery) -> Any:
        payload: Any = delivery.raw_payload
        if self._accept is not None:
            descriptor = self._context.registry.resolve(delivery.message_type)
            if descriptor not in self._accept:
                logger.debug(
                    "Rejecting unaccepted %s message %s",
                    descriptor.content_type,
                    delivery.message_id,
                )
                return Outcome.REJECT
            payload = self._serializer.deserialize(delivery.raw_payload, descriptor)

        if self._handler is None:
            raise InvalidArgumentError("No handler; call subscribe() first")
        result = self._handler(delivery, payload)
        if isawaitable(result):
            result = await result
        return result

    async def _handle_exception(
        self, exc: Exception, delivery: Delivery, message: AbstractIncomingMessage
    ) -> None:
        try:
            result = self._on_exception(exc, self, delivery)
            if isawaitable(result):
                await result
        except Exception:  # noqa: BLE001
            logger.exception(
                "Exception hook failed for message %s; rejecting it",
                delivery.message_id,
            )
            if self._in_flight.get(delivery.delivery_tag) is message:
                self._release(delivery.delivery_tag, message)
                await message.reject(requeue=False)

    # ── Settlement ───────────────────────────────────────────────

    def _release(self, delivery_tag: int, message: AbstractIncomingMessage) -> None:
        # A recovered channel restarts delivery tags; drop only our own entry.
        if self._in_flight.get(delivery_tag) is message:
            del self._in_flight[delivery_tag]

    def _take(self, delivery_tag: int) -> AbstractIncomingMessage:
        try:
            return self._in_flight.pop(delivery_tag)
        except KeyError:
            raise InvalidArgumentError(
                f"Delivery {delivery_tag} is not awaiting acknowledgement"
            ) from None

    async def ack(self, delivery_tag: int) -> None:
        """Acknowledge a delivery, removing the message from the queue."""
        await self._take(delivery_tag).ack()

    async def reject(self, delivery_tag: int, requeue: bool = False) -> None:
        """Reject a delivery: requeue it, or dead-letter it when *requeue* is False."""
        await self._take(delivery_tag).reject(requeue=requeue)

    async def purge(self) -> bool:
        """Delete every message in the queue. Destroys data."""
        await self._queue.purge()
        logger.warning("Purged queue %s", self._queue.name)
        return True

    async def health_check(self) -> bool:
        """Return True if the connection is healthy."""
        return await self._connection.health_check()
