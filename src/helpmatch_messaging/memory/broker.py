"""In-memory broker for testing — emulates the aio-pika channel surface we use.

Covers durable queue declaration with argument checks, default-exchange
routing, priority-ordered ready sets, manual ack/reject with dead-letter
routing, basic get, and serial dispatch to consumers. Delivery only happens
when ``dispatch()`` is awaited, which keeps tests deterministic.
"""

from __future__ import annotations

import heapq
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

from aio_pika.exceptions import (
    ChannelInvalidStateError,
    ChannelPreconditionFailed,
    QueueEmpty,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    import aio_pika

_DEFAULT_EXCHANGE = ""


class _Callbacks:
    """Minimal stand-in for aio-pika's CallbackCollection."""

    def __init__(self, sender: Any) -> None:
        self._sender = sender
        self._callbacks: list[Callable[..., Any]] = []

    def add(self, callback: Callable[..., Any]) -> None:
        self._callbacks.append(callback)

    def fire(self, exc: BaseException | None) -> None:
        for callback in list(self._callbacks):
            callback(self._sender, exc)


@dataclass
class _StoredMessage:
    body: bytes
    priority: int = 0
    content_type: str | None = None
    delivery_mode: int | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    redelivered: bool = False


class InMemoryIncomingMessage:
    """A delivery handed to a consumer or returned by ``queue.get``.

    Settling it fails once the channel it arrived on is closed; the broker
    has already put it back on the queue by then.
    """

    def __init__(
        self,
        queue: InMemoryQueue,
        stored: _StoredMessage,
        delivery_tag: int,
        channel: InMemoryChannel | None = None,
    ) -> None:
        self._queue = queue
        self._stored = stored
        self._channel = channel
        self.delivery_tag = delivery_tag
        self.routing_key = queue.name
        self.processed = False

    @property
    def body(self) -> bytes:
        return self._stored.body

    @property
    def priority(self) -> int:
        return self._stored.priority

    @property
    def content_type(self) -> str | None:
        return self._stored.content_type

    @property
    def delivery_mode(self) -> int | None:
        return self._stored.delivery_mode

    @property
    def headers(self) -> dict[str, Any]:
        return self._stored.headers

    @property
    def redelivered(self) -> bool:
        return self._stored.redelivered

    def _settle(self) -> None:
        if self._channel is not None and self._channel.is_closed:
            raise ChannelInvalidStateError("Channel is closed")
        if self.processed:
            raise ChannelInvalidStateError("Message already processed")
        self.processed = True

    async def ack(self) -> None:
        self._settle()
        self._queue._settle(self.delivery_tag)

    async def reject(self, requeue: bool = False) -> None:
        self._settle()
        self._queue._settle(self.delivery_tag)
        if requeue:
            self._queue._enqueue(replace(self._stored, redelivered=True))
        else:
            self._queue._dead_letter(self._stored)

    async def nack(self, multiple: bool = False, requeue: bool = True) -> None:  # noqa: ARG002
        await self.reject(requeue=requeue)

    @asynccontextmanager
    async def process(
        self,
        requeue: bool = False,
        ignore_processed: bool = False,
    ) -> AsyncIterator[InMemoryIncomingMessage]:
        """Mirror aio-pika: ack on clean exit, reject on error, unless settled."""
        try:
            yield self
            if not ignore_processed or not self.processed:
                await self.ack()
        except Exception:
            if not ignore_processed or not self.processed:
                await self.reject(requeue=requeue)
            raise


class InMemoryQueue:
    """A named queue with a priority-ordered ready set."""

    def __init__(
        self,
        broker: InMemoryBroker,
        name: str,
        *,
        durable: bool,
        arguments: dict[str, Any],
    ) -> None:
        self._broker = broker
        self.name = name
        self.durable = durable
        self.arguments = arguments
        self._ready: list[tuple[int, int, _StoredMessage]] = []
        self._unacked: dict[int, tuple[_StoredMessage, InMemoryChannel | None]] = {}
        self._consumers: dict[str, Callable[[InMemoryIncomingMessage], Awaitable[Any]]] = {}
        self._consumer_channels: dict[str, InMemoryChannel] = {}

    @property
    def max_priority(self) -> int | None:
        value = self.arguments.get("x-max-priority")
        return int(value) if value is not None else None

    @property
    def declaration_result(self) -> SimpleNamespace:
        return SimpleNamespace(
            message_count=len(self._ready),
            consumer_count=len(self._consumers),
        )

    def _enqueue(self, stored: _StoredMessage) -> None:
        max_priority = self.max_priority
        effective = min(stored.priority, max_priority) if max_priority else 0
        heapq.heappush(self._ready, (-effective, next(self._broker._sequence), stored))

    def _settle(self, delivery_tag: int) -> None:
        self._unacked.pop(delivery_tag, None)

    def _dead_letter(self, stored: _StoredMessage) -> None:
        exchange = self.arguments.get("x-dead-letter-exchange")
        if exchange is None:
            return
        routing_key = self.arguments.get("x-dead-letter-routing-key", self.name)
        headers = dict(stored.headers)
        headers["x-death"] = [
            {"queue": self.name, "reason": "rejected", "count": 1},
            *headers.get("x-death", []),
        ]
        self._broker._route(
            exchange,
            routing_key,
            _StoredMessage(
                body=stored.body,
                priority=stored.priority,
                content_type=stored.content_type,
                delivery_mode=stored.delivery_mode,
                headers=headers,
            ),
        )

    def _requeue_unacked(self, channel: InMemoryChannel) -> None:
        """Return deliveries left unsettled on a closed channel to the ready set."""
        for tag, (stored, owner) in list(self._unacked.items()):
            if owner is channel:
                del self._unacked[tag]
                self._enqueue(replace(stored, redelivered=True))

    def _pop(self, channel: InMemoryChannel | None = None) -> InMemoryIncomingMessage | None:
        if not self._ready:
            return None
        _, _, stored = heapq.heappop(self._ready)
        tag = next(self._broker._delivery_tags)
        self._unacked[tag] = (stored, channel)
        return InMemoryIncomingMessage(self, stored, tag, channel)

    def ready_bodies(self) -> list[bytes]:
        """Bodies of ready messages in delivery order."""
        return [stored.body for _, _, stored in sorted(self._ready, key=lambda x: x[:2])]

    def ready_priorities(self) -> list[int]:
        return [stored.priority for _, _, stored in sorted(self._ready, key=lambda x: x[:2])]

    async def consume(
        self,
        callback: Callable[[InMemoryIncomingMessage], Awaitable[Any]],
        no_ack: bool = False,
        consumer_tag: str | None = None,
    ) -> str:
        if no_ack:
            raise ValueError("InMemoryQueue supports manual acknowledgement only")
        tag = consumer_tag or f"ctag-{next(self._broker._sequence)}"
        self._consumers[tag] = callback
        return tag

    async def cancel(self, consumer_tag: str) -> None:
        self._consumers.pop(consumer_tag, None)
        self._consumer_channels.pop(consumer_tag, None)

    async def get(
        self,
        no_ack: bool = False,
        fail: bool = True,
        timeout: float | None = None,  # noqa: ARG002
    ) -> InMemoryIncomingMessage | None:
        return await self._get(no_ack, fail, None)

    async def _get(
        self,
        no_ack: bool,
        fail: bool,
        channel: InMemoryChannel | None,
    ) -> InMemoryIncomingMessage | None:
        message = self._pop(channel)
        if message is None:
            if fail:
                raise QueueEmpty(f"Queue {self.name!r} is empty")
            return None
        if no_ack:
            await message.ack()
        return message

    async def purge(self) -> SimpleNamespace:
        count = len(self._ready)
        self._ready.clear()
        return SimpleNamespace(message_count=count)


class _ChannelQueue:
    """A queue as seen through one channel; its consumers die with the channel."""

    def __init__(self, channel: InMemoryChannel, queue: InMemoryQueue) -> None:
        self._channel = channel
        self._queue = queue
        self.name = queue.name
        self.durable = queue.durable
        self.arguments = queue.arguments

    @property
    def declaration_result(self) -> SimpleNamespace:
        return self._queue.declaration_result

    async def consume(
        self,
        callback: Callable[[InMemoryIncomingMessage], Awaitable[Any]],
        no_ack: bool = False,
        consumer_tag: str | None = None,
    ) -> str:
        self._channel._ensure_open()
        tag = await self._queue.consume(callback, no_ack=no_ack, consumer_tag=consumer_tag)
        self._queue._consumer_channels[tag] = self._channel
        self._channel._consumers.append((self._queue, tag))
        return tag

    async def cancel(self, consumer_tag: str) -> None:
        self._channel._ensure_open()
        await self._queue.cancel(consumer_tag)

    async def get(
        self,
        no_ack: bool = False,
        fail: bool = True,
        timeout: float | None = None,  # noqa: ARG002
    ) -> InMemoryIncomingMessage | None:
        self._channel._ensure_open()
        return await self._queue._get(no_ack, fail, self._channel)

    async def purge(self) -> SimpleNamespace:
        self._channel._ensure_open()
        return await self._queue.purge()


class InMemoryExchange:
    """The default (nameless direct) exchange: routing key = queue name."""

    def __init__(self, channel: InMemoryChannel) -> None:
        self._channel = channel
        self.name = _DEFAULT_EXCHANGE

    async def publish(
        self,
        message: aio_pika.Message,
        routing_key: str,
        **kwargs: Any,  # noqa: ARG002
    ) -> None:
        self._channel._ensure_open()
        self._channel._broker._route(
            _DEFAULT_EXCHANGE,
            routing_key,
            _StoredMessage(
                body=message.body,
                priority=message.priority or 0,
                content_type=message.content_type,
                delivery_mode=int(message.delivery_mode) if message.delivery_mode else None,
                headers=dict(message.headers or {}),
            ),
        )


class InMemoryChannel:
    """Channel bound to an ``InMemoryBroker``.

    Like AMQP, a failed queue declaration closes the channel, and closing a
    channel cancels the consumers registered through it.
    """

    def __init__(self, connection: InMemoryConnection) -> None:
        self._connection = connection
        self._broker = connection._broker
        self._consumers: list[tuple[InMemoryQueue, str]] = []
        self.is_closed = False
        self.close_callbacks = _Callbacks(self)
        self.default_exchange = InMemoryExchange(self)
        self.prefetch_count: int | None = None

    def _ensure_open(self) -> None:
        if self.is_closed:
            raise ChannelInvalidStateError("Channel is closed")

    async def set_qos(self, prefetch_count: int = 0, **kwargs: Any) -> None:  # noqa: ARG002
        self._ensure_open()
        self.prefetch_count = prefetch_count

    async def declare_queue(
        self,
        name: str,
        *,
        durable: bool = False,
        arguments: dict[str, Any] | None = None,
        **kwargs: Any,  # noqa: ARG002
    ) -> _ChannelQueue:
        self._ensure_open()
        args = dict(arguments or {})
        existing = self._broker._queues.get(name)
        if existing is None:
            existing = InMemoryQueue(self._broker, name, durable=durable, arguments=args)
            self._broker._queues[name] = existing
        elif existing.durable != durable or existing.arguments != args:
            exc = ChannelPreconditionFailed(
                f"PRECONDITION_FAILED - inequivalent arg for queue '{name}'"
            )
            self._close(exc)
            raise exc
        return _ChannelQueue(self, existing)

    def _close(self, exc: BaseException | None) -> None:
        if self.is_closed:
            return
        self.is_closed = True
        for queue, tag in self._consumers:
            queue._consumers.pop(tag, None)
            queue._consumer_channels.pop(tag, None)
        self._consumers.clear()
        for queue in self._broker._queues.values():
            queue._requeue_unacked(self)
        self.close_callbacks.fire(exc)

    async def close(self) -> None:
        self._close(None)


class InMemoryConnection:
    """Connection handed out by ``InMemoryBroker.connect``."""

    def __init__(self, broker: InMemoryBroker, url: str) -> None:
        self._broker = broker
        self.url = url
        self.is_closed = False
        self.close_callbacks = _Callbacks(self)
        self._channels: list[InMemoryChannel] = []

    async def channel(self, **kwargs: Any) -> InMemoryChannel:  # noqa: ARG002
        if self.is_closed:
            raise ChannelInvalidStateError("Connection is closed")
        channel = InMemoryChannel(self)
        self._channels.append(channel)
        return channel

    def _close(self, exc: BaseException | None) -> None:
        if self.is_closed:
            return
        self.is_closed = True
        for channel in self._channels:
            channel._close(exc)
        self.close_callbacks.fire(exc)

    async def close(self) -> None:
        self._close(None)


class InMemoryBroker:
    """Shared broker state: queues, open connections and failure injection.

    Pass ``broker.connect`` as ``connect_factory`` to
    ``RabbitMQConnectionManager``.
    """

    def __init__(self) -> None:
        self._queues: dict[str, InMemoryQueue] = {}
        self._connections: list[InMemoryConnection] = []
        self._sequence = itertools.count()
        self._delivery_tags = itertools.count(1)
        self._refuse: int | None = 0
        self.connect_attempts = 0

    def refuse_connections(self, count: int | None = None) -> None:
        """Fail the next *count* connection attempts (all of them if None)."""
        self._refuse = count

    def accept_connections(self) -> None:
        self._refuse = 0

    async def connect(self, url: str = "", **kwargs: Any) -> InMemoryConnection:  # noqa: ARG002
        self.connect_attempts += 1
        if self._refuse is None or self._refuse > 0:
            if self._refuse is not None:
                self._refuse -= 1
            raise ConnectionRefusedError(f"Connection refused: {url}")
        connection = InMemoryConnection(self, url)
        self._connections.append(connection)
        return connection

    def close_connections(self, exc: BaseException | None = None) -> None:
        """Simulate a broker-initiated close of every open connection."""
        for connection in list(self._connections):
            connection._close(exc or ConnectionResetError("Connection reset by broker"))
        self._connections.clear()

    def reset(self) -> None:
        """Drop every queue, as if the broker was flushed."""
        self._queues.clear()

    def _route(self, exchange: str, routing_key: str, stored: _StoredMessage) -> None:
        if exchange != _DEFAULT_EXCHANGE:
            return
        queue = self._queues.get(routing_key)
        if queue is not None:
            queue._enqueue(stored)

    def queue(self, name: str) -> InMemoryQueue | None:
        return self._queues.get(name)

    def queue_names(self) -> list[str]:
        return sorted(self._queues)

    def ready_bodies(self, name: str) -> list[bytes]:
        queue = self._queues.get(name)
        return queue.ready_bodies() if queue is not None else []

    async def dispatch(self) -> int:
        """Deliver ready messages to consumers one at a time until idle.

        Returns the number of deliveries made.
        """
        delivered = 0
        progressed = True
        while progressed:
            progressed = False
            for queue in list(self._queues.values()):
                if not queue._consumers:
                    continue
                tag, callback = next(iter(queue._consumers.items()))
                message = queue._pop(queue._consumer_channels.get(tag))
                if message is None:
                    continue
                await callback(message)
                delivered += 1
                progressed = True
        return delivered
