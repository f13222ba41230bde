"""RabbitMQConsumer — manual-ack consumption with dead-lettering of bad deliveries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from aio_pika.exceptions import ChannelInvalidStateError

from ..events import EventRegistry, default_registry
from ..exceptions import MessagingSerializationError, PayloadValidationError
from ..metrics import (
    REASON_HANDLER_ERROR,
    REASON_INVALID,
    REASON_MALFORMED,
    MessagingMetrics,
    default_metrics,
)
from ..ports import IMessageConsumer
from ..serialization import PayloadSerializer
from .topology import DEFAULT_MAX_PRIORITY, assert_queue_with_dead_letter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue

    from .connection import RabbitMQConnectionManager

_logger = logging.getLogger(__name__)

_LOGGED_BODY_LIMIT = 512


@dataclass
class _Subscription:
    queue_name: str
    handler: Callable[[Any], Awaitable[None]]
    queue: AbstractQueue | None = None
    consumer_tag: str | None = None


class RabbitMQConsumer(IMessageConsumer):
    """RabbitMQ adapter implementing IMessageConsumer.

    Each delivery is decoded, validated against the event registered for the
    queue, and handed to the handler. Success acks; malformed JSON, schema
    mismatches and handler errors reject without requeue so the broker
    routes the delivery to ``<queue>.dlq``. There is no retry budget here:
    replay dead-lettered messages with ``DeadLetterQueue.replay``.

    Subscriptions are remembered and re-established after every reconnect.
    """

    def __init__(
        self,
        connection: RabbitMQConnectionManager,
        *,
        serializer: PayloadSerializer | None = None,
        registry: EventRegistry | None = None,
        metrics: MessagingMetrics | None = None,
        max_priority: int | None = DEFAULT_MAX_PRIORITY,
    ) -> None:
        """Configure consumer.

        Args:
            connection: Shared connection manager.
            serializer: Decodes message bodies; default PayloadSerializer().
            registry: Queue-name → event model map; default_registry() if None.
            metrics: Counter sink; default is the process-wide instance.
            max_priority: ``x-max-priority`` declared on the queue.
        """
        self._connection = connection
        self._serializer = serializer or PayloadSerializer()
        self._registry = registry if registry is not None else default_registry()
        self._metrics = metrics or default_metrics()
        self._max_priority = max_priority
        self._subscriptions: dict[str, _Subscription] = {}
        connection.add_connected_callback(self._resubscribe)

    @property
    def subscriptions(self) -> list[str]:
        """Queue names with a registered handler."""
        return list(self._subscriptions)

    async def consume(
        self,
        queue_name: str,
        handler: Callable[[Any], Awaitable[None]],
    ) -> bool:
        """Subscribe *handler* to *queue_name*.

        If no channel can be opened now, the subscription is kept and made
        as soon as the connection comes up; returns False in that case.

        Raises:
            TopologyConflictError: The queue exists with incompatible arguments.
        """
        if queue_name in self._subscriptions:
            await self.cancel(queue_name)
        channel = self._connection.get_channel()
        if channel is None:
            await self._connection.connect()
            channel = self._connection.get_channel()
        subscription = _Subscription(queue_name, handler)
        if channel is None:
            self._subscriptions[queue_name] = subscription
            _logger.warning("Channel not ready yet, will listen on %s after connect", queue_name)
            return False
        await self._subscribe(channel, subscription)
        self._subscriptions[queue_name] = subscription
        return True

    async def cancel(self, queue_name: str) -> None:
        """Stop consuming *queue_name* and forget the subscription."""
        subscription = self._subscriptions.pop(queue_name, None)
        if subscription is None or subscription.queue is None:
            return
        if subscription.consumer_tag is None or self._connection.get_channel() is None:
            return
        await subscription.queue.cancel(subscription.consumer_tag)
        _logger.info("Stopped listening on queue %s", queue_name)

    async def _resubscribe(self, channel: AbstractChannel) -> None:
        for subscription in list(self._subscriptions.values()):
            _logger.info("Re-registering consumer for %s", subscription.queue_name)
            try:
                await self._subscribe(channel, subscription)
            except Exception:  # noqa: BLE001
                _logger.exception("Failed to re-subscribe to %s", subscription.queue_name)

    async def _subscribe(self, channel: AbstractChannel, subscription: _Subscription) -> None:
        queue, _ = await assert_queue_with_dead_letter(
            channel,
            subscription.queue_name,
            max_priority=self._max_priority,
        )

        async def on_message(raw: AbstractIncomingMessage) -> None:
            await self._handle(subscription, raw)

        subscription.consumer_tag = await queue.consume(on_message, no_ack=False)
        subscription.queue = queue
        _logger.info("Listening on queue %s", subscription.queue_name)

    async def _handle(self, subscription: _Subscription, raw: AbstractIncomingMessage) -> None:
        try:
            async with raw.process(requeue=False, ignore_processed=True):
                await self._process(subscription, raw)
        except ChannelInvalidStateError:
            _logger.warning(
                "Channel closed before a delivery on %s was settled; the broker will redeliver it",
                subscription.queue_name,
            )

    async def _process(self, subscription: _Subscription, raw: AbstractIncomingMessage) -> None:
        queue_name = subscription.queue_name
        try:
            data = self._serializer.deserialize(raw.body)
        except MessagingSerializationError:
            _logger.warning(
                "Invalid JSON on %s: %r",
                queue_name,
                raw.body[:_LOGGED_BODY_LIMIT],
            )
            await self._dead_letter(raw, queue_name, REASON_MALFORMED)
            return

        try:
            payload = self._registry.decode(queue_name, data)
        except PayloadValidationError as e:
            _logger.warning("Bad schema on %s: %s", queue_name, e)
            await self._dead_letter(raw, queue_name, REASON_INVALID)
            return

        try:
            await subscription.handler(payload)
        except Exception:  # noqa: BLE001
            _logger.exception("Error handling message on %s", queue_name)
            await self._dead_letter(raw, queue_name, REASON_HANDLER_ERROR)
            return

        await raw.ack()
        self._metrics.record_processed(queue_name)

    async def _dead_letter(
        self,
        raw: AbstractIncomingMessage,
        queue_name: str,
        reason: str,
    ) -> None:
        await raw.reject(requeue=False)
        self._metrics.record_dead_lettered(queue_name, reason)

    async def health_check(self) -> bool:
        """Return True if the connection is healthy."""
        return await self._connection.health_check()
