"""PriorityPublisher — persistent, urgency-prioritised publishes to a named queue."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aio_pika

from ..metrics import MessagingMetrics, default_metrics
from ..ports import IMessagePublisher
from ..priority import priority_for, urgency_of
from ..serialization import PayloadSerializer
from .topology import DEFAULT_MAX_PRIORITY, assert_queue_with_dead_letter

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel

    from .connection import RabbitMQConnectionManager

_logger = logging.getLogger(__name__)


class PriorityPublisher(IMessagePublisher):
    """Publishes JSON messages through the default exchange to a queue.

    Fire-and-forget: nothing raises into the caller. ``publish`` returns
    False when the message was dropped (no channel, topology conflict,
    serialization failure, broker error) so callers can decide to alert or
    retry. There is no local buffering of dropped messages.
    """

    def __init__(
        self,
        connection: RabbitMQConnectionManager,
        *,
        serializer: PayloadSerializer | None = None,
        metrics: MessagingMetrics | None = None,
        max_priority: int | None = DEFAULT_MAX_PRIORITY,
    ) -> None:
        """Configure publisher.

        Args:
            connection: Shared connection manager.
            serializer: Encodes messages; default PayloadSerializer().
            metrics: Counter sink; default is the process-wide instance.
            max_priority: ``x-max-priority`` declared on the queue.
        """
        self._connection = connection
        self._serializer = serializer or PayloadSerializer()
        self._metrics = metrics or default_metrics()
        self._max_priority = max_priority

    async def _ensure_channel(self) -> AbstractChannel | None:
        channel = self._connection.get_channel()
        if channel is None:
            _logger.warning("No channel yet, connecting...")
            await self._connection.connect()
            channel = self._connection.get_channel()
        return channel

    async def publish(self, queue_name: str, message: Any, **kwargs: Any) -> bool:  # noqa: ARG002
        """Publish *message* to *queue_name* with a priority from its urgency.

        Returns True once the broker accepted the message.
        """
        channel = await self._ensure_channel()
        if channel is None:
            _logger.error("Channel still not ready. Message for %s dropped.", queue_name)
            return False
        try:
            await assert_queue_with_dead_letter(
                channel,
                queue_name,
                max_priority=self._max_priority,
            )
            priority = priority_for(urgency_of(message))
            body = self._serializer.serialize(message)
            await channel.default_exchange.publish(
                aio_pika.Message(
                    body=body,
                    content_type="application/json",
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                    priority=priority,
                ),
                routing_key=queue_name,
            )
        except Exception:  # noqa: BLE001
            _logger.exception("Failed to publish message to %s", queue_name)
            return False
        self._metrics.record_published(queue_name)
        _logger.info("Sent message to queue %s (priority=%d)", queue_name, priority)
        return True

    async def publish_raw(
        self,
        queue_name: str,
        body: bytes,
        *,
        priority: int | None = None,
    ) -> bool:
        """Put *body* on *queue_name* unchanged, bypassing serialization.

        Used in test environments to inject malformed payloads and exercise
        the dead-letter path end-to-end. Not counted as a publish.
        """
        channel = await self._ensure_channel()
        if channel is None:
            _logger.error("Channel still not ready. Raw message for %s dropped.", queue_name)
            return False
        try:
            await assert_queue_with_dead_letter(
                channel,
                queue_name,
                max_priority=self._max_priority,
            )
            await channel.default_exchange.publish(
                aio_pika.Message(
                    body=body,
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                    priority=priority,
                ),
                routing_key=queue_name,
            )
        except Exception:  # noqa: BLE001
            _logger.exception("Failed to inject raw message into %s", queue_name)
            return False
        _logger.warning("Injected raw message into %s", queue_name)
        return True

    async def health_check(self) -> bool:
        """Return True if the connection is healthy."""
        return await self._connection.health_check()
