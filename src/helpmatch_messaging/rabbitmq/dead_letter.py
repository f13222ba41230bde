"""DeadLetterQueue — operator tooling to inspect, replay and purge ``<queue>.dlq``."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aio_pika

from ..exceptions import MessagingConnectionError
from .topology import (
    DEFAULT_MAX_PRIORITY,
    assert_queue_with_dead_letter,
    dead_letter_queue_name,
)

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel, AbstractQueue

    from .connection import RabbitMQConnectionManager

_logger = logging.getLogger(__name__)


class DeadLetterQueue:
    """Handle on the dead-letter queue paired with *queue_name*.

    Messages land here when a consumer rejects them. Nothing retries them
    automatically; an operator inspects them with ``peek`` and moves them back
    with ``replay`` once the cause is fixed.
    """

    def __init__(
        self,
        connection: RabbitMQConnectionManager,
        queue_name: str,
        *,
        max_priority: int | None = DEFAULT_MAX_PRIORITY,
    ) -> None:
        self._connection = connection
        self.queue_name = queue_name
        self.name = dead_letter_queue_name(queue_name)
        self._max_priority = max_priority

    async def _declare(self) -> tuple[AbstractChannel, AbstractQueue]:
        channel = self._connection.get_channel()
        if channel is None:
            await self._connection.connect()
            channel = self._connection.get_channel()
        if channel is None:
            raise MessagingConnectionError("Channel not ready")
        _, dead_letter_queue = await assert_queue_with_dead_letter(
            channel,
            self.queue_name,
            max_priority=self._max_priority,
        )
        return channel, dead_letter_queue

    async def depth(self) -> int:
        """Number of messages waiting in the DLQ."""
        _, dead_letter_queue = await self._declare()
        return int(dead_letter_queue.declaration_result.message_count or 0)

    async def peek(self, limit: int = 10) -> list[bytes]:
        """Return up to *limit* bodies; the messages stay in the DLQ."""
        _, dead_letter_queue = await self._declare()
        held = []
        try:
            while len(held) < limit:
                message = await dead_letter_queue.get(no_ack=False, fail=False)
                if message is None:
                    break
                held.append(message)
        finally:
            for message in held:
                await message.nack(requeue=True)
        return [message.body for message in held]

    async def replay(self, limit: int | None = None) -> int:
        """Move up to *limit* messages back onto the primary queue.

        With no limit, only the messages present when the replay starts are
        moved; a message that fails again and returns to the DLQ is not picked
        up a second time. Each message is acknowledged only after it has been
        republished, with its original priority and headers.
        """
        channel, dead_letter_queue = await self._declare()
        if limit is None:
            limit = int(dead_letter_queue.declaration_result.message_count or 0)
        replayed = 0
        while replayed < limit:
            message = await dead_letter_queue.get(no_ack=False, fail=False)
            if message is None:
                break
            await channel.default_exchange.publish(
                aio_pika.Message(
                    body=message.body,
                    content_type=message.content_type,
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                    priority=message.priority,
                    headers=dict(message.headers or {}),
                ),
                routing_key=self.queue_name,
            )
            await message.ack()
            replayed += 1
        _logger.info("Replayed %d message(s) from %s to %s", replayed, self.name, self.queue_name)
        return replayed

    async def purge(self) -> int:
        """Drop every message in the DLQ; returns how many were removed."""
        _, dead_letter_queue = await self._declare()
        result = await dead_letter_queue.purge()
        count = int(getattr(result, "message_count", 0) or 0)
        _logger.warning("Purged %d message(s) from %s", count, self.name)
        return count
