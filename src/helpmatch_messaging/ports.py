"""Ports implemented by the broker adapters; HTTP handlers depend on these."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    MessageHandler = Callable[[Any], Awaitable[None]]


@runtime_checkable
class IMessagePublisher(Protocol):
    """
    Port for publishing events to a named queue.

    Called by request handlers after the database write succeeded.
    """

    async def publish(self, queue_name: str, message: Any, **kwargs: Any) -> bool:
        """
        Publish *message* to *queue_name*.

        Returns:
            True when the broker accepted the message, False when it was
            dropped. Never raises for broker-side failures.
        """
        ...


@runtime_checkable
class IMessageConsumer(Protocol):
    """
    Port for subscribing a handler to a named queue.
    """

    async def consume(self, queue_name: str, handler: MessageHandler) -> bool:
        """
        Subscribe *handler* to *queue_name*.

        Args:
            queue_name: Queue to consume with manual acknowledgement.
            handler: Async callable invoked once per valid delivery; raising
                dead-letters the delivery.

        Returns:
            True when subscribed now, False when deferred until connected.
        """
        ...
