"""MessagingContext — one service process's broker wiring, injected where needed."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .config import BrokerSettings
from .metrics import MessagingMetrics, default_metrics
from .rabbitmq import (
    DeadLetterQueue,
    PriorityPublisher,
    RabbitMQConnectionManager,
    RabbitMQConsumer,
)

if TYPE_CHECKING:
    from types import TracebackType

    from .events import EventRegistry
    from .rabbitmq.connection import ConnectFactory


class MessagingContext:
    """Builds the connection manager, publisher and consumer from settings.

    Hold one per process (or per test) instead of module-level globals::

        async with MessagingContext(BrokerSettings.from_env()) as messaging:
            await messaging.consumer.consume("request_created", on_request)
    """

    def __init__(
        self,
        settings: BrokerSettings | None = None,
        *,
        registry: EventRegistry | None = None,
        metrics: MessagingMetrics | None = None,
        connect_factory: ConnectFactory | None = None,
        **connect_kwargs: Any,
    ) -> None:
        self.settings = settings or BrokerSettings.from_env()
        self.metrics = metrics or default_metrics()
        self.connection = RabbitMQConnectionManager(
            self.settings,
            connect_factory=connect_factory,
            **connect_kwargs,
        )
        self.publisher = PriorityPublisher(
            self.connection,
            metrics=self.metrics,
            max_priority=self.settings.max_priority,
        )
        self.consumer = RabbitMQConsumer(
            self.connection,
            registry=registry,
            metrics=self.metrics,
            max_priority=self.settings.max_priority,
        )

    def dead_letters(self, queue_name: str) -> DeadLetterQueue:
        return DeadLetterQueue(
            self.connection,
            queue_name,
            max_priority=self.settings.max_priority,
        )

    async def start(self) -> None:
        """Connect eagerly; failures become scheduled retries."""
        await self.connection.connect()

    async def close(self) -> None:
        await self.connection.close()

    async def __aenter__(self) -> MessagingContext:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
