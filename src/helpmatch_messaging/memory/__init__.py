"""In-memory broker for testing without RabbitMQ."""

from __future__ import annotations

from .broker import (
    InMemoryBroker,
    InMemoryChannel,
    InMemoryConnection,
    InMemoryIncomingMessage,
    InMemoryQueue,
)

__all__ = [
    "InMemoryBroker",
    "InMemoryChannel",
    "InMemoryConnection",
    "InMemoryIncomingMessage",
    "InMemoryQueue",
]
