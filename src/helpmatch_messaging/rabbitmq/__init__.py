"""RabbitMQ transport: connection lifecycle, topology, publisher, consumer, DLQ tools."""

from __future__ import annotations

from .connection import ConnectionState, RabbitMQConnectionManager
from .consumer import RabbitMQConsumer
from .dead_letter import DeadLetterQueue
from .publisher import PriorityPublisher
from .topology import (
    assert_queue_with_dead_letter,
    dead_letter_queue_name,
    queue_arguments,
)

__all__ = [
    "ConnectionState",
    "DeadLetterQueue",
    "PriorityPublisher",
    "RabbitMQConnectionManager",
    "RabbitMQConsumer",
    "assert_queue_with_dead_letter",
    "dead_letter_queue_name",
    "queue_arguments",
]
