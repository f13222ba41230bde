"""Tests for DeadLetterQueue inspection, replay and purge."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from helpmatch_messaging.exceptions import MessagingConnectionError
from helpmatch_messaging.memory import InMemoryBroker
from helpmatch_messaging.rabbitmq.connection import RabbitMQConnectionManager
from helpmatch_messaging.rabbitmq.consumer import RabbitMQConsumer
from helpmatch_messaging.rabbitmq.dead_letter import DeadLetterQueue
from helpmatch_messaging.rabbitmq.publisher import PriorityPublisher


async def _dead_letter_two(
    broker: InMemoryBroker,
    publisher: PriorityPublisher,
    consumer: RabbitMQConsumer,
) -> None:
    await consumer.consume("request_created", AsyncMock(side_effect=RuntimeError("down")))
    await publisher.publish("request_created", {"id": 1, "urgency": "low"})
    await publisher.publish("request_created", {"id": 2, "urgency": "urgent"})
    await broker.dispatch()
    await consumer.cancel("request_created")


@pytest.mark.asyncio
async def test_depth_and_peek_leave_messages_in_place(
    broker: InMemoryBroker,
    connection: RabbitMQConnectionManager,
    publisher: PriorityPublisher,
    consumer: RabbitMQConsumer,
) -> None:
    await _dead_letter_two(broker, publisher, consumer)
    dlq = DeadLetterQueue(connection, "request_created")

    assert dlq.name == "request_created.dlq"
    assert await dlq.depth() == 2
    bodies = await dlq.peek(limit=5)
    assert sorted(json.loads(b)["id"] for b in bodies) == [1, 2]
    assert await dlq.depth() == 2
    assert len(await dlq.peek(limit=1)) == 1
    await connection.close()


@pytest.mark.asyncio
async def test_replay_moves_messages_back_with_priority(
    broker: InMemoryBroker,
    connection: RabbitMQConnectionManager,
    publisher: PriorityPublisher,
    consumer: RabbitMQConsumer,
) -> None:
    await _dead_letter_two(broker, publisher, consumer)
    dlq = DeadLetterQueue(connection, "request_created")

    assert await dlq.replay(limit=1) == 1
    assert await dlq.depth() == 1
    assert await dlq.replay() == 1
    assert await dlq.depth() == 0

    primary = broker.queue("request_created")
    assert sorted(primary.ready_priorities()) == [1, 9]
    ids = [json.loads(b)["id"] for b in primary.ready_bodies()]
    assert ids == [2, 1]
    await connection.close()


@pytest.mark.asyncio
async def test_replayed_messages_are_processed(
    broker: InMemoryBroker,
    connection: RabbitMQConnectionManager,
    publisher: PriorityPublisher,
    consumer: RabbitMQConsumer,
) -> None:
    await _dead_letter_two(broker, publisher, consumer)
    await DeadLetterQueue(connection, "request_created").replay()

    handler = AsyncMock()
    await consumer.consume("request_created", handler)
    assert await broker.dispatch() == 2
    assert handler.await_count == 2
    assert broker.ready_bodies("request_created.dlq") == []
    await connection.close()


@pytest.mark.asyncio
async def test_purge_empties_dlq(
    broker: InMemoryBroker,
    connection: RabbitMQConnectionManager,
    publisher: PriorityPublisher,
    consumer: RabbitMQConsumer,
) -> None:
    await _dead_letter_two(broker, publisher, consumer)
    dlq = DeadLetterQueue(connection, "request_created")
    assert await dlq.purge() == 2
    assert await dlq.depth() == 0
    await connection.close()


@pytest.mark.asyncio
async def test_requires_channel(
    broker: InMemoryBroker, connection: RabbitMQConnectionManager
) -> None:
    broker.refuse_connections()
    with pytest.raises(MessagingConnectionError):
        await DeadLetterQueue(connection, "request_created").depth()
    await connection.close()


@pytest.mark.asyncio
async def test_replay_stops_when_consumer_keeps_rejecting(
    broker: InMemoryBroker,
    connection: RabbitMQConnectionManager,
    publisher: PriorityPublisher,
    consumer: RabbitMQConsumer,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    await _dead_letter_two(broker, publisher, consumer)
    failing = AsyncMock(side_effect=RuntimeError("still down"))
    await consumer.consume("request_created", failing)

    exchange = connection.channel.default_exchange
    publish = exchange.publish

    async def publish_and_deliver(*args: object, **kwargs: object) -> None:
        await publish(*args, **kwargs)
        await broker.dispatch()

    monkeypatch.setattr(exchange, "publish", publish_and_deliver)

    dlq = DeadLetterQueue(connection, "request_created")
    assert await dlq.replay() == 2
    assert failing.await_count == 2
    assert await dlq.depth() == 2
    await connection.close()
