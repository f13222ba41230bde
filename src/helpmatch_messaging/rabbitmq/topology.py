"""Queue topology: every queue is paired with a durable ``<queue>.dlq`` sink."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from aio_pika.exceptions import ChannelPreconditionFailed

from ..exceptions import TopologyConflictError

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel, AbstractQueue

DEAD_LETTER_SUFFIX = ".dlq"
DEFAULT_MAX_PRIORITY = 10


def dead_letter_queue_name(queue_name: str) -> str:
    return f"{queue_name}{DEAD_LETTER_SUFFIX}"


def queue_arguments(
    queue_name: str,
    max_priority: int | None = DEFAULT_MAX_PRIORITY,
    extra_arguments: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Arguments for the primary queue: dead-letter via the default exchange."""
    arguments: dict[str, Any] = {
        "x-dead-letter-exchange": "",
        "x-dead-letter-routing-key": dead_letter_queue_name(queue_name),
    }
    if max_priority is not None:
        arguments["x-max-priority"] = max_priority
    if extra_arguments:
        arguments.update(extra_arguments)
    return arguments


async def assert_queue_with_dead_letter(
    channel: AbstractChannel,
    queue_name: str,
    *,
    max_priority: int | None = DEFAULT_MAX_PRIORITY,
    extra_arguments: dict[str, Any] | None = None,
) -> tuple[AbstractQueue, AbstractQueue]:
    """Declare ``<queue_name>.dlq`` and then ``queue_name`` routing into it.

    Idempotent for identical arguments. The DLQ is declared first because
    some brokers validate dead-letter targets at declaration time. Pass
    ``max_priority=None`` for a queue without priority ordering.

    Returns:
        ``(queue, dead_letter_queue)``.

    Raises:
        TopologyConflictError: A queue exists with incompatible arguments.
            The broker closes the channel when this happens.
    """
    dlq_name = dead_letter_queue_name(queue_name)
    try:
        dead_letter_queue = await channel.declare_queue(dlq_name, durable=True)
    except ChannelPreconditionFailed as e:
        raise TopologyConflictError(dlq_name, str(e)) from e
    try:
        queue = await channel.declare_queue(
            queue_name,
            durable=True,
            arguments=queue_arguments(queue_name, max_priority, extra_arguments),
        )
    except ChannelPreconditionFailed as e:
        raise TopologyConflictError(queue_name, str(e)) from e
    return queue, dead_letter_queue
