"""Typed event payloads and the queue-name → model registry used by consumers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import PayloadValidationError

REQUEST_CREATED = "request_created"
OFFER_CREATED = "offer_created"


class Event(BaseModel):
    """Base class for events carried as plain JSON objects on a queue.

    Unknown fields are kept so producers can add fields ahead of consumers.
    """

    model_config = ConfigDict(frozen=True, extra="allow")


class RequestCreated(Event):
    """A senior created a help request; published after the row is stored."""

    id: int
    user_id: int | None = None
    title: str | None = None
    category: str | None = None
    description: str | None = None
    urgency: str = "low"


class OfferCreated(Event):
    """A helper offered to take a request."""

    request_id: int
    helper_id: int
    message: str | None = Field(default=None, max_length=2000)


class EventRegistry:
    """Maps queue names to the event model their payloads must satisfy.

    Create instances per service context; ``default_registry()`` returns one
    with the built-in events registered.
    """

    def __init__(self) -> None:
        self._registry: dict[str, type[Event]] = {}

    def register(self, queue_name: str, event_class: type[Event]) -> None:
        """Register *event_class* as the schema for *queue_name*."""
        self._registry[queue_name] = event_class

    def get(self, queue_name: str) -> type[Event] | None:
        return self._registry.get(queue_name)

    def has(self, queue_name: str) -> bool:
        return queue_name in self._registry

    def decode(self, queue_name: str, data: Any) -> Any:
        """Validate *data* against the model registered for *queue_name*.

        Returns *data* unchanged when no model is registered; raises
        ``PayloadValidationError`` when the payload does not fit the model.
        """
        event_class = self.get(queue_name)
        if event_class is None:
            return data
        try:
            return event_class.model_validate(data)
        except PydanticValidationError as e:
            raise PayloadValidationError(event_class.__name__, str(e)) from e

    def list_registered(self) -> list[str]:
        return list(self._registry.keys())

    def clear(self) -> None:
        """Remove all registrations (testing utility)."""
        self._registry.clear()


def default_registry() -> EventRegistry:
    """Return a new registry with ``RequestCreated`` and ``OfferCreated``."""
    registry = EventRegistry()
    registry.register(REQUEST_CREATED, RequestCreated)
    registry.register(OFFER_CREATED, OfferCreated)
    return registry
