"""Priority-aware, dead-lettering event pipeline between help-request creation and matching."""

from __future__ import annotations

from .backoff import ReconnectBackoff
from .config import BrokerSettings
from .context import MessagingContext
from .events import (
    OFFER_CREATED,
    REQUEST_CREATED,
    Event,
    EventRegistry,
    OfferCreated,
    RequestCreated,
    default_registry,
)
from .exceptions import (
    ConfigurationError,
    HelpMatchError,
    MessagingConnectionError,
    MessagingError,
    MessagingSerializationError,
    PayloadValidationError,
    TopologyConflictError,
)
from .metrics import MessagingMetrics, default_metrics
from .ports import IMessageConsumer, IMessagePublisher
from .priority import PRIORITY_BY_URGENCY, Urgency, priority_for
from .serialization import PayloadSerializer

__all__ = [
    "OFFER_CREATED",
    "PRIORITY_BY_URGENCY",
    "REQUEST_CREATED",
    "BrokerSettings",
    "ConfigurationError",
    "Event",
    "EventRegistry",
    "HelpMatchError",
    "IMessageConsumer",
    "IMessagePublisher",
    "MessagingConnectionError",
    "MessagingContext",
    "MessagingError",
    "MessagingMetrics",
    "MessagingSerializationError",
    "OfferCreated",
    "PayloadSerializer",
    "PayloadValidationError",
    "ReconnectBackoff",
    "RequestCreated",
    "TopologyConflictError",
    "Urgency",
    "default_metrics",
    "default_registry",
    "priority_for",
]
