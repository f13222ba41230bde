"""Urgency labels and their broker priorities."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from typing import Any


class Urgency(str, enum.Enum):
    """Urgency of a help request, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def parse(cls, value: object) -> Urgency:
        """Parse a label case-insensitively; anything unrecognised is ``LOW``."""
        if isinstance(value, Urgency):
            return value
        if not isinstance(value, str):
            return cls.LOW
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.LOW


PRIORITY_BY_URGENCY: Mapping[Urgency, int] = {
    Urgency.LOW: 1,
    Urgency.MEDIUM: 3,
    Urgency.HIGH: 6,
    Urgency.URGENT: 9,
}

DEFAULT_PRIORITY = PRIORITY_BY_URGENCY[Urgency.LOW]


def priority_for(urgency: object) -> int:
    """Return the broker priority (1-9) for an urgency label."""
    return PRIORITY_BY_URGENCY[Urgency.parse(urgency)]


def urgency_of(message: Any) -> object:
    """Extract the raw ``urgency`` value from a dict or an object attribute."""
    if isinstance(message, Mapping):
        return message.get("urgency")
    return getattr(message, "urgency", None)
