"""PayloadSerializer — JSON bytes on the wire, no envelope."""

from __future__ import annotations

import json
from typing import Any

from .exceptions import MessagingSerializationError


def _json_serializer(obj: Any) -> Any:
    """Serialize datetime and other non-JSON types."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class PayloadSerializer:
    """Serialize messages to UTF-8 JSON bytes and back.

    Producers and consumers agree on the payload schema out-of-band; typed
    decoding happens in ``EventRegistry``.
    """

    def serialize(self, message: Any) -> bytes:
        """Encode a dict, list or pydantic model to JSON bytes."""
        try:
            if hasattr(message, "model_dump"):
                message = message.model_dump(mode="json")
            return json.dumps(message, default=_json_serializer).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise MessagingSerializationError(str(e)) from e

    def deserialize(self, raw: bytes) -> Any:
        """Decode JSON bytes; raises ``MessagingSerializationError`` on bad input."""
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise MessagingSerializationError(str(e)) from e
