"""Tests for PayloadSerializer."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from helpmatch_messaging.events import RequestCreated
from helpmatch_messaging.exceptions import MessagingSerializationError
from helpmatch_messaging.serialization import PayloadSerializer


def test_serialize_dict_is_plain_json_without_envelope() -> None:
    body = PayloadSerializer().serialize({"id": 1, "urgency": "urgent"})
    assert json.loads(body) == {"id": 1, "urgency": "urgent"}


def test_serialize_model_and_datetime() -> None:
    serializer = PayloadSerializer()
    body = serializer.serialize(RequestCreated(id=4, title="Walk", urgency="low"))
    assert json.loads(body)["title"] == "Walk"

    created = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    data = json.loads(serializer.serialize({"created_at": created}))
    assert data["created_at"] == "2025-01-02T03:04:05+00:00"


def test_serialize_unsupported_type_raises() -> None:
    with pytest.raises(MessagingSerializationError) as exc_info:
        PayloadSerializer().serialize({"bad": object()})
    assert exc_info.value.__cause__ is not None


@pytest.mark.parametrize("raw", [b"not json", b"{", b"\xff\xfe\x00"])
def test_deserialize_malformed_raises(raw: bytes) -> None:
    with pytest.raises(MessagingSerializationError):
        PayloadSerializer().deserialize(raw)


def test_deserialize_utf8_json() -> None:
    raw = '{"title": "Hjelp med handling"}'.encode()
    assert PayloadSerializer().deserialize(raw) == {"title": "Hjelp med handling"}
