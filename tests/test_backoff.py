"""Tests for ReconnectBackoff."""

from __future__ import annotations

import pytest

from helpmatch_messaging.backoff import ReconnectBackoff


def test_default_schedule_is_capped_exponential() -> None:
    backoff = ReconnectBackoff()
    assert backoff.delay_for(1) == 2.0
    assert backoff.delay_for(2) == 3.0
    assert backoff.delay_for(3) == 4.5
    assert backoff.delay_for(4) == 5.0  # capped
    assert backoff.delay_for(19) == 5.0


def test_delay_for_zero_returns_zero() -> None:
    assert ReconnectBackoff().delay_for(0) == 0.0


def test_should_retry_stops_at_budget() -> None:
    backoff = ReconnectBackoff(max_retries=3)
    assert backoff.should_retry(1) is True
    assert backoff.should_retry(2) is True
    assert backoff.should_retry(3) is False


def test_invalid_parameters_raise() -> None:
    with pytest.raises(ValueError, match="max_retries"):
        ReconnectBackoff(max_retries=0)
    with pytest.raises(ValueError, match="initial_delay and max_delay"):
        ReconnectBackoff(initial_delay=-1.0)
    with pytest.raises(ValueError, match="growth_factor"):
        ReconnectBackoff(growth_factor=0.5)
