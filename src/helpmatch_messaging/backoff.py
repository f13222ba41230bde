"""ReconnectBackoff — capped exponential backoff for broker connection attempts."""

from __future__ import annotations


class ReconnectBackoff:
    """Deterministic capped exponential backoff with a bounded retry budget.

    The delay before retry ``k`` (1-based count of consecutive failures) is
    ``min(max_delay, initial_delay * growth_factor ** (k - 1))``.
    """

    def __init__(
        self,
        *,
        max_retries: int = 20,
        initial_delay: float = 2.0,
        growth_factor: float = 1.5,
        max_delay: float = 5.0,
    ) -> None:
        """Configure the schedule.

        Args:
            max_retries: Consecutive failures after which retrying stops.
            initial_delay: Delay in seconds after the first failure.
            growth_factor: Multiplier applied per further failure.
            max_delay: Cap on any single delay in seconds.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if initial_delay < 0 or max_delay < 0:
            raise ValueError("initial_delay and max_delay must be >= 0")
        if growth_factor < 1:
            raise ValueError("growth_factor must be >= 1")
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.growth_factor = growth_factor
        self.max_delay = max_delay

    def should_retry(self, retries: int) -> bool:
        """Return True while the failure count is below the budget."""
        return retries < self.max_retries

    def delay_for(self, retries: int) -> float:
        """Return the delay in seconds after ``retries`` consecutive failures."""
        if retries < 1:
            return 0.0
        delay = self.initial_delay * (self.growth_factor ** (retries - 1))
        return float(min(self.max_delay, delay))
