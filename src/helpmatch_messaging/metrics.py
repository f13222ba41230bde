"""MessagingMetrics — Prometheus counters for publish and consume throughput.

Exposes, labelled by ``queue``:

  - ``helpmatch_messages_published_total``
  - ``helpmatch_messages_processed_total``
  - ``helpmatch_messages_dead_lettered_total`` (also labelled by ``reason``)

Throughput and DLQ rates are computed by the scraper, not here.
"""

from __future__ import annotations

import logging

from prometheus_client import REGISTRY, CollectorRegistry, Counter

_logger = logging.getLogger(__name__)

REASON_MALFORMED = "malformed"
REASON_INVALID = "invalid"
REASON_HANDLER_ERROR = "handler_error"


class MessagingMetrics:
    """Owns the messaging counters on one Prometheus registry.

    Pass a fresh ``CollectorRegistry`` per test; production code shares
    ``default_metrics()``.
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        *,
        namespace: str = "helpmatch",
    ) -> None:
        self.registry = registry if registry is not None else REGISTRY
        self._published = Counter(
            "messages_published_total",
            "Messages handed to the broker",
            ["queue"],
            namespace=namespace,
            registry=self.registry,
        )
        self._processed = Counter(
            "messages_processed_total",
            "Deliveries processed and acknowledged",
            ["queue"],
            namespace=namespace,
            registry=self.registry,
        )
        self._dead_lettered = Counter(
            "messages_dead_lettered_total",
            "Deliveries rejected without requeue",
            ["queue", "reason"],
            namespace=namespace,
            registry=self.registry,
        )

    def record_published(self, queue_name: str) -> None:
        self._safe_inc(self._published, queue=queue_name)

    def record_processed(self, queue_name: str) -> None:
        self._safe_inc(self._processed, queue=queue_name)

    def record_dead_lettered(self, queue_name: str, reason: str) -> None:
        self._safe_inc(self._dead_lettered, queue=queue_name, reason=reason)

    @staticmethod
    def _safe_inc(counter: Counter, **labels: str) -> None:
        try:
            counter.labels(**labels).inc()
        except Exception:  # noqa: BLE001
            _logger.debug("Failed to emit metrics labels", exc_info=True)


_default: MessagingMetrics | None = None


def default_metrics() -> MessagingMetrics:
    """Return the process-wide metrics bound to the default registry."""
    global _default  # noqa: PLW0603
    if _default is None:
        _default = MessagingMetrics()
    return _default
