"""Prometheus metrics for SpinWick operations.

Metrics Defined:
- spinwick_operations_total: Counter of finished operations by outcome
- spinwick_operation_duration_seconds: Histogram of operation duration
- spinwick_operations_in_flight: Gauge of running operations
- spinwick_webhook_channels: Gauge of registered provisioner webhook channels

Metrics are exposed at ``/metrics`` in Prometheus text format.
"""

import logging
from typing import ContextManager, Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.spinwick.events.emitter import EventEmitter
from src.spinwick.events.models import LifecycleEvent
from src.spinwick.webhook.channels import WebhookChannelRegistry


logger = logging.getLogger(__name__)


# Image waits alone can take 45 minutes, so buckets reach past an hour
DEFAULT_DURATION_BUCKETS = (
    1.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1200.0,
    1800.0,
    2700.0,
    3600.0,
    5400.0,
)

OPERATIONS = ("create", "update", "destroy")


class SpinWickMetrics:
    """Container for all SpinWick Prometheus metrics.

    Metrics:
        operations_total: Finished operations.
            Labels: repository, operation, outcome
        operation_duration_seconds: Duration of finished operations.
            Labels: operation
        operations_in_flight: Operations currently running.
            Labels: operation
        webhook_channels: Registered webhook channels, read from the
            channel registry at scrape time.

    Attributes:
        registry: The Prometheus registry for these metrics.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize SpinWick metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.operations_total = Counter(
            "spinwick_operations_total",
            "Total number of SpinWick operations by outcome",
            labelnames=["repository", "operation", "outcome"],
            registry=self.registry,
        )

        self.operation_duration_seconds = Histogram(
            "spinwick_operation_duration_seconds",
            "Time spent on SpinWick operations in seconds",
            labelnames=["operation"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.operations_in_flight = Gauge(
            "spinwick_operations_in_flight",
            "Number of SpinWick operations currently running",
            labelnames=["operation"],
            registry=self.registry,
        )

        self.webhook_channels = Gauge(
            "spinwick_webhook_channels",
            "Number of registered provisioner webhook channels",
            registry=self.registry,
        )

        for operation in OPERATIONS:
            self.operations_in_flight.labels(operation=operation).set(0)

    def record_operation(
        self,
        repository: str,
        operation: str,
        outcome: str,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Record a finished operation.

        Args:
            repository: The repository in format "{owner}/{repo}".
            operation: create, update or destroy.
            outcome: Event type value of the outcome.
            duration_seconds: Time the operation took, if known.
        """
        self.operations_total.labels(
            repository=repository,
            operation=operation,
            outcome=outcome,
        ).inc()
        if duration_seconds is not None:
            self.operation_duration_seconds.labels(operation=operation).observe(
                duration_seconds
            )

    def track_in_flight(self, operation: str) -> ContextManager:
        """Context manager counting an operation as running while open."""
        return self.operations_in_flight.labels(operation=operation).track_inprogress()

    def bind_channel_registry(self, channel_registry: WebhookChannelRegistry) -> None:
        self.webhook_channels.set_function(lambda: len(channel_registry))


_default_metrics: Optional[SpinWickMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> SpinWickMetrics:
    """Get or create the metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global instance for the default registry.

    Returns:
        SpinWickMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return SpinWickMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = SpinWickMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus metrics output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Updates Prometheus metrics from lifecycle events.

    Every event increments ``spinwick_operations_total`` with its type as
    the outcome; ``duration_seconds`` in the details is observed in the
    duration histogram.

    Attributes:
        metrics: The SpinWickMetrics instance to update.
    """

    def __init__(
        self,
        metrics: Optional[SpinWickMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        if metrics is not None:
            self._metrics = metrics
        else:
            self._metrics = get_metrics(registry)

    @property
    def metrics(self) -> SpinWickMetrics:
        return self._metrics

    async def emit(self, event: LifecycleEvent) -> None:
        try:
            duration = event.details.get("duration_seconds")
            self._metrics.record_operation(
                repository=event.repository,
                operation=event.operation,
                outcome=event.event_type.value,
                duration_seconds=float(duration) if duration is not None else None,
            )
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "environment_id": event.environment_id,
                    "error": str(e),
                },
            )
