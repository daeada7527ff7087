"""Lifecycle outcome events, their sinks and the Prometheus metrics."""

from src.spinwick.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.spinwick.events.metrics import (
    MetricsEventEmitter,
    SpinWickMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.spinwick.events.models import EventType, LifecycleEvent

__all__ = [
    "CompositeEventEmitter",
    "EventEmitter",
    "EventSinkType",
    "EventType",
    "LifecycleEvent",
    "LoggingEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    "SpinWickMetrics",
    "create_event_emitter",
    "generate_metrics_output",
    "get_metrics",
]
