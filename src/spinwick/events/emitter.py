"""Where lifecycle events go.

The controller hands every finished operation's LifecycleEvent to a single
EventEmitter and does not care which sinks sit behind it. Sinks:

- LoggingEventEmitter: one log line per operation, level by outcome
- MetricsEventEmitter (metrics.py): Prometheus counters and histograms
- CompositeEventEmitter: several sinks at once
- NullEventEmitter: drops everything
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from src.spinwick.events.models import EventType, LifecycleEvent


logger = logging.getLogger(__name__)


OUTCOME_LOG_LEVELS: Dict[EventType, int] = {
    EventType.COMPLETION: logging.INFO,
    EventType.ABORTED: logging.WARNING,
    EventType.TIMEOUT: logging.WARNING,
    EventType.ERROR: logging.ERROR,
}


class EventSinkType(str, Enum):
    LOGGING = "logging"
    METRICS = "metrics"


class EventEmitter(ABC):
    """Receives one LifecycleEvent per finished operation.

    ``emit`` runs on the operation's own task, after the outcome is known;
    implementations log their own problems instead of raising.
    """

    @abstractmethod
    async def emit(self, event: LifecycleEvent) -> None:
        ...


class LoggingEventEmitter(EventEmitter):
    """Logs ``SpinWick <operation> <outcome> for <repeatable id>``.

    COMPLETION logs at INFO, ABORTED and TIMEOUT at WARNING, ERROR at ERROR.
    The event's fields are attached as ``extra``.
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    async def emit(self, event: LifecycleEvent) -> None:
        self._logger.log(
            OUTCOME_LOG_LEVELS.get(event.event_type, logging.INFO),
            "SpinWick %s %s for %s",
            event.operation,
            event.event_type.value,
            event.environment_id,
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Sends each event to every child sink.

    A sink that raises is logged and skipped.
    """

    def __init__(self, emitters: Iterable[EventEmitter] = ()):
        self._emitters: Sequence[EventEmitter] = tuple(emitters)

    async def emit(self, event: LifecycleEvent) -> None:
        for emitter in self._emitters:
            try:
                await emitter.emit(event)
            except Exception as e:
                logger.error(
                    "Event sink %s failed",
                    type(emitter).__name__,
                    extra={
                        "sink": type(emitter).__name__,
                        "event_type": event.event_type.value,
                        "environment_id": event.environment_id,
                        "error": str(e),
                    },
                )


class NullEventEmitter(EventEmitter):
    async def emit(self, event: LifecycleEvent) -> None:
        return None


def _metrics_sink(logger_name: Optional[str]) -> EventEmitter:
    # metrics.py imports this module
    from src.spinwick.events.metrics import MetricsEventEmitter

    return MetricsEventEmitter()


SINK_BUILDERS: Dict[EventSinkType, Callable[[Optional[str]], EventEmitter]] = {
    EventSinkType.LOGGING: lambda logger_name: LoggingEventEmitter(logger_name=logger_name),
    EventSinkType.METRICS: _metrics_sink,
}


def create_event_emitter(
    sink_types: Optional[List[EventSinkType]] = None,
    logger_name: Optional[str] = None,
) -> EventEmitter:
    """Build the emitter for ``sink_types``.

    No sinks means logging only. Several sinks are wrapped in a
    CompositeEventEmitter.
    """
    emitters = [SINK_BUILDERS[sink](logger_name) for sink in sink_types or []]
    if not emitters:
        return LoggingEventEmitter(logger_name=logger_name)
    if len(emitters) == 1:
        return emitters[0]
    return CompositeEventEmitter(emitters)
