"""Lifecycle event models for observability.

Every create, update and destroy operation ends with exactly one
LifecycleEvent describing its outcome. Events feed the log and the
Prometheus metrics through the emitters in ``emitter.py`` and
``metrics.py``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Outcome of a lifecycle operation.

    Attributes:
        COMPLETION: The operation finished successfully.
        ABORTED: The operation stopped on purpose (duplicate environment,
            label removed, race lost to another actor, closed PR).
        ERROR: The operation failed.
        TIMEOUT: The operation failed waiting for an image or a state.
    """

    COMPLETION = "completion"
    ABORTED = "aborted"
    ERROR = "error"
    TIMEOUT = "timeout"


class LifecycleEvent(BaseModel):
    """Structured event emitted when a lifecycle operation ends.

    Attributes:
        event_type: Outcome category.
        environment_id: RepeatableID of the environment, e.g.
            ``mattermost-webapp-pr-123``.
        repository: Full repository path in format "{owner}/{repo}".
        timestamp: When the event occurred (UTC timezone).
        details: Context such as ``operation``, ``installation_id``,
            ``duration_seconds`` and ``error_message``.

    Example:
        >>> event = LifecycleEvent(
        ...     event_type=EventType.COMPLETION,
        ...     environment_id="mattermost-pr-42",
        ...     repository="mattermost/mattermost",
        ...     details={"operation": "create", "duration_seconds": 812.4},
        ... )
    """

    event_type: EventType = Field(
        ...,
        description="The outcome of the operation",
    )

    environment_id: str = Field(
        ...,
        min_length=1,
        description="RepeatableID of the environment",
    )

    repository: str = Field(
        ...,
        min_length=1,
        description='Full repository path in format "{owner}/{repo}"',
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the operation",
    )

    @property
    def operation(self) -> str:
        return str(self.details.get("operation", "unknown"))

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event for structured logging.

        Returns:
            Dict[str, Any]: Event fields plus details, timestamp in ISO format.
        """
        return {
            "event_type": self.event_type.value,
            "environment_id": self.environment_id,
            "repository": self.repository,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
