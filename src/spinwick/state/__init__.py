"""Installation state waiting."""

from src.spinwick.state.models import (
    DELETION_STATES,
    INACTIVE_STATES,
    STATE_CREATION_FAILED,
    STATE_DELETED,
    STATE_DELETION_FAILED,
    STATE_STABLE,
    STATE_UPDATE_FAILED,
    InstallationFailedError,
    LabelRemovedError,
    NoCompatibleClustersError,
    StateWaitError,
    StateWaitTimeoutError,
)
from src.spinwick.state.waiter import (
    PollingStateWaiter,
    StateWaiter,
    WebhookStateWaiter,
)

__all__ = [
    "DELETION_STATES",
    "INACTIVE_STATES",
    "STATE_CREATION_FAILED",
    "STATE_DELETED",
    "STATE_DELETION_FAILED",
    "STATE_STABLE",
    "STATE_UPDATE_FAILED",
    "InstallationFailedError",
    "LabelRemovedError",
    "NoCompatibleClustersError",
    "PollingStateWaiter",
    "StateWaitError",
    "StateWaitTimeoutError",
    "StateWaiter",
    "WebhookStateWaiter",
]
