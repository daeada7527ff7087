"""Installation states and the errors raised while waiting on them."""

from typing import Tuple


STATE_STABLE = "stable"
STATE_CREATION_FAILED = "creation-failed"
STATE_CREATION_NO_COMPATIBLE_CLUSTERS = "creation-no-compatible-clusters"
STATE_UPDATE_FAILED = "update-failed"
STATE_DELETION_REQUESTED = "deletion-requested"
STATE_DELETION_IN_PROGRESS = "deletion-in-progress"
STATE_DELETION_FAILED = "deletion-failed"
STATE_DELETED = "deleted"

DELETION_STATES: Tuple[str, ...] = (
    STATE_DELETION_REQUESTED,
    STATE_DELETION_IN_PROGRESS,
    STATE_DELETED,
)

# Installations in these states no longer count as an active environment
INACTIVE_STATES: Tuple[str, ...] = DELETION_STATES + (STATE_CREATION_FAILED,)

NO_COMPATIBLE_CLUSTERS_MESSAGE = (
    "No Kubernetes clusters available at the moment, please contact the "
    "Mattermost Cloud Team or wait a bit."
)


class StateWaitError(Exception):
    """Base class for installation state wait failures.

    Attributes:
        installation_id: Installation being waited on.
        state: Last state observed, if any.
    """

    def __init__(self, message: str, installation_id: str, state: str = ""):
        self.installation_id = installation_id
        self.state = state
        super().__init__(message)


class StateWaitTimeoutError(StateWaitError):
    """The deadline passed before a target state was reached."""


class InstallationFailedError(StateWaitError):
    """The installation reached one of the failure states."""


class NoCompatibleClustersError(StateWaitError):
    """The provisioner has no cluster able to host the installation.

    Attributes:
        user_message: Comment text explaining the situation to the PR author.
    """

    user_message = NO_COMPATIBLE_CLUSTERS_MESSAGE


class LabelRemovedError(StateWaitError):
    """The installation is being deleted because the SpinWick label was removed."""
