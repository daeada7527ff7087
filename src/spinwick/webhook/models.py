"""Inbound webhook event models.

Two families of webhooks reach SpinWick:

- GitHub events (``pull_request``, ``issue_comment``, ``ping``), parsed into
  PullRequestEvent, IssueCommentEvent and PingEvent by WebhookHandler.
- Provisioner state-change notifications, parsed into CloudWebhookPayload and
  fanned out to whichever waiter owns the installation's channel.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.spinwick.github.models import PullRequest


class PullRequestAction(str, Enum):
    """GitHub pull_request actions SpinWick reacts to.

    Any other action is still parsed (so label reconciliation runs) but maps
    to OTHER and never triggers a lifecycle operation.
    """

    LABELED = "labeled"
    UNLABELED = "unlabeled"
    SYNCHRONIZE = "synchronize"
    CLOSED = "closed"
    OPENED = "opened"
    REOPENED = "reopened"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "PullRequestAction":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class PullRequestEvent(BaseModel):
    """Parsed GitHub pull_request webhook event.

    Attributes:
        action: The pull_request action.
        label: Label added or removed, for labeled/unlabeled actions.
        pull_request: Snapshot of the PR as carried in the payload. Labels
            are refreshed from the API before dispatch.
    """

    action: PullRequestAction
    label: Optional[str] = None
    pull_request: PullRequest

    @property
    def number(self) -> int:
        return self.pull_request.number


class IssueCommentEvent(BaseModel):
    """Parsed GitHub issue_comment webhook event."""

    action: str
    owner: str
    repository: str
    issue_number: int
    is_pull_request: bool
    comment_body: str
    commenter: str

    @property
    def is_slash_command(self) -> bool:
        return self.action == "created" and self.comment_body.strip().startswith("/")


class PingEvent(BaseModel):
    hook_id: Optional[int] = None
    zen: str = ""


class CloudWebhookPayload(BaseModel):
    """State-change notification delivered by the cloud provisioner.

    Field names follow the provisioner's JSON (``new_state``, ``old_state``,
    ``extra_data``).

    Attributes:
        type: Resource type, e.g. ``installation``.
        id: ID of the resource whose state changed.
        new_state: State the resource moved to.
        old_state: State the resource moved from.
        timestamp: Provider timestamp in nanoseconds.
        extra_data: Provider-specific details.
    """

    model_config = ConfigDict(extra="ignore")

    type: str = ""
    id: str = Field(..., min_length=1)
    new_state: str = ""
    old_state: str = ""
    timestamp: int = 0
    extra_data: Dict[str, Any] = Field(default_factory=dict)
