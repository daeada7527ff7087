"""GitHub data models used across SpinWick."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PullRequest(BaseModel):
    """Snapshot of a pull request.

    Snapshots are never mutated; a fresh fetch replaces the working copy and
    derived variants are built with ``model_copy(update=...)``.

    Attributes:
        owner: Repository owner (user or organization).
        repository: Repository name.
        number: Pull request number.
        author: Login of the PR author.
        ref: Head branch name.
        sha: Head commit SHA.
        state: ``open`` or ``closed``.
        labels: Label names currently on the PR.
        created_at: When the PR was opened.
        url: HTML URL of the PR.
    """

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1)
    repository: str = Field(..., min_length=1)
    number: int = Field(..., ge=0)
    author: str = ""
    ref: str = ""
    sha: str = ""
    state: str = "open"
    labels: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    url: str = ""

    @property
    def full_repository(self) -> str:
        return f"{self.owner}/{self.repository}"

    @property
    def pr_id(self) -> str:
        return f"{self.owner}/{self.repository}#{self.number}"

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"

    def has_label(self, label_name: str) -> bool:
        return label_name in self.labels

    @classmethod
    def from_github_response(
        cls, data: Dict[str, Any], labels: Optional[List[str]] = None
    ) -> "PullRequest":
        """Build a snapshot from a GitHub pull request object.

        Args:
            data: The ``pull_request`` object from the REST API or a webhook.
            labels: Label names fetched separately; defaults to the labels
                embedded in ``data``.
        """
        base_repo = (data.get("base") or {}).get("repo") or {}
        head = data.get("head") or {}
        if labels is None:
            labels = [
                label["name"]
                for label in data.get("labels") or []
                if isinstance(label, dict) and label.get("name")
            ]
        return cls(
            owner=(base_repo.get("owner") or {}).get("login", ""),
            repository=base_repo.get("name", ""),
            number=data.get("number", 0),
            author=(data.get("user") or {}).get("login", ""),
            ref=head.get("ref", ""),
            sha=head.get("sha", ""),
            state=data.get("state", "open"),
            labels=labels,
            created_at=data.get("created_at"),
            url=data.get("html_url", ""),
        )


class IssueComment(BaseModel):
    """A comment on an issue or pull request."""

    id: int
    author: str
    body: str

    @classmethod
    def from_github_response(cls, data: Dict[str, Any]) -> "IssueComment":
        return cls(
            id=data["id"],
            author=(data.get("user") or {}).get("login", ""),
            body=data.get("body") or "",
        )
