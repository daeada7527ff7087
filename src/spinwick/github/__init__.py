"""GitHub integration.

- client: async REST client (comments, labels, pull requests, org membership)
- models: PullRequest and IssueComment snapshots
- comments: stale-comment cleanup and label guidance comments
"""

from src.spinwick.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
)
from src.spinwick.github.comments import CommentReconciler
from src.spinwick.github.models import IssueComment, PullRequest

__all__ = [
    "CommentReconciler",
    "GitHubAPIError",
    "GitHubClient",
    "IssueComment",
    "PullRequest",
    "RateLimitError",
]
