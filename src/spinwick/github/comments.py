"""Bot comment housekeeping on pull requests.

CommentReconciler owns two concerns:

- Removing stale bot comments (old status messages) before a new status is
  posted, so a PR shows only the latest SpinWick state.
- Posting the configured guidance comment when a label is newly added,
  without posting the same text twice.

Label diffing and guidance posting run under a single process-wide lock:
two near-simultaneous events for a PR must not both decide that a label is
new and both post its message.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from src.spinwick.config import LabelMessage
from src.spinwick.github.client import GitHubAPIError, GitHubClient
from src.spinwick.github.models import IssueComment, PullRequest


logger = logging.getLogger(__name__)


class CommentReconciler:
    """Removes stale bot comments and posts label guidance comments.

    Attributes:
        github_client: GitHub API client.
        bot_username: Login of the bot; only its comments are deleted.
        label_messages: Guidance comments keyed by label.
        destroyed_message: Text of the destruction confirmation comment.
        status_messages: Substrings identifying the bot's status comments.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        bot_username: str,
        label_messages: Sequence[LabelMessage] = (),
        destroyed_message: str = "",
        setup_failed_message: str = "",
    ):
        self.github_client = github_client
        self.bot_username = bot_username
        self.label_messages = list(label_messages)
        self.destroyed_message = destroyed_message
        self.status_messages = [
            message
            for message in (
                setup_failed_message,
                "New commit detected",
                "Timed out waiting",
                "Mattermost test server created!",
                "Mattermost test server updated",
                "Mattermost test server with CWS created!",
                "Creating a new SpinWick test server",
                "Creating a new HA SpinWick test server",
                "Creating a new SpinWick test cloud server with CWS",
                "Creating a CWS SpinWick test server",
                "No Kubernetes clusters available at the moment",
                "CWS test server created!",
                "CWS test server updated",
            )
            if message
        ]
        self.lock = asyncio.Lock()
        self._seen_labels: Dict[Tuple[str, str, int], List[str]] = {}

    def _is_bot_comment(self, comment: IssueComment) -> bool:
        return comment.author == self.bot_username

    async def remove_comments_with_messages(
        self,
        pr: PullRequest,
        messages: Iterable[str],
        comments: Optional[Sequence[IssueComment]] = None,
    ) -> int:
        """Delete bot comments whose body contains any of ``messages``.

        Args:
            pr: Pull request to clean up.
            messages: Substrings to match against comment bodies.
            comments: Already-fetched comments; fetched when omitted.

        Returns:
            Number of comments deleted. Individual delete failures are
            logged and skipped.
        """
        messages = [m for m in messages if m]
        if comments is None:
            comments = await self.github_client.list_comments(
                pr.owner, pr.repository, pr.number
            )

        deleted = 0
        for comment in comments:
            if not self._is_bot_comment(comment):
                continue
            if not any(message in comment.body for message in messages):
                continue
            try:
                await self.github_client.delete_comment(
                    pr.owner, pr.repository, comment.id
                )
                deleted += 1
            except GitHubAPIError:
                logger.exception(
                    "Unable to remove old bot comment",
                    extra={"pr_id": pr.pr_id, "comment_id": comment.id},
                )
        return deleted

    async def remove_old_comments(self, pr: PullRequest) -> int:
        """Delete every earlier SpinWick status comment on the PR."""
        return await self.remove_comments_with_messages(pr, self.status_messages)

    async def check_pull_request_for_changes(self, pr: PullRequest) -> List[str]:
        """Post guidance comments for labels added since the last event.

        The first time a PR is seen every label counts as new. Only the
        label snapshot is kept, in memory.

        Returns:
            Labels that were treated as newly added.
        """
        key = (pr.owner, pr.repository, pr.number)
        async with self.lock:
            previous = self._seen_labels.get(key)
            added = [
                label for label in pr.labels
                if previous is None or label not in previous
            ]
            self._seen_labels[key] = list(pr.labels)

            for label in added:
                await self._handle_label_added(pr, label)

        if added:
            logger.info(
                "PR labels changed",
                extra={"pr_id": pr.pr_id, "added_labels": added},
            )
        return added

    async def _handle_label_added(self, pr: PullRequest, label: str) -> None:
        comments = await self.github_client.list_comments(
            pr.owner, pr.repository, pr.number
        )

        await self.remove_comments_with_messages(
            pr, [self.destroyed_message], comments=comments
        )

        for label_message in self.label_messages:
            if label_message.label != label:
                continue
            message = label_message.message.replace("USERNAME", pr.author)
            already_posted = any(
                self._is_bot_comment(c) and message in c.body for c in comments
            )
            if already_posted:
                continue
            logger.info(
                "Posting message for label",
                extra={"pr_id": pr.pr_id, "label": label},
            )
            await self.github_client.create_comment(
                pr.owner, pr.repository, pr.number, message
            )

    def forget(self, pr: PullRequest) -> None:
        self._seen_labels.pop((pr.owner, pr.repository, pr.number), None)
