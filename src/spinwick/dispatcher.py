"""Event dispatcher: maps GitHub events to lifecycle operations.

| Action      | Condition                          | Operation |
|-------------|------------------------------------|-----------|
| labeled     | label is a SpinWick label          | create    |
| unlabeled   | label is a SpinWick label          | destroy   |
| synchronize | PR carries a SpinWick label        | update (plus the paired server/webapp PR) |
| closed      | PR carries a SpinWick label        | destroy   |

Every event works on a PR snapshot fetched fresh from GitHub, and ends with
label reconciliation (guidance comments for newly added labels).

Slash commands left on PRs (``/spinwick create|update|delete``) are parsed
by ``commands.py`` and translated into label changes or a direct update.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Optional, Set

from src.spinwick.commands import (
    HA_SIZE,
    USAGE,
    SlashCommandError,
    SpinWickCommand,
    parse_slash_command,
)
from src.spinwick.config import SpinWickSettings
from src.spinwick.env_cache import EnvVarCache
from src.spinwick.github.client import GitHubAPIError, GitHubClient
from src.spinwick.github.comments import CommentReconciler
from src.spinwick.github.models import PullRequest
from src.spinwick.identity import repeatable_id
from src.spinwick.lifecycle.base import CreateOptions, UpdateOptions
from src.spinwick.lifecycle.controller import LifecycleController
from src.spinwick.webhook.models import (
    IssueCommentEvent,
    PullRequestAction,
    PullRequestEvent,
)


logger = logging.getLogger(__name__)


class SpinWickKind(str, Enum):
    """Kind of SpinWick requested through a label.

    Attributes:
        STANDARD: Single-node installation.
        HA: High-availability installation with the HA license.
        WITH_CUSTOMER_SERVICE: Installation issued through CWS.
    """

    STANDARD = "standard"
    HA = "ha"
    WITH_CUSTOMER_SERVICE = "with_customer_service"


@dataclass(frozen=True)
class KindProfile:
    size: str
    with_license: bool
    with_customer_service: bool


KIND_PROFILES = {
    SpinWickKind.STANDARD: KindProfile("miniSingleton", False, False),
    SpinWickKind.HA: KindProfile(HA_SIZE, True, False),
    SpinWickKind.WITH_CUSTOMER_SERVICE: KindProfile("miniSingleton", False, True),
}


class EventDispatcher:
    """Routes parsed webhook events to the lifecycle controller.

    Attributes:
        controller: Runs create, update and destroy.
        github_client: GitHub API client.
        comments: Label reconciliation and comment housekeeping.
        env_cache: Environment variables requested through slash commands.
        settings: Service settings (labels, repositories, org).
    """

    def __init__(
        self,
        controller: LifecycleController,
        github_client: GitHubClient,
        comments: CommentReconciler,
        env_cache: EnvVarCache,
        settings: SpinWickSettings,
    ):
        self.controller = controller
        self.github_client = github_client
        self.comments = comments
        self.env_cache = env_cache
        self.settings = settings
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Task management
    # ------------------------------------------------------------------

    def spawn(self, coro: Awaitable[None], name: str = "") -> asyncio.Task:
        """Run ``coro`` in the background, keeping a reference until it ends."""
        task = asyncio.create_task(self._run_safely(coro, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def _run_safely(self, coro: Awaitable[None], name: str) -> None:
        try:
            await coro
        except Exception:
            logger.exception("Unhandled error while handling event", extra={"task": name})

    async def wait_for_tasks(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Label helpers
    # ------------------------------------------------------------------

    def resolve_kind(self, label: Optional[str]) -> Optional[SpinWickKind]:
        return {
            self.settings.spinwick_label: SpinWickKind.STANDARD,
            self.settings.spinwick_ha_label: SpinWickKind.HA,
            self.settings.spinwick_cws_label: SpinWickKind.WITH_CUSTOMER_SERVICE,
        }.get(label or "")

    def has_spinwick_label(self, pr: PullRequest) -> bool:
        return any(label in self.settings.spinwick_labels for label in pr.labels)

    def update_options(self, pr: PullRequest, no_build_changes_expected: bool) -> UpdateOptions:
        return UpdateOptions(
            with_license=pr.has_label(self.settings.spinwick_ha_label),
            no_build_changes_expected=no_build_changes_expected,
        )

    # ------------------------------------------------------------------
    # Pull request events
    # ------------------------------------------------------------------

    async def handle_pull_request_event(self, event: PullRequestEvent) -> None:
        stale = event.pull_request
        try:
            pr = await self.github_client.get_pull_request(
                stale.owner, stale.repository, stale.number
            )
        except GitHubAPIError as e:
            logger.error(
                "Unable to get PR from GitHub",
                extra={"pr_id": stale.pr_id, "error": str(e)},
            )
            return

        logger.info(
            "PR event",
            extra={"pr_id": pr.pr_id, "action": event.action.value, "label": event.label},
        )

        if event.action == PullRequestAction.LABELED:
            kind = self.resolve_kind(event.label)
            if kind is not None:
                logger.info(
                    "PR received SpinWick label",
                    extra={"pr_id": pr.pr_id, "label": event.label},
                )
                profile = KIND_PROFILES[kind]
                await self.controller.handle_create(
                    pr,
                    CreateOptions(size=profile.size, with_license=profile.with_license),
                    with_customer_service=profile.with_customer_service,
                )

        elif event.action == PullRequestAction.UNLABELED:
            kind = self.resolve_kind(event.label)
            if kind is not None:
                logger.info(
                    "PR SpinWick label was removed",
                    extra={"pr_id": pr.pr_id, "label": event.label},
                )
                await self.controller.handle_destroy(
                    pr, with_customer_service=kind == SpinWickKind.WITH_CUSTOMER_SERVICE
                )

        elif event.action == PullRequestAction.SYNCHRONIZE:
            if self.has_spinwick_label(pr):
                logger.info("PR has a SpinWick label, starting upgrade", extra={"pr_id": pr.pr_id})
                await asyncio.gather(
                    self.synchronize(pr, no_build_changes_expected=False),
                    self._synchronize_sibling(pr),
                )

        elif event.action == PullRequestAction.CLOSED:
            if self.has_spinwick_label(pr):
                await self.controller.handle_destroy(
                    pr,
                    with_customer_service=pr.has_label(self.settings.spinwick_cws_label),
                )

        try:
            await self.comments.check_pull_request_for_changes(pr)
        except GitHubAPIError as e:
            logger.error(
                "Unable to reconcile PR labels",
                extra={"pr_id": pr.pr_id, "error": str(e)},
            )

        if event.action == PullRequestAction.CLOSED:
            self.comments.forget(pr)

    async def synchronize(self, pr: PullRequest, no_build_changes_expected: bool) -> None:
        await self.controller.handle_update(
            pr,
            self.update_options(pr, no_build_changes_expected),
            with_customer_service=pr.has_label(self.settings.spinwick_cws_label),
        )

    def sibling_repository(self, repository: str) -> Optional[str]:
        if repository == self.settings.server_repo:
            return self.settings.webapp_repo
        if repository == self.settings.webapp_repo:
            return self.settings.server_repo
        return None

    async def _synchronize_sibling(self, pr: PullRequest) -> None:
        """Update the paired repository's PR for the same branch.

        The sibling is updated with the triggering PR's commit, whose build
        produces the image both environments run.
        """
        other = self.sibling_repository(pr.repository)
        if other is None or not pr.ref:
            return

        try:
            sibling = await self.github_client.find_pull_request_by_branch(pr.owner, other, pr.ref)
        except GitHubAPIError as e:
            logger.error(
                "Unable to look up sibling PR",
                extra={"pr_id": pr.pr_id, "repository": other, "error": str(e)},
            )
            return

        if sibling is None or not self.has_spinwick_label(sibling):
            return

        logger.info(
            "Updating sibling PR SpinWick",
            extra={"pr_id": pr.pr_id, "sibling": sibling.pr_id, "sha": pr.sha},
        )
        await self.synchronize(
            sibling.model_copy(update={"sha": pr.sha}), no_build_changes_expected=False
        )

    # ------------------------------------------------------------------
    # Slash commands
    # ------------------------------------------------------------------

    async def handle_issue_comment_event(self, event: IssueCommentEvent) -> None:
        if not event.is_pull_request or not event.is_slash_command:
            return

        try:
            command = parse_slash_command(event.comment_body)
        except SlashCommandError as e:
            logger.error(
                "Failed to handle spinwick command",
                extra={"repository": event.repository, "pr": event.issue_number, "error": str(e)},
            )
            await self._post_output(event, e.output)
            return

        if command is None:
            logger.info("Ignoring unknown slash command", extra={"body": event.comment_body[:100]})
            return

        if not self.settings.local_testing:
            try:
                allowed = await self.github_client.is_org_member(self.settings.org, event.commenter)
            except GitHubAPIError as e:
                logger.error(
                    "Unable to check org membership",
                    extra={"user": event.commenter, "error": str(e)},
                )
                return
            if not allowed:
                logger.error("No permission", extra={"user": event.commenter})
                return

        if command.command == "help":
            await self._post_output(event, USAGE)
            return

        try:
            pr = await self.github_client.get_pull_request(
                event.owner, event.repository, event.issue_number
            )
        except GitHubAPIError as e:
            logger.error(
                "Failed to get PR",
                extra={"repository": event.repository, "pr": event.issue_number, "error": str(e)},
            )
            return

        await self.run_command(pr, command)

    async def run_command(self, pr: PullRequest, command: SpinWickCommand) -> None:
        env_key = repeatable_id(pr.repository, pr.number)

        if command.command == "create":
            self.env_cache.set(env_key, command.env)
            label = (
                self.settings.spinwick_ha_label
                if command.size == HA_SIZE
                else self.settings.spinwick_label
            )
            logger.info(
                "Going to create spinwick",
                extra={"pr_id": pr.pr_id, "size": command.size, "label": label},
            )
            await self.github_client.add_label(pr.owner, pr.repository, pr.number, label)

        elif command.command == "update":
            self.env_cache.set(env_key, command.env)
            logger.info("Going to update spinwick", extra={"pr_id": pr.pr_id})
            await self.synchronize(pr, no_build_changes_expected=True)

        elif command.command == "delete":
            logger.info("Going to delete spinwick", extra={"pr_id": pr.pr_id})
            for label in pr.labels:
                if label in self.settings.spinwick_labels:
                    await self.github_client.remove_label(
                        pr.owner, pr.repository, pr.number, label
                    )

    async def _post_output(self, event: IssueCommentEvent, output: str) -> None:
        if not output:
            return
        try:
            await self.github_client.create_comment(
                event.owner, event.repository, event.issue_number, f"```\n{output}\n```"
            )
        except GitHubAPIError as e:
            logger.error(
                "Unable to post command output",
                extra={"repository": event.repository, "pr": event.issue_number, "error": str(e)},
            )
