"""Lifecycle controller: runs strategies and applies outcome side effects.

Strategies only report what happened through their LifecycleRequest. The
controller is the single place that decides what the outcome means for the
pull request and for operators:

- success emits a COMPLETION event
- an intentional abort is logged as a warning and emits ABORTED
- a failure is logged as an error, emits ERROR (TIMEOUT when a wait ran
  out), posts the failure comment and, when the strategy asked for it,
  escalates to the operator channel

A failed create also removes the earlier status comments and strips the
SpinWick labels so the PR can be relabeled for a fresh attempt.
"""

import logging
import time
from contextlib import nullcontext
from typing import Awaitable, Callable, Dict, Mapping, Optional

from src.spinwick.config import SpinWickSettings
from src.spinwick.env_cache import EnvVarCache
from src.spinwick.events.emitter import EventEmitter
from src.spinwick.events.metrics import SpinWickMetrics
from src.spinwick.events.models import EventType, LifecycleEvent
from src.spinwick.github.client import GitHubAPIError, GitHubClient
from src.spinwick.github.comments import CommentReconciler
from src.spinwick.github.models import PullRequest
from src.spinwick.identity import repeatable_id
from src.spinwick.images.waiter import ImageWaitTimeoutError
from src.spinwick.kube.client import LoadBalancerTimeoutError
from src.spinwick.lifecycle.base import (
    CreateOptions,
    EnvironmentKind,
    LifecycleStrategy,
    UpdateOptions,
    resolve_environment_kind,
)
from src.spinwick.lifecycle.request import LifecycleRequest
from src.spinwick.notifier import OperatorNotifier
from src.spinwick.state.models import NoCompatibleClustersError, StateWaitTimeoutError


logger = logging.getLogger(__name__)


TIMEOUT_ERRORS = (ImageWaitTimeoutError, StateWaitTimeoutError, LoadBalancerTimeoutError)

CLOSED_PR_MESSAGE = "PR is closed/merged not creating a SpinWick Test server"

FAILURE_TITLES = {
    "create": "[ SpinWick ] Creation Failed",
    "update": "[ SpinWick ] Update Failed",
    "destroy": "[ SpinWick ] Destroy Failed",
}


def creation_message(kind: EnvironmentKind, with_license: bool) -> str:
    """Acknowledgement posted before a create starts."""
    if kind == EnvironmentKind.KUBERNETES_NAMESPACE:
        return "Creating a CWS SpinWick test server"
    if kind == EnvironmentKind.CUSTOMER_SERVICE_CLOUD:
        return "Creating a new SpinWick test cloud server with CWS using Mattermost Cloud."
    if with_license:
        return "Creating a new HA SpinWick test server using Mattermost Cloud."
    return "Creating a new SpinWick test server using Mattermost Cloud."


def outcome_event_type(request: LifecycleRequest) -> EventType:
    if request.succeeded:
        return EventType.COMPLETION
    if request.aborted:
        return EventType.ABORTED
    if isinstance(request.error, TIMEOUT_ERRORS):
        return EventType.TIMEOUT
    return EventType.ERROR


class LifecycleController:
    """Selects the strategy for an environment and handles its outcome.

    Attributes:
        strategies: Strategy per environment kind.
        github_client: GitHub API client for comments and labels.
        comments: Bot comment housekeeping.
        notifier: Operator escalation channel.
        event_emitter: Receives one LifecycleEvent per operation.
        settings: Service settings (labels, messages, repositories).
        env_cache: Pending environment variables per RepeatableID.
        metrics: Optional metrics for in-flight tracking.
    """

    def __init__(
        self,
        strategies: Mapping[EnvironmentKind, LifecycleStrategy],
        github_client: GitHubClient,
        comments: CommentReconciler,
        notifier: OperatorNotifier,
        event_emitter: EventEmitter,
        settings: SpinWickSettings,
        env_cache: EnvVarCache,
        metrics: Optional[SpinWickMetrics] = None,
    ):
        self.strategies: Dict[EnvironmentKind, LifecycleStrategy] = dict(strategies)
        self.github_client = github_client
        self.comments = comments
        self.notifier = notifier
        self.event_emitter = event_emitter
        self.settings = settings
        self.env_cache = env_cache
        self.metrics = metrics

    def resolve_kind(self, pr: PullRequest, with_customer_service: bool) -> EnvironmentKind:
        return resolve_environment_kind(
            pr.repository, with_customer_service, self.settings.cws_repo
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def handle_create(
        self,
        pr: PullRequest,
        options: CreateOptions,
        with_customer_service: bool = False,
    ) -> Optional[LifecycleRequest]:
        """Create the environment for ``pr``.

        Returns:
            The finished request, or None if the PR is closed.
        """
        if pr.is_closed:
            logger.info(
                "PR is closed/merged, will not create a test server",
                extra={"pr_id": pr.pr_id},
            )
            await self._comment(pr, CLOSED_PR_MESSAGE)
            return None

        kind = self.resolve_kind(pr, with_customer_service)
        await self._comment(pr, creation_message(kind, options.with_license))

        request = await self._execute(
            "create", pr, kind, lambda strategy: strategy.create(pr, options)
        )
        if request.succeeded:
            return request

        if isinstance(request.error, NoCompatibleClustersError):
            await self._comment(pr, request.error.user_message)

        if not request.aborted:
            await self._clean_up_failed_create(pr)
            await self._comment(pr, self.settings.setup_failed_message)
        return request

    async def handle_update(
        self,
        pr: PullRequest,
        options: UpdateOptions,
        with_customer_service: bool = False,
    ) -> LifecycleRequest:
        kind = self.resolve_kind(pr, with_customer_service)
        request = await self._execute(
            "update", pr, kind, lambda strategy: strategy.update(pr, options)
        )
        if not request.succeeded and not request.aborted:
            await self._comment(pr, self.settings.setup_failed_message)
        return request

    async def handle_destroy(
        self, pr: PullRequest, with_customer_service: bool = False
    ) -> LifecycleRequest:
        kind = self.resolve_kind(pr, with_customer_service)
        request = await self._execute(
            "destroy", pr, kind, lambda strategy: strategy.destroy(pr)
        )
        self.env_cache.pop(repeatable_id(pr.repository, pr.number))
        if not request.succeeded and not request.aborted:
            await self._comment(pr, self.settings.setup_failed_message)
        return request

    # ------------------------------------------------------------------
    # Outcome handling
    # ------------------------------------------------------------------

    async def _execute(
        self,
        operation: str,
        pr: PullRequest,
        kind: EnvironmentKind,
        call: Callable[[LifecycleStrategy], Awaitable[LifecycleRequest]],
    ) -> LifecycleRequest:
        strategy = self.strategies[kind]
        logger.info(
            "Starting SpinWick operation",
            extra={"operation": operation, "pr_id": pr.pr_id, "kind": kind.value},
        )

        tracker = self.metrics.track_in_flight(operation) if self.metrics else nullcontext()
        started = time.monotonic()
        with tracker:
            request = await call(strategy)
        duration = time.monotonic() - started

        log_extra = {
            "operation": operation,
            "pr_id": pr.pr_id,
            "kind": kind.value,
            "installation_id": request.installation_id,
            "error": str(request.error) if request.error else None,
        }
        if request.succeeded:
            logger.info("SpinWick operation complete", extra=log_extra)
        elif request.aborted:
            logger.warning("Aborted SpinWick operation", extra=log_extra)
        else:
            logger.error("SpinWick operation failed", extra=log_extra)

        await self._emit(operation, pr, kind, request, duration)

        if not request.succeeded and not request.aborted and request.report_error:
            await self.notifier.notify_failure(
                FAILURE_TITLES[operation],
                pr,
                request.error,
                {"Installation ID": request.installation_id},
            )
        return request

    async def _emit(
        self,
        operation: str,
        pr: PullRequest,
        kind: EnvironmentKind,
        request: LifecycleRequest,
        duration: float,
    ) -> None:
        details = {
            "operation": operation,
            "installation_id": request.installation_id,
            "kind": kind.value,
            "duration_seconds": round(duration, 3),
        }
        if request.error is not None:
            details["error_message"] = str(request.error)

        await self.event_emitter.emit(
            LifecycleEvent(
                event_type=outcome_event_type(request),
                environment_id=repeatable_id(pr.repository, pr.number),
                repository=pr.full_repository,
                details=details,
            )
        )

    async def _clean_up_failed_create(self, pr: PullRequest) -> None:
        try:
            await self.comments.remove_old_comments(pr)
        except GitHubAPIError as e:
            logger.error(
                "Error getting comments",
                extra={"pr_id": pr.pr_id, "error": str(e)},
            )

        for label in pr.labels:
            if label not in self.settings.spinwick_labels:
                continue
            try:
                await self.github_client.remove_label(
                    pr.owner, pr.repository, pr.number, label
                )
            except GitHubAPIError as e:
                logger.error(
                    "Unable to remove SpinWick label",
                    extra={"pr_id": pr.pr_id, "label": label, "error": str(e)},
                )

    async def _comment(self, pr: PullRequest, body: str) -> None:
        try:
            await self.github_client.create_comment(pr.owner, pr.repository, pr.number, body)
        except GitHubAPIError as e:
            logger.error(
                "Unable to post comment",
                extra={"pr_id": pr.pr_id, "error": str(e)},
            )
