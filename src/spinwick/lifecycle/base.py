"""Shared pieces of the lifecycle strategies.

A strategy implements create, update and destroy for one EnvironmentKind.
Its internal steps raise; ``LifecycleStrategy._run`` turns the first
exception into the LifecycleRequest the controller inspects:

- OperationAborted, LabelRemovedError and NoCompatibleClustersError mark
  the request aborted (warning only, no escalation)
- anything else marks it as a reportable failure
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from src.spinwick.cloud.client import ProvisionerClient
from src.spinwick.config import SpinWickSettings
from src.spinwick.cws.client import CustomerServiceClient
from src.spinwick.env_cache import EnvVarCache
from src.spinwick.github.client import GitHubAPIError, GitHubClient
from src.spinwick.github.comments import CommentReconciler
from src.spinwick.github.models import PullRequest
from src.spinwick.identity import EnvironmentIdentity
from src.spinwick.images.builds import Builds
from src.spinwick.kube.client import KubeClient
from src.spinwick.lifecycle.bootstrap import MattermostInitializer
from src.spinwick.lifecycle.request import LifecycleRequest
from src.spinwick.state.models import LabelRemovedError, NoCompatibleClustersError
from src.spinwick.state.waiter import StateWaiter


logger = logging.getLogger(__name__)


NEW_COMMIT_MESSAGE = (
    "New commit detected. SpinWick will upgrade if the updated docker image "
    "is available."
)


class EnvironmentKind(str, Enum):
    """How a SpinWick environment is hosted.

    Attributes:
        PLAIN_CLOUD: Installation created directly on the provisioner.
        CUSTOMER_SERVICE_CLOUD: Installation issued through CWS for a test
            customer.
        KUBERNETES_NAMESPACE: CWS itself deployed into a namespace.
    """

    PLAIN_CLOUD = "plain_cloud"
    CUSTOMER_SERVICE_CLOUD = "customer_service_cloud"
    KUBERNETES_NAMESPACE = "kubernetes_namespace"


def resolve_environment_kind(
    repository: str, with_customer_service: bool, cws_repository: str
) -> EnvironmentKind:
    if repository == cws_repository:
        return EnvironmentKind.KUBERNETES_NAMESPACE
    if with_customer_service:
        return EnvironmentKind.CUSTOMER_SERVICE_CLOUD
    return EnvironmentKind.PLAIN_CLOUD


class LifecycleError(Exception):
    """A lifecycle step could not complete."""


class OperationAborted(LifecycleError):
    """The operation stopped on purpose; nothing needs fixing."""


@dataclass
class CreateOptions:
    size: str = "miniSingleton"
    with_license: bool = False


@dataclass
class UpdateOptions:
    """Options for an update.

    Attributes:
        with_license: Apply the HA license.
        no_build_changes_expected: Only environment variables changed; no
            new image is being built, so the build-start delay and the
            version race guard are skipped.
    """

    with_license: bool = False
    no_build_changes_expected: bool = False


@dataclass
class LifecycleDependencies:
    """Collaborators shared by all strategies."""

    settings: SpinWickSettings
    github: GitHubClient
    comments: CommentReconciler
    provisioner: ProvisionerClient
    builds: Builds
    state_waiter: StateWaiter
    env_cache: EnvVarCache
    cws: Optional[CustomerServiceClient] = None
    kube: Optional[KubeClient] = None
    initializer: Optional[MattermostInitializer] = None


class LifecycleStrategy(ABC):
    """Create, update and destroy for one kind of environment."""

    kind: EnvironmentKind

    def __init__(self, deps: LifecycleDependencies):
        self.deps = deps
        self.settings = deps.settings

    async def create(self, pr: PullRequest, options: CreateOptions) -> LifecycleRequest:
        return await self._run("create", pr, lambda request: self._create(request, pr, options))

    async def update(self, pr: PullRequest, options: UpdateOptions) -> LifecycleRequest:
        return await self._run("update", pr, lambda request: self._update(request, pr, options))

    async def destroy(self, pr: PullRequest) -> LifecycleRequest:
        return await self._run("destroy", pr, lambda request: self._destroy(request, pr))

    @abstractmethod
    async def _create(
        self, request: LifecycleRequest, pr: PullRequest, options: CreateOptions
    ) -> None:
        pass

    @abstractmethod
    async def _update(
        self, request: LifecycleRequest, pr: PullRequest, options: UpdateOptions
    ) -> None:
        pass

    @abstractmethod
    async def _destroy(self, request: LifecycleRequest, pr: PullRequest) -> None:
        pass

    async def _run(
        self,
        operation: str,
        pr: PullRequest,
        step: Callable[[LifecycleRequest], Awaitable[None]],
    ) -> LifecycleRequest:
        request = LifecycleRequest()
        try:
            await step(request)
        except (OperationAborted, LabelRemovedError, NoCompatibleClustersError) as e:
            request.with_error(e).intentional_abort()
        except Exception as e:
            logger.debug(
                "Lifecycle step failed",
                exc_info=True,
                extra={"operation": operation, "pr_id": pr.pr_id, "kind": self.kind.value},
            )
            request.with_error(e).should_report_error()
        return request

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def identity(self, pr: PullRequest) -> EnvironmentIdentity:
        return EnvironmentIdentity.create(
            pr.repository, pr.number, self.settings.dns_base_domain
        )

    async def comment(self, pr: PullRequest, body: str) -> None:
        """Post a comment; a failure is logged and does not stop the workflow."""
        try:
            await self.deps.github.create_comment(pr.owner, pr.repository, pr.number, body)
        except GitHubAPIError as e:
            logger.error(
                "Unable to post comment",
                extra={"pr_id": pr.pr_id, "error": str(e)},
            )

    async def remove_comments(self, pr: PullRequest, *messages: str) -> None:
        try:
            await self.deps.comments.remove_comments_with_messages(pr, messages)
        except GitHubAPIError as e:
            logger.error(
                "Unable to list comments",
                extra={"pr_id": pr.pr_id, "error": str(e)},
            )

    async def replace_status_comments(self, pr: PullRequest, message: str) -> None:
        """Remove every earlier status comment and post ``message``."""
        async with self.deps.comments.lock:
            await self.deps.comments.remove_old_comments(pr)
            await self.comment(pr, message)

    async def announce_new_commit(self, pr: PullRequest) -> None:
        await self.remove_comments(pr, "New commit detected.")
        await self.comment(pr, NEW_COMMIT_MESSAGE)

    def still_requested(self, pr: PullRequest) -> Callable[[], Awaitable[bool]]:
        """Build the label re-check used while waiting on an installation."""

        async def check() -> bool:
            fresh = await self.deps.github.get_pull_request(
                pr.owner, pr.repository, pr.number
            )
            return any(label in self.settings.spinwick_labels for label in fresh.labels)

        return check

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
