"""Cloud installations issued through the customer web server.

Each PR gets a test CWS user (and with it a customer). The installation is
requested from CWS for that customer, so the provisioner owner ID is
``cws-<customer id>`` rather than the RepeatableID.
"""

import logging
from typing import Optional

from src.spinwick.cws.client import (
    CustomerServiceAPIError,
    CustomerServiceClient,
    CWSInstallation,
    CWSSession,
)
from src.spinwick.github.models import PullRequest
from src.spinwick.images.builds import ENTERPRISE_IMAGE
from src.spinwick.lifecycle.base import (
    CreateOptions,
    EnvironmentKind,
    LifecycleError,
    OperationAborted,
)
from src.spinwick.lifecycle.cloud import CloudStrategy
from src.spinwick.lifecycle.request import LifecycleRequest
from src.spinwick.state.models import (
    INACTIVE_STATES,
    STATE_CREATION_FAILED,
    STATE_DELETED,
    STATE_DELETION_FAILED,
    STATE_STABLE,
)


logger = logging.getLogger(__name__)


CWS_EMAIL_DOMAIN = "example.mattermost.com"


async def active_installation(
    cws: CustomerServiceClient, session: CWSSession
) -> Optional[CWSInstallation]:
    """Return the first installation of the session's user that is still live."""
    for installation in await cws.get_installations(session):
        if installation.state not in INACTIVE_STATES:
            return installation
    return None


class CustomerServiceCloudStrategy(CloudStrategy):
    """Installations created for a per-PR test customer in CWS."""

    kind = EnvironmentKind.CUSTOMER_SERVICE_CLOUD

    @property
    def cws(self) -> CustomerServiceClient:
        if self.deps.cws is None:
            raise LifecycleError("the customer web server is not configured")
        return self.deps.cws

    def credentials(self, pr: PullRequest):
        email = f"user-{self.identity(pr).repeatable_id}@{CWS_EMAIL_DOMAIN}"
        return email, self.settings.cws_user_password

    async def _login(self, pr: PullRequest) -> CWSSession:
        email, password = self.credentials(pr)
        session = await self.cws.login(email, password)
        customers = await self.cws.get_my_customers(session)
        if not customers:
            raise LifecycleError(f"CWS user {email} does not have any customer")
        session.customer = customers[0]
        return session

    async def _login_or_signup(self, pr: PullRequest) -> CWSSession:
        try:
            return await self._login(pr)
        except CustomerServiceAPIError as e:
            logger.info(
                "No CWS user for this PR, signing up",
                extra={"pr_id": pr.pr_id, "status_code": e.status_code},
            )
        email, password = self.credentials(pr)
        session = await self.cws.signup(email, password)
        await self.cws.verify_user(session.user.id)
        return session

    async def _owner_id(self, pr: PullRequest) -> str:
        session = await self._login(pr)
        return f"cws-{session.customer.id}"

    async def _create(
        self, request: LifecycleRequest, pr: PullRequest, options: CreateOptions
    ) -> None:
        identity = self.identity(pr)
        session = await self._login_or_signup(pr)

        existing = await active_installation(self.cws, session)
        if existing is not None:
            request.with_installation_id(existing.id)
            raise OperationAborted(
                f"Already found an installation belonging to {session.customer.id}"
            )

        await self.deps.builds.wait_for_image(
            pr, ENTERPRISE_IMAGE, self.settings.image_wait_timeout_seconds
        )

        installation_id = await self.cws.create_installation(
            customer_id=session.customer.id,
            workspace_name=identity.unique_id,
            version=self.deps.builds.installation_version(pr),
            image=ENTERPRISE_IMAGE,
            group_id=self.settings.cws_group_id,
        )
        request.with_installation_id(installation_id)

        await self.deps.state_waiter.wait_for_state(
            request,
            target_states=[STATE_STABLE],
            failure_states=[STATE_CREATION_FAILED],
            timeout=self.settings.create_stable_timeout_seconds,
            still_requested=self.still_requested(pr),
        )

        email, password = self.credentials(pr)
        await self.comment(
            pr,
            f"Mattermost test server with CWS created! :tada:\n\nAccess here: {identity.url}"
            "\n\n| Account Type | Username | Password |\n|---|---|---|\n"
            f"| Admin | {email} | {password} |",
        )

    async def _destroy(self, request: LifecycleRequest, pr: PullRequest) -> None:
        try:
            session = await self._login(pr)
        except CustomerServiceAPIError as e:
            if e.status_code in (401, 404):
                raise OperationAborted(
                    "No SpinWick CWS user found for this PR. Skipping deletion"
                ) from e
            raise

        installation = await active_installation(self.cws, session)
        if installation is None:
            raise OperationAborted("No SpinWick found for this PR. Skipping deletion")
        request.with_installation_id(installation.id)

        logger.info(
            "Found installation. Starting deletion",
            extra={"pr_id": pr.pr_id, "installation_id": installation.id},
        )
        await self.cws.delete_installation(installation.id)

        await self.deps.state_waiter.wait_for_state(
            request,
            target_states=[STATE_DELETED],
            failure_states=[STATE_DELETION_FAILED],
            timeout=self.settings.delete_timeout_seconds,
        )

        await self.replace_status_comments(pr, self.settings.destroyed_message)
