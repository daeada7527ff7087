"""Plain cloud installations created directly on the provisioner."""

import logging

from src.spinwick.cloud.models import CreateInstallationRequest, PatchInstallationRequest
from src.spinwick.github.models import PullRequest
from src.spinwick.images.builds import ENTERPRISE_IMAGE, TEAM_IMAGE
from src.spinwick.images.waiter import ImageWaitTimeoutError
from src.spinwick.lifecycle.base import (
    CreateOptions,
    EnvironmentKind,
    LifecycleError,
    LifecycleStrategy,
    OperationAborted,
    UpdateOptions,
)
from src.spinwick.lifecycle.bootstrap import CREDENTIALS_TABLE
from src.spinwick.lifecycle.request import LifecycleRequest
from src.spinwick.state.models import (
    STATE_CREATION_FAILED,
    STATE_STABLE,
    STATE_UPDATE_FAILED,
)


logger = logging.getLogger(__name__)


DEFAULT_VERSION = "master"

EE_FALLBACK_MESSAGE = (
    "Enterprise Edition Image not available in the 30 minutes timeframe, "
    "checking the Team Edition Image and if available will use that."
)
EE_REQUIRED_MESSAGE = (
    "Enterprise Edition Image not available in the 30 minutes timeframe.\n"
    "Please check if the EE Pipeline was triggered and if not please trigger "
    "and re-add the `{label}` again."
)


class CloudStrategy(LifecycleStrategy):
    """Installations owned by the PR's RepeatableID."""

    kind = EnvironmentKind.PLAIN_CLOUD

    async def _owner_id(self, pr: PullRequest) -> str:
        return self.identity(pr).repeatable_id

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def _resolve_image(self, pr: PullRequest, options: CreateOptions):
        """Wait for the PR's image and return ``(version, image)``.

        Only the server and webapp repositories publish per-commit images;
        every other repository runs ``master``.
        """
        builds = self.deps.builds
        settings = self.settings

        if pr.repository == settings.webapp_repo:
            await builds.wait_for_image(pr, ENTERPRISE_IMAGE, settings.image_wait_timeout_seconds)
            return builds.installation_version(pr), ENTERPRISE_IMAGE

        if pr.repository != settings.server_repo:
            return DEFAULT_VERSION, ENTERPRISE_IMAGE

        try:
            await builds.wait_for_image(
                pr, ENTERPRISE_IMAGE, settings.image_fallback_timeout_seconds
            )
            return builds.installation_version(pr), ENTERPRISE_IMAGE
        except ImageWaitTimeoutError:
            if options.with_license:
                await self.comment(
                    pr, EE_REQUIRED_MESSAGE.format(label=settings.spinwick_ha_label)
                )
                raise

        logger.warning(
            "Did not find the EE image, falling back to TE",
            extra={"pr_id": pr.pr_id, "sha": pr.sha},
        )
        await self.comment(pr, EE_FALLBACK_MESSAGE)
        await builds.wait_for_image(pr, TEAM_IMAGE, settings.image_fallback_timeout_seconds)
        return builds.installation_version(pr), TEAM_IMAGE

    async def _create(
        self, request: LifecycleRequest, pr: PullRequest, options: CreateOptions
    ) -> None:
        identity = self.identity(pr)
        provisioner = self.deps.provisioner

        existing = await provisioner.get_installation_by_owner(identity.repeatable_id)
        if existing is not None:
            request.with_installation_id(existing.id)
            raise OperationAborted(
                f"Already found an installation belonging to {identity.repeatable_id}"
            )

        await self.remove_comments(pr, self.settings.destroyed_message)
        logger.info("No SpinWick found for this PR. Creating a new one.", extra={"pr_id": pr.pr_id})

        version, image = await self._resolve_image(pr, options)

        installation = await provisioner.create_installation(
            CreateInstallationRequest(
                owner_id=identity.repeatable_id,
                version=version,
                image=image,
                dns=identity.dns,
                size=options.size,
                license=self.settings.ha_license if options.with_license else None,
                group_id=self.settings.cloud_group_id or None,
                mattermost_env=self.deps.env_cache.get(identity.repeatable_id) or None,
            )
        )
        request.with_installation_id(installation.id)

        await self.deps.state_waiter.wait_for_state(
            request,
            target_states=[STATE_STABLE],
            failure_states=[STATE_CREATION_FAILED],
            timeout=self.settings.create_stable_timeout_seconds,
            still_requested=self.still_requested(pr),
        )

        if self.deps.initializer is not None:
            await self.deps.initializer.initialize(identity.url, pr.number)

        await self.comment(
            pr,
            f"Mattermost test server created! :tada:\n\nAccess here: {identity.url}"
            f"\n\n{CREDENTIALS_TABLE}",
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def _update(
        self, request: LifecycleRequest, pr: PullRequest, options: UpdateOptions
    ) -> None:
        provisioner = self.deps.provisioner
        owner_id = await self._owner_id(pr)

        installation = await provisioner.get_installation_by_owner(owner_id)
        if installation is None:
            raise LifecycleError(f"no installation found with owner {owner_id}")
        request.with_installation_id(installation.id)

        if not options.no_build_changes_expected:
            logger.info(
                "Sleeping a bit to wait for the build process to start",
                extra={"pr_id": pr.pr_id, "sha": pr.sha},
            )
            await self.sleep(self.settings.update_build_delay_seconds)

        await self.announce_new_commit(pr)

        image = installation.image or ENTERPRISE_IMAGE
        await self.deps.builds.wait_for_image(
            pr, image, self.settings.image_wait_timeout_seconds
        )
        version = self.deps.builds.installation_version(pr)

        identity = self.identity(pr)
        apply_license = options.with_license and self.kind == EnvironmentKind.PLAIN_CLOUD
        patch = PatchInstallationRequest(
            version=version,
            image=image,
            license=self.settings.ha_license if apply_license else None,
            mattermost_env=self.deps.env_cache.get(identity.repeatable_id) or None,
        )

        if not options.no_build_changes_expected:
            # Another event may already have moved the installation to this version
            current = await provisioner.get_installation(installation.id)
            if current is not None and current.version == version:
                raise OperationAborted(
                    "another process already updated the installation version. Aborting"
                )

        updated = await provisioner.update_installation(installation.id, patch)

        await self.deps.state_waiter.wait_for_state(
            request,
            target_states=[STATE_STABLE],
            failure_states=[STATE_UPDATE_FAILED],
            timeout=self.settings.update_stable_timeout_seconds,
            still_requested=self.still_requested(pr),
        )

        url = updated.url or installation.url
        await self.remove_comments(pr, "Mattermost test server updated")
        await self.comment(
            pr,
            f"Mattermost test server updated with git commit `{pr.sha}`.\n\nAccess here: {url}",
        )

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    async def _destroy(self, request: LifecycleRequest, pr: PullRequest) -> None:
        owner_id = self.identity(pr).repeatable_id
        installation = await self.deps.provisioner.get_installation_by_owner(owner_id)
        if installation is None:
            raise OperationAborted("No SpinWick found for this PR. Skipping deletion")
        request.with_installation_id(installation.id)

        logger.info(
            "Destroying SpinWick",
            extra={"pr_id": pr.pr_id, "installation_id": installation.id},
        )
        await self.deps.provisioner.delete_installation(installation.id)
        await self.replace_status_comments(pr, self.settings.destroyed_message)
