"""Unit tests for the plain cloud lifecycle strategy.

All collaborators are mocked; the tests assert which provisioner calls are
made and how each failure is classified on the returned request.
"""

import asyncio
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.spinwick.cloud.models import EnvVar, Installation
from src.spinwick.env_cache import EnvVarCache
from src.spinwick.github.models import PullRequest
from src.spinwick.images.builds import ENTERPRISE_IMAGE, TEAM_IMAGE
from src.spinwick.images.waiter import ImageWaitTimeoutError
from src.spinwick.lifecycle.base import (
    NEW_COMMIT_MESSAGE,
    CreateOptions,
    LifecycleDependencies,
    LifecycleError,
    UpdateOptions,
)
from src.spinwick.lifecycle.cloud import EE_FALLBACK_MESSAGE, CloudStrategy
from src.spinwick.state.models import (
    InstallationFailedError,
    LabelRemovedError,
    NoCompatibleClustersError,
)


def run_async(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _make_pr(
    repository: str = "mattermost",
    labels: Optional[List[str]] = None,
    sha: str = "abcdef1234567890",
) -> PullRequest:
    return PullRequest(
        owner="mattermost",
        repository=repository,
        number=42,
        author="dev1",
        ref="feature-branch",
        sha=sha,
        labels=labels if labels is not None else ["Setup Cloud Test Server"],
    )


def _make_installation(
    installation_id: str = "inst-1",
    version: str = "1111111",
    image: str = ENTERPRISE_IMAGE,
    state: str = "stable",
) -> Installation:
    return Installation(
        id=installation_id,
        owner_id="mattermost-pr-42",
        version=version,
        image=image,
        dns="mattermost-pr-42-abcde.test.mattermost.cloud",
        state=state,
    )


def _make_builds() -> MagicMock:
    builds = MagicMock()
    builds.installation_version.side_effect = lambda pr: pr.sha[:7]
    builds.wait_for_image = AsyncMock(return_value="sha256:abc")
    return builds


@pytest.fixture
def deps(settings):
    github = AsyncMock()
    github.get_pull_request.return_value = _make_pr()
    comments = AsyncMock()
    comments.lock = asyncio.Lock()
    provisioner = AsyncMock()
    provisioner.get_installation_by_owner.return_value = None
    provisioner.create_installation.return_value = _make_installation(state="creation-requested")
    provisioner.update_installation.return_value = _make_installation(version="abcdef1")
    return LifecycleDependencies(
        settings=settings,
        github=github,
        comments=comments,
        provisioner=provisioner,
        builds=_make_builds(),
        state_waiter=AsyncMock(),
        env_cache=EnvVarCache(),
        initializer=AsyncMock(),
    )


@pytest.fixture
def strategy(deps):
    return CloudStrategy(deps)


def _posted(deps) -> List[str]:
    return [call.args[3] for call in deps.github.create_comment.await_args_list]


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreate:
    def test_happy_path(self, strategy, deps):
        request = run_async(strategy.create(_make_pr(), CreateOptions()))

        assert request.succeeded
        assert request.installation_id == "inst-1"

        deps.builds.wait_for_image.assert_awaited_once()
        assert deps.builds.wait_for_image.await_args.args[1] == ENTERPRISE_IMAGE

        sent = deps.provisioner.create_installation.await_args.args[0]
        assert sent.owner_id == "mattermost-pr-42"
        assert sent.version == "abcdef1"
        assert sent.image == ENTERPRISE_IMAGE
        assert sent.dns.startswith("mattermost-pr-42-")
        assert sent.dns.endswith(".test.mattermost.cloud")
        assert sent.size == "miniSingleton"
        assert sent.license is None
        assert sent.group_id is None
        assert sent.mattermost_env is None

        wait = deps.state_waiter.wait_for_state.await_args.kwargs
        assert wait["target_states"] == ["stable"]
        assert wait["failure_states"] == ["creation-failed"]

        deps.initializer.initialize.assert_awaited_once()
        assert _posted(deps)[-1].startswith("Mattermost test server created! :tada:")
        deps.comments.remove_comments_with_messages.assert_any_await(
            _make_pr(), ("Test server destroyed",)
        )

    def test_existing_installation_aborts(self, strategy, deps):
        deps.provisioner.get_installation_by_owner.return_value = _make_installation()

        request = run_async(strategy.create(_make_pr(), CreateOptions()))

        assert request.aborted
        assert not request.report_error
        assert request.installation_id == "inst-1"
        deps.provisioner.create_installation.assert_not_awaited()

    def test_ha_create_sends_license_and_size(self, strategy, deps):
        run_async(strategy.create(_make_pr(), CreateOptions(size="miniHA", with_license=True)))

        sent = deps.provisioner.create_installation.await_args.args[0]
        assert sent.size == "miniHA"
        assert sent.license == "ha-license-data"

    def test_cached_env_is_sent(self, strategy, deps):
        deps.env_cache.set("mattermost-pr-42", {"MM_FOO": EnvVar(value="bar")})

        run_async(strategy.create(_make_pr(), CreateOptions()))

        sent = deps.provisioner.create_installation.await_args.args[0]
        assert sent.mattermost_env == {"MM_FOO": EnvVar(value="bar")}

    def test_team_edition_fallback(self, strategy, deps):
        deps.builds.wait_for_image.side_effect = [
            ImageWaitTimeoutError(ENTERPRISE_IMAGE, "abcdef1", 1800),
            "sha256:te",
        ]

        request = run_async(strategy.create(_make_pr(), CreateOptions()))

        assert request.succeeded
        assert deps.provisioner.create_installation.await_args.args[0].image == TEAM_IMAGE
        assert EE_FALLBACK_MESSAGE in _posted(deps)

    def test_licensed_create_requires_enterprise_image(self, strategy, deps):
        deps.builds.wait_for_image.side_effect = ImageWaitTimeoutError(
            ENTERPRISE_IMAGE, "abcdef1", 1800
        )

        request = run_async(strategy.create(_make_pr(), CreateOptions(with_license=True)))

        assert isinstance(request.error, ImageWaitTimeoutError)
        assert request.report_error
        assert deps.builds.wait_for_image.await_count == 1
        assert "Setup HA Cloud Test Server" in _posted(deps)[-1]
        deps.provisioner.create_installation.assert_not_awaited()

    def test_webapp_waits_full_timeout_without_fallback(self, strategy, deps, settings):
        deps.builds.wait_for_image.side_effect = ImageWaitTimeoutError(
            ENTERPRISE_IMAGE, "abcdef1", 2700
        )

        request = run_async(strategy.create(_make_pr("mattermost-webapp"), CreateOptions()))

        assert request.report_error
        assert deps.builds.wait_for_image.await_args.args[2] == (
            settings.image_wait_timeout_seconds
        )

    def test_other_repositories_run_master(self, strategy, deps):
        run_async(strategy.create(_make_pr("mattermost-plugin-jira"), CreateOptions()))

        deps.builds.wait_for_image.assert_not_awaited()
        assert deps.provisioner.create_installation.await_args.args[0].version == "master"

    def test_no_compatible_clusters_aborts(self, strategy, deps):
        deps.state_waiter.wait_for_state.side_effect = NoCompatibleClustersError(
            "no clusters", "inst-1", "creation-no-compatible-clusters"
        )
        request = run_async(strategy.create(_make_pr(), CreateOptions()))
        assert request.aborted
        assert isinstance(request.error, NoCompatibleClustersError)

    def test_label_removed_aborts(self, strategy, deps):
        deps.state_waiter.wait_for_state.side_effect = LabelRemovedError(
            "removed", "inst-1", "deletion-requested"
        )
        request = run_async(strategy.create(_make_pr(), CreateOptions()))
        assert request.aborted

    def test_installation_failure_is_reported(self, strategy, deps):
        deps.state_waiter.wait_for_state.side_effect = InstallationFailedError(
            "failed", "inst-1", "creation-failed"
        )
        request = run_async(strategy.create(_make_pr(), CreateOptions()))
        assert request.report_error
        assert not request.aborted
        assert request.installation_id == "inst-1"
        deps.initializer.initialize.assert_not_awaited()

    def test_still_requested_checks_fresh_labels(self, strategy, deps):
        run_async(strategy.create(_make_pr(), CreateOptions()))
        check = deps.state_waiter.wait_for_state.await_args.kwargs["still_requested"]

        assert run_async(check()) is True
        deps.github.get_pull_request.return_value = _make_pr(labels=[])
        assert run_async(check()) is False


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_happy_path(self, strategy, deps):
        deps.provisioner.get_installation_by_owner.return_value = _make_installation()
        deps.provisioner.get_installation.return_value = _make_installation()

        request = run_async(strategy.update(_make_pr(), UpdateOptions()))

        assert request.succeeded
        patch = deps.provisioner.update_installation.await_args.args[1]
        assert patch.version == "abcdef1"
        assert patch.image == ENTERPRISE_IMAGE
        assert patch.license is None
        assert NEW_COMMIT_MESSAGE in _posted(deps)
        assert _posted(deps)[-1].startswith(
            "Mattermost test server updated with git commit `abcdef1234567890`."
        )
        wait = deps.state_waiter.wait_for_state.await_args.kwargs
        assert wait["failure_states"] == ["update-failed"]

    def test_keeps_installation_image(self, strategy, deps):
        deps.provisioner.get_installation_by_owner.return_value = _make_installation(
            image=TEAM_IMAGE
        )
        run_async(strategy.update(_make_pr(), UpdateOptions()))

        assert deps.builds.wait_for_image.await_args.args[1] == TEAM_IMAGE
        assert deps.provisioner.update_installation.await_args.args[1].image == TEAM_IMAGE

    def test_missing_installation_is_reported(self, strategy, deps):
        request = run_async(strategy.update(_make_pr(), UpdateOptions()))

        assert isinstance(request.error, LifecycleError)
        assert request.report_error
        deps.provisioner.update_installation.assert_not_awaited()

    def test_version_race_aborts(self, strategy, deps):
        deps.provisioner.get_installation_by_owner.return_value = _make_installation()
        deps.provisioner.get_installation.return_value = _make_installation(version="abcdef1")

        request = run_async(strategy.update(_make_pr(), UpdateOptions()))

        assert request.aborted
        deps.provisioner.update_installation.assert_not_awaited()

    def test_env_only_update_skips_race_guard(self, strategy, deps):
        deps.provisioner.get_installation_by_owner.return_value = _make_installation(
            version="abcdef1"
        )
        deps.env_cache.set("mattermost-pr-42", {"MM_FOO": EnvVar.clear()})

        request = run_async(
            strategy.update(_make_pr(), UpdateOptions(no_build_changes_expected=True))
        )

        assert request.succeeded
        deps.provisioner.get_installation.assert_not_awaited()
        patch = deps.provisioner.update_installation.await_args.args[1]
        assert patch.mattermost_env == {"MM_FOO": EnvVar.clear()}

    def test_licensed_update(self, strategy, deps):
        deps.provisioner.get_installation_by_owner.return_value = _make_installation()
        run_async(strategy.update(_make_pr(), UpdateOptions(with_license=True)))
        assert deps.provisioner.update_installation.await_args.args[1].license == "ha-license-data"


# ---------------------------------------------------------------------------
# Destroy
# ---------------------------------------------------------------------------


class TestDestroy:
    def test_deletes_and_replaces_status_comments(self, strategy, deps):
        deps.provisioner.get_installation_by_owner.return_value = _make_installation()

        request = run_async(strategy.destroy(_make_pr()))

        assert request.succeeded
        deps.provisioner.delete_installation.assert_awaited_once_with("inst-1")
        deps.comments.remove_old_comments.assert_awaited_once()
        assert _posted(deps) == ["Test server destroyed"]

    def test_nothing_to_delete_aborts(self, strategy, deps):
        request = run_async(strategy.destroy(_make_pr()))

        assert request.aborted
        deps.provisioner.delete_installation.assert_not_awaited()
