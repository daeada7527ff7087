"""Unit tests for registry lookups, image waiting and build resolution."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.spinwick.github.models import PullRequest
from src.spinwick.images import waiter
from src.spinwick.images.builds import ENTERPRISE_IMAGE, Builds, MockedBuilds
from src.spinwick.images.registry import (
    DockerRegistryClient,
    ManifestNotFoundError,
    RegistryError,
    parse_bearer_challenge,
)
from src.spinwick.images.waiter import ImageWaitTimeoutError, wait_for_image


def run_async(coro):
    return asyncio.run(coro)


def _make_pr(sha: str = "abcdef1234567890") -> PullRequest:
    return PullRequest(owner="mattermost", repository="mattermost", number=42, sha=sha)


@pytest.fixture
def fast_polling(monkeypatch):
    monkeypatch.setattr(waiter, "IMAGE_POLL_INTERVAL_SECONDS", 0.01)


# ---------------------------------------------------------------------------
# Registry client
# ---------------------------------------------------------------------------


class TestParseBearerChallenge:
    def test_bearer_challenge(self):
        params = parse_bearer_challenge(
            'Bearer realm="https://auth.docker.io/token",service="registry.docker.io",'
            'scope="repository:mattermost/cws-test:pull"'
        )
        assert params == {
            "realm": "https://auth.docker.io/token",
            "service": "registry.docker.io",
            "scope": "repository:mattermost/cws-test:pull",
        }

    def test_basic_challenge(self):
        assert parse_bearer_challenge('Basic realm="registry"') is None

    def test_bearer_without_realm(self):
        assert parse_bearer_challenge('Bearer service="x"') is None


class TestDockerRegistryClient:
    def test_digest_from_head_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "HEAD"
            assert request.url.path == "/v2/mattermostdevelopment/mm-ee-test/manifests/abcdef1"
            return httpx.Response(200, headers={"Docker-Content-Digest": "sha256:feed"})

        client = DockerRegistryClient(
            "https://registry.test", transport=httpx.MockTransport(handler), max_retries=0
        )
        digest = run_async(client.manifest_digest("mattermostdevelopment/mm-ee-test", "abcdef1"))
        assert digest == "sha256:feed"

    def test_token_challenge_is_answered_and_cached(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.host, request.headers.get("Authorization")))
            if request.url.host == "auth.test":
                assert request.url.params["scope"] == "repository:img:pull"
                assert request.headers["Authorization"].startswith("Basic ")
                return httpx.Response(200, json={"token": "tok-1"})
            if request.headers.get("Authorization") != "Bearer tok-1":
                return httpx.Response(
                    401,
                    headers={
                        "WWW-Authenticate": 'Bearer realm="https://auth.test/token",'
                        'service="registry.test",scope="repository:img:pull"'
                    },
                )
            return httpx.Response(200, headers={"Docker-Content-Digest": "sha256:cafe"})

        client = DockerRegistryClient(
            "https://registry.test",
            username="bot",
            password="pw",
            transport=httpx.MockTransport(handler),
            max_retries=0,
        )

        async def scenario():
            first = await client.manifest_digest("img", "v1")
            second = await client.manifest_digest("img", "v2")
            return first, second

        assert run_async(scenario()) == ("sha256:cafe", "sha256:cafe")
        # One challenge, one token fetch, then the cached token is sent directly
        assert [host for host, _ in seen] == [
            "registry.test",
            "auth.test",
            "registry.test",
            "registry.test",
        ]

    def test_missing_tag(self):
        client = DockerRegistryClient(
            "https://registry.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(404)),
            max_retries=0,
        )
        with pytest.raises(ManifestNotFoundError):
            run_async(client.manifest_digest("img", "missing"))

    def test_server_error_is_not_a_missing_tag(self):
        client = DockerRegistryClient(
            "https://registry.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
            max_retries=0,
        )
        with pytest.raises(RegistryError) as exc_info:
            run_async(client.manifest_digest("img", "v1"))
        assert not isinstance(exc_info.value, ManifestNotFoundError)


# ---------------------------------------------------------------------------
# Image waiter
# ---------------------------------------------------------------------------


class TestWaitForImage:
    def test_returns_once_the_tag_appears(self, fast_polling):
        registry = AsyncMock()
        registry.manifest_digest.side_effect = [
            ManifestNotFoundError("not yet"),
            ManifestNotFoundError("not yet"),
            "sha256:abc",
        ]

        digest = run_async(wait_for_image(registry, "abcdef1", ENTERPRISE_IMAGE, timeout=5))

        assert digest == "sha256:abc"
        assert registry.manifest_digest.await_count == 3

    def test_transient_errors_keep_polling(self, fast_polling):
        registry = AsyncMock()
        registry.manifest_digest.side_effect = [RegistryError("boom", status_code=502), "sha256:abc"]
        assert run_async(wait_for_image(registry, "v", "img", timeout=5)) == "sha256:abc"

    def test_times_out(self, fast_polling):
        registry = AsyncMock()
        registry.manifest_digest.side_effect = ManifestNotFoundError("not yet")

        with pytest.raises(ImageWaitTimeoutError) as exc_info:
            run_async(wait_for_image(registry, "abcdef1", "img", timeout=0.05))
        assert exc_info.value.tag == "abcdef1"
        assert exc_info.value.image == "img"

    def test_non_positive_timeout_fails_immediately(self):
        registry = AsyncMock()
        with pytest.raises(ImageWaitTimeoutError):
            run_async(wait_for_image(registry, "v", "img", timeout=0))
        registry.manifest_digest.assert_not_called()


# ---------------------------------------------------------------------------
# Builds
# ---------------------------------------------------------------------------


class TestBuilds:
    def test_version_is_short_sha(self):
        assert Builds(MagicMock()).installation_version(_make_pr()) == "abcdef1"

    def test_wait_uses_short_sha_as_tag(self, fast_polling):
        registry = AsyncMock()
        registry.manifest_digest.return_value = "sha256:abc"

        run_async(Builds(registry).wait_for_image(_make_pr(), ENTERPRISE_IMAGE, 5))

        registry.manifest_digest.assert_awaited_once_with(ENTERPRISE_IMAGE, "abcdef1")

    def test_mocked_builds_never_wait(self):
        builds = MockedBuilds("7.8.0")
        assert builds.installation_version(_make_pr()) == "7.8.0"
        assert run_async(builds.wait_for_image(_make_pr(), ENTERPRISE_IMAGE, 0)) == ""
