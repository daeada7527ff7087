"""Map pull requests to published build images."""

from typing import Optional

from src.spinwick.github.models import PullRequest
from src.spinwick.images.registry import DockerRegistryClient
from src.spinwick.images import waiter


ENTERPRISE_IMAGE = "mattermostdevelopment/mm-ee-test"
TEAM_IMAGE = "mattermostdevelopment/mm-te-test"
CWS_IMAGE = "mattermost/cws-test"


class Builds:
    """Resolves the image version for a PR and waits for it to publish."""

    def __init__(self, registry: Optional[DockerRegistryClient]):
        self.registry = registry

    def installation_version(self, pr: PullRequest) -> str:
        return pr.sha[:7]

    async def wait_for_image(self, pr: PullRequest, image: str, timeout: float) -> str:
        return await waiter.wait_for_image(
            self.registry, self.installation_version(pr), image, timeout
        )


class MockedBuilds(Builds):
    """Builds with a fixed version and no registry, for local testing."""

    def __init__(self, version: str):
        super().__init__(registry=None)
        self.version = version

    def installation_version(self, pr: PullRequest) -> str:
        return self.version

    async def wait_for_image(self, pr: PullRequest, image: str, timeout: float) -> str:
        return ""
