"""Image registry lookups and build-availability waiting."""

from src.spinwick.images.builds import (
    CWS_IMAGE,
    ENTERPRISE_IMAGE,
    TEAM_IMAGE,
    Builds,
    MockedBuilds,
)
from src.spinwick.images.registry import (
    DockerRegistryClient,
    ManifestNotFoundError,
    RegistryError,
)
from src.spinwick.images.waiter import ImageWaitTimeoutError, wait_for_image

__all__ = [
    "CWS_IMAGE",
    "ENTERPRISE_IMAGE",
    "TEAM_IMAGE",
    "Builds",
    "DockerRegistryClient",
    "ImageWaitTimeoutError",
    "ManifestNotFoundError",
    "MockedBuilds",
    "RegistryError",
    "wait_for_image",
]
