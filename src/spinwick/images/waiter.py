"""Wait for a Docker image tag to be published.

CI pushes an image for every commit some minutes after the push; SpinWick
polls the registry until the tag appears or the deadline passes.
"""

import asyncio
import logging

from src.spinwick.images.registry import (
    DockerRegistryClient,
    ManifestNotFoundError,
    RegistryError,
)


logger = logging.getLogger(__name__)


IMAGE_POLL_INTERVAL_SECONDS = 10


class ImageWaitTimeoutError(Exception):
    """Raised when an image tag is not published before the deadline."""

    def __init__(self, image: str, tag: str, timeout: float):
        self.image = image
        self.tag = tag
        self.timeout = timeout
        super().__init__(
            f"timed out after {timeout:.0f}s waiting for image {image}:{tag} to publish"
        )


async def wait_for_image(
    registry: DockerRegistryClient, tag: str, image: str, timeout: float
) -> str:
    """Poll the registry until ``image:tag`` exists.

    A missing manifest is expected while CI is still building. Other
    registry errors are logged and polling continues; the deadline bounds
    every case.

    Args:
        registry: Registry client.
        tag: Image tag to wait for.
        image: Image repository name.
        timeout: Seconds to wait in total. Non-positive fails immediately.

    Returns:
        The manifest digest.

    Raises:
        ImageWaitTimeoutError: If the deadline passes first.
    """
    if timeout <= 0:
        raise ImageWaitTimeoutError(image, tag, timeout)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0

    while True:
        attempts += 1
        try:
            digest = await asyncio.wait_for(
                registry.manifest_digest(image, tag),
                timeout=max(deadline - loop.time(), 0.001),
            )
            logger.info(
                "Docker tag found, image was uploaded",
                extra={"image": image, "tag": tag, "attempts": attempts},
            )
            return digest
        except ManifestNotFoundError:
            logger.info(
                "Docker tag not found, waiting a bit more",
                extra={"image": image, "tag": tag, "attempts": attempts},
            )
        except RegistryError as e:
            logger.warning(
                "Registry lookup failed, retrying",
                extra={"image": image, "tag": tag, "error": str(e)},
            )
        except asyncio.TimeoutError:
            raise ImageWaitTimeoutError(image, tag, timeout)

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise ImageWaitTimeoutError(image, tag, timeout)
        await asyncio.sleep(min(IMAGE_POLL_INTERVAL_SECONDS, remaining))
