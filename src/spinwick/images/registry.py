"""Docker registry client for manifest digest lookups.

Uses the registry v2 API: a HEAD request on the manifest returns the digest
in the ``Docker-Content-Digest`` header. Registries that require a token
answer 401 with a ``WWW-Authenticate: Bearer realm=...,service=...,scope=...``
challenge; the client fetches a token from the realm (with basic auth when
credentials are configured), caches it per image and retries once.
"""

import base64
import logging
import re
from typing import Any, Dict, Optional

import httpx

from src.spinwick.http import APIError, JSONAPIClient


logger = logging.getLogger(__name__)


MANIFEST_MEDIA_TYPES = ", ".join(
    [
        "application/vnd.docker.distribution.manifest.v2+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.oci.image.index.v1+json",
    ]
)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class RegistryError(APIError):
    """Raised when a registry request fails."""


class ManifestNotFoundError(RegistryError):
    """Raised when the requested image tag does not exist (yet)."""


class RegistryAuthChallenge(RegistryError):
    """A 401 carrying a bearer-token challenge.

    Attributes:
        params: Parsed challenge parameters (realm, service, scope).
    """

    def __init__(self, params: Dict[str, str], **kwargs: Any):
        self.params = params
        super().__init__(message="registry requested authentication", **kwargs)


def parse_bearer_challenge(header: str) -> Optional[Dict[str, str]]:
    """Parse a ``WWW-Authenticate`` bearer challenge.

    Returns:
        The challenge parameters, or None if the header is not a bearer
        challenge with a realm.
    """
    scheme, _, rest = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    params = dict(_CHALLENGE_PARAM.findall(rest))
    return params if "realm" in params else None


class DockerRegistryClient(JSONAPIClient):
    """Async client for a Docker registry v2 API.

    Attributes:
        username: Registry username, empty for anonymous access.
        password: Registry password.
    """

    service_name = "Docker registry"
    error_class = RegistryError

    def __init__(
        self,
        base_url: str = "https://registry-1.docker.io",
        username: str = "",
        password: str = "",
        **kwargs: Any,
    ):
        self.username = username
        self.password = password
        self._tokens: Dict[str, str] = {}
        super().__init__(base_url=base_url, **kwargs)

    async def _check_response(self, response: httpx.Response) -> None:
        if response.status_code != 401:
            return
        params = parse_bearer_challenge(response.headers.get("WWW-Authenticate", ""))
        if params is not None:
            raise RegistryAuthChallenge(
                params,
                status_code=401,
                request_url=str(response.url),
            )

    def _basic_auth_headers(self) -> Dict[str, str]:
        if not self.username:
            return {}
        credentials = f"{self.username}:{self.password}".encode()
        return {"Authorization": f"Basic {base64.b64encode(credentials).decode()}"}

    async def _fetch_token(self, challenge: Dict[str, str]) -> str:
        params = {k: v for k, v in challenge.items() if k in ("service", "scope")}
        response = await self._request(
            method="GET",
            path="",
            params=params,
            headers=self._basic_auth_headers(),
            base_url=challenge["realm"],
        )
        data = response.json()
        token = data.get("token") or data.get("access_token")
        if not token:
            raise RegistryError("registry token endpoint returned no token")
        return token

    async def manifest_digest(self, image: str, tag: str) -> str:
        """Look up the digest of ``image:tag``.

        Args:
            image: Repository name, e.g. ``mattermostdevelopment/mm-ee-test``.
            tag: Image tag.

        Returns:
            The manifest digest.

        Raises:
            ManifestNotFoundError: If the tag does not exist.
            RegistryError: On any other failure.
        """
        path = f"/v2/{image}/manifests/{tag}"
        headers = {"Accept": MANIFEST_MEDIA_TYPES}
        if image in self._tokens:
            headers["Authorization"] = f"Bearer {self._tokens[image]}"

        try:
            try:
                response = await self._request(method="HEAD", path=path, headers=headers)
            except RegistryAuthChallenge as challenge:
                logger.debug(
                    "Registry requested a token",
                    extra={"image": image, "realm": challenge.params.get("realm")},
                )
                self._tokens[image] = await self._fetch_token(challenge.params)
                headers["Authorization"] = f"Bearer {self._tokens[image]}"
                response = await self._request(method="HEAD", path=path, headers=headers)
        except RegistryError as e:
            if e.is_not_found:
                raise ManifestNotFoundError(
                    message=f"manifest {image}:{tag} not found",
                    status_code=404,
                    request_url=e.request_url,
                ) from e
            raise

        digest = response.headers.get("Docker-Content-Digest", "")
        logger.debug("Found manifest", extra={"image": image, "tag": tag, "digest": digest})
        return digest
