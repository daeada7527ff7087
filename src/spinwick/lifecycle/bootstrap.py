"""Post-creation setup of a fresh Mattermost test server.

Once an installation is stable its DNS name may still be propagating. The
initializer waits until the host accepts TCP connections and the server
answers its ping endpoint, then creates the admin account, a team named
after the PR and a regular test user, so the success comment can list
working credentials.
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx

from src.spinwick.http import APIError, JSONAPIClient


logger = logging.getLogger(__name__)


ADMIN_USERNAME = "sysadmin"
ADMIN_PASSWORD = "Sys@dmin123"
TEST_USERNAME = "user-1"
TEST_PASSWORD = "User-1@123"
EMAIL_DOMAIN = "example.mattermost.com"

READY_TIMEOUT_SECONDS = 600
READY_POLL_SECONDS = 10
CONNECT_TIMEOUT_SECONDS = 2

CREDENTIALS_TABLE = (
    "| Account Type | Username | Password |\n"
    "|---|---|---|\n"
    f"| Admin | {ADMIN_USERNAME} | {ADMIN_PASSWORD} |\n"
    f"| User | {TEST_USERNAME} | {TEST_PASSWORD} |"
)


class InitializationError(Exception):
    """Raised when a test server cannot be initialized."""


class MattermostAPIError(APIError):
    """Raised when a Mattermost server API request fails."""


class MattermostClient(JSONAPIClient):
    """Minimal Mattermost REST v4 client for server bootstrap."""

    service_name = "Mattermost API"
    error_class = MattermostAPIError

    def __init__(self, base_url: str, **kwargs: Any):
        kwargs.setdefault("max_retries", 0)
        super().__init__(base_url=base_url, **kwargs)
        self.token: Optional[str] = None

    @property
    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def ping(self) -> bool:
        try:
            response = await self.client.get("/api/v4/system/ping")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def create_user(self, username: str, password: str) -> Dict[str, Any]:
        response = await self._request(
            method="POST",
            path="/api/v4/users",
            json_data={
                "username": username,
                "email": f"{username}@{EMAIL_DOMAIN}",
                "password": password,
            },
            headers=self._auth_headers,
        )
        return response.json()

    async def login(self, login_id: str, password: str) -> Dict[str, Any]:
        response = await self._request(
            method="POST",
            path="/api/v4/users/login",
            json_data={"login_id": login_id, "password": password},
        )
        self.token = response.headers.get("Token")
        return response.json()

    async def create_team(self, name: str) -> Dict[str, Any]:
        response = await self._request(
            method="POST",
            path="/api/v4/teams",
            json_data={"name": name, "display_name": name, "type": "O"},
            headers=self._auth_headers,
        )
        return response.json()

    async def add_team_member(self, team_id: str, user_id: str) -> None:
        await self._request(
            method="POST",
            path=f"/api/v4/teams/{team_id}/members",
            json_data={"team_id": team_id, "user_id": user_id},
            headers=self._auth_headers,
        )


async def _port_open(host: str, port: int) -> bool:
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=CONNECT_TIMEOUT_SECONDS
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    return True


class MattermostInitializer:
    """Creates the initial accounts and team on a new test server.

    Attributes:
        timeout: Seconds to wait for DNS and for the ping endpoint, each.
        interval: Seconds between readiness checks.
    """

    def __init__(
        self,
        timeout: float = READY_TIMEOUT_SECONDS,
        interval: float = READY_POLL_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        check_dns: bool = True,
    ):
        self.timeout = timeout
        self.interval = interval
        self._transport = transport
        self._check_dns = check_dns

    async def _wait_until(self, probe, description: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while not await probe():
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise InitializationError(f"timed out waiting for {description}")
            await asyncio.sleep(min(self.interval, remaining))

    async def initialize(self, url: str, pr_number: int) -> None:
        """Initialize the server at ``url``.

        Raises:
            InitializationError: If the server never becomes reachable or a
                setup call fails.
        """
        logger.info("Initializing Mattermost installation", extra={"url": url})
        host = urlparse(url).hostname or ""

        if self._check_dns:
            await self._wait_until(
                lambda: _port_open(host, 443), f"{host}:443 to become reachable"
            )

        async with MattermostClient(url, transport=self._transport) as client:
            await self._wait_until(client.ping, "an ok ping response")

            try:
                await client.create_user(ADMIN_USERNAME, ADMIN_PASSWORD)
                admin = await client.login(ADMIN_USERNAME, ADMIN_PASSWORD)
                team = await client.create_team(f"pr{pr_number}")
                await client.add_team_member(team["id"], admin["id"])
                user = await client.create_user(TEST_USERNAME, TEST_PASSWORD)
                await client.add_team_member(team["id"], user["id"])
            except MattermostAPIError as e:
                raise InitializationError(
                    f"failed to set up the test server: {e}"
                ) from e

        logger.info("Mattermost configuration complete", extra={"url": url})
