"""Customer web server (CWS) API client.

CWS exposes two hosts:

- the public API, authenticated per user with the session token returned by
  login/signup (``Token`` response header, sent back as a bearer token)
- the internal API, authenticated with the ``X-MM-Api-Key`` header

Session tokens are returned to the caller rather than stored on the client,
so one client can serve concurrent SpinWick operations for different users.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.spinwick.http import APIError, JSONAPIClient


logger = logging.getLogger(__name__)


SESSION_HEADER = "Token"


class CustomerServiceAPIError(APIError):
    """Raised when a CWS API request fails."""


class CWSUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str = ""


class CWSCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    creator_id: str = ""


class CWSInstallation(BaseModel):
    """A workspace installation as listed by CWS."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(..., alias="ID")
    state: str = Field("", alias="State")
    customer_id: str = Field("", alias="CustomerID")
    subscription_id: str = Field("", alias="SubscriptionID")


@dataclass
class CWSSession:
    """An authenticated CWS user session."""

    token: str
    user: CWSUser
    customer: Optional[CWSCustomer] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"BEARER {self.token}"}


class CustomerServiceClient(JSONAPIClient):
    """Async client for the customer web server.

    Attributes:
        internal_url: Base URL of the internal API.
        api_key: Internal API key.
    """

    service_name = "CWS API"
    error_class = CustomerServiceAPIError

    def __init__(
        self,
        public_url: str,
        internal_url: str,
        api_key: str,
        **kwargs: Any,
    ):
        self.internal_url = internal_url.rstrip("/")
        self.api_key = api_key
        super().__init__(base_url=public_url, **kwargs)

    @property
    def _internal_headers(self) -> Dict[str, str]:
        return {"X-MM-Api-Key": self.api_key}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> CWSSession:
        response = await self._request(
            method="POST",
            path="/api/v1/users/login",
            json_data={"email": email, "password": password},
        )
        return CWSSession(
            token=response.headers.get(SESSION_HEADER, ""),
            user=CWSUser.model_validate(response.json()),
        )

    async def signup(self, email: str, password: str) -> CWSSession:
        """Create a user; CWS creates the user's customer alongside it."""
        logger.info("Signing up CWS user", extra={"email": email})
        response = await self._request(
            method="POST",
            path="/api/v1/users/signup",
            json_data={"email": email, "password": password},
        )
        data = response.json()
        return CWSSession(
            token=response.headers.get(SESSION_HEADER, ""),
            user=CWSUser.model_validate(data["user"]),
            customer=CWSCustomer.model_validate(data["customer"]),
        )

    async def verify_user(self, user_id: str) -> None:
        await self._request(
            method="POST",
            path=f"/api/v1/internal/users/{user_id}/verify",
            headers=self._internal_headers,
            base_url=self.internal_url,
        )

    # ------------------------------------------------------------------
    # Customers and installations
    # ------------------------------------------------------------------

    async def get_my_customers(self, session: CWSSession) -> List[CWSCustomer]:
        response = await self._request(
            method="GET", path="/api/v1/customers", headers=session.headers
        )
        return [CWSCustomer.model_validate(item) for item in response.json() or []]

    async def get_installations(self, session: CWSSession) -> List[CWSInstallation]:
        response = await self._request(
            method="GET", path="/api/v1/installations", headers=session.headers
        )
        return [CWSInstallation.model_validate(item) for item in response.json() or []]

    async def create_installation(
        self,
        customer_id: str,
        workspace_name: str,
        version: str,
        image: str,
        group_id: str = "",
        api_lock: bool = False,
    ) -> str:
        """Request a workspace installation for a customer.

        Returns:
            The provisioner installation ID.
        """
        logger.info(
            "Creating CWS installation",
            extra={
                "customer_id": customer_id,
                "workspace_name": workspace_name,
                "version": version,
            },
        )
        response = await self._request(
            method="POST",
            path="/api/v1/internal/installation",
            json_data={
                "customer_id": customer_id,
                "workspace_name": workspace_name,
                "version": version,
                "image": image,
                "group_id": group_id,
                "api_lock": api_lock,
            },
            headers=self._internal_headers,
            base_url=self.internal_url,
        )
        return response.json()["installationId"]

    async def delete_installation(self, installation_id: str) -> None:
        logger.info("Deleting CWS installation", extra={"installation_id": installation_id})
        await self._request(
            method="DELETE",
            path=f"/api/v1/internal/installation/{installation_id}",
            headers=self._internal_headers,
            base_url=self.internal_url,
        )

    # ------------------------------------------------------------------
    # Payment webhooks
    # ------------------------------------------------------------------

    async def register_payment_webhook(self, url: str, owner: str) -> str:
        """Register a payment-provider webhook for a test CWS deployment.

        Returns:
            The webhook signing secret.
        """
        response = await self._request(
            method="POST",
            path="/api/v1/internal/tests/spinwick/register_stripe_webhook",
            json_data={"url": url, "owner": owner},
            headers=self._internal_headers,
            base_url=self.internal_url,
        )
        return response.json()["secret"]

    async def delete_payment_webhook(self, owner: str) -> None:
        await self._request(
            method="DELETE",
            path=f"/api/v1/internal/tests/spinwick/stripe_webhook/{owner}",
            headers=self._internal_headers,
            base_url=self.internal_url,
        )
