"""Cloud provisioner API client.

Wraps the provisioner's installation and webhook endpoints:

- POST   /api/installations            create an installation
- GET    /api/installation/{id}        fetch one installation
- GET    /api/installations?owner=...  list installations by owner
- PUT    /api/installation/{id}/mattermost  update version/image/env
- DELETE /api/installation/{id}        delete an installation
- POST   /api/webhooks, GET /api/webhooks?owner=..., DELETE /api/webhook/{id}

Requests carry the ``x-api-key`` header when an API key is configured.
"""

import logging
from typing import Any, Dict, List, Optional

from src.spinwick.cloud.models import (
    CreateInstallationRequest,
    Installation,
    PatchInstallationRequest,
    Webhook,
)
from src.spinwick.http import APIError, JSONAPIClient


logger = logging.getLogger(__name__)


class ProvisionerAPIError(APIError):
    """Raised when a provisioner API request fails."""


class ProvisionerClient(JSONAPIClient):
    """Async client for the cloud installation provisioner.

    Attributes:
        api_key: Value for the ``x-api-key`` header, empty for none.
    """

    service_name = "Provisioner API"
    error_class = ProvisionerAPIError

    def __init__(self, base_url: str, api_key: str = "", **kwargs: Any):
        self.api_key = api_key
        super().__init__(base_url=base_url, **kwargs)

    def _default_headers(self) -> Dict[str, str]:
        headers = super()._default_headers()
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    # ------------------------------------------------------------------
    # Installations
    # ------------------------------------------------------------------

    async def create_installation(
        self, request: CreateInstallationRequest
    ) -> Installation:
        logger.info(
            "Creating installation",
            extra={
                "owner_id": request.owner_id,
                "dns": request.dns,
                "version": request.version,
                "image": request.image,
                "size": request.size,
            },
        )
        response = await self._request(
            method="POST", path="/api/installations", json_data=request.to_json()
        )
        return Installation.model_validate(response.json())

    async def get_installation(self, installation_id: str) -> Optional[Installation]:
        """Fetch an installation.

        Returns:
            The installation, or None when the provisioner no longer knows
            it.
        """
        try:
            response = await self._request(
                method="GET", path=f"/api/installation/{installation_id}"
            )
        except ProvisionerAPIError as e:
            if e.is_not_found:
                return None
            raise
        return Installation.model_validate(response.json())

    async def get_installations(
        self, owner_id: str, include_deleted: bool = False
    ) -> List[Installation]:
        response = await self._request(
            method="GET",
            path="/api/installations",
            params={
                "owner": owner_id,
                "page": 0,
                "per_page": 100,
                "include_deleted": str(include_deleted).lower(),
            },
        )
        return [Installation.model_validate(item) for item in response.json() or []]

    async def get_installation_by_owner(self, owner_id: str) -> Optional[Installation]:
        """Return the single live installation owned by ``owner_id``.

        Returns:
            The installation, or None when the owner has none.

        Raises:
            ProvisionerAPIError: If the owner has more than one installation.
        """
        installations = await self.get_installations(owner_id)
        if not installations:
            return None
        if len(installations) > 1:
            raise ProvisionerAPIError(
                f"found {len(installations)} installations with ownerID {owner_id}"
            )
        return installations[0]

    async def update_installation(
        self, installation_id: str, patch: PatchInstallationRequest
    ) -> Installation:
        logger.info(
            "Updating installation",
            extra={
                "installation_id": installation_id,
                "version": patch.version,
                "image": patch.image,
            },
        )
        response = await self._request(
            method="PUT",
            path=f"/api/installation/{installation_id}/mattermost",
            json_data=patch.to_json(),
        )
        return Installation.model_validate(response.json())

    async def delete_installation(self, installation_id: str) -> None:
        logger.info("Deleting installation", extra={"installation_id": installation_id})
        await self._request(method="DELETE", path=f"/api/installation/{installation_id}")

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def create_webhook(self, owner_id: str, url: str) -> Webhook:
        logger.info("Creating provisioner webhook", extra={"owner_id": owner_id, "url": url})
        response = await self._request(
            method="POST",
            path="/api/webhooks",
            json_data={"OwnerID": owner_id, "URL": url},
        )
        return Webhook.model_validate(response.json())

    async def get_webhooks(self, owner_id: str) -> List[Webhook]:
        response = await self._request(
            method="GET",
            path="/api/webhooks",
            params={"owner": owner_id, "page": 0, "per_page": 100},
        )
        return [Webhook.model_validate(item) for item in response.json() or []]

    async def delete_webhook(self, webhook_id: str) -> None:
        await self._request(method="DELETE", path=f"/api/webhook/{webhook_id}")

    async def delete_webhooks_for_owner(self, owner_id: str) -> int:
        """Delete every webhook registered by ``owner_id``.

        Returns:
            Number of webhooks deleted.
        """
        webhooks = await self.get_webhooks(owner_id)
        for webhook in webhooks:
            await self.delete_webhook(webhook.id)
        return len(webhooks)
