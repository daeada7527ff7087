"""Kubernetes API client for the CWS test deployments.

Talks to the cluster's REST API directly with a bearer token. Only the
handful of calls SpinWick needs are implemented: namespaces, the CWS
deployment and its secret, the load-balancer service, and applying the
rendered deployment manifest.
"""

import asyncio
import base64
import json
import logging
from datetime import datetime, timezone
from string import Template
from typing import Any, Dict, List, Optional

import yaml

from src.spinwick.http import APIError, JSONAPIClient


logger = logging.getLogger(__name__)


LOAD_BALANCER_SERVICE = "cws-test-service"
LOAD_BALANCER_TIMEOUT_SECONDS = 5 * 60
LOAD_BALANCER_POLL_SECONDS = 30

# Collection paths for the kinds the CWS manifest contains
_KIND_PATHS = {
    "Deployment": "/apis/apps/v1/namespaces/{namespace}/deployments",
    "Service": "/api/v1/namespaces/{namespace}/services",
    "Secret": "/api/v1/namespaces/{namespace}/secrets",
    "ConfigMap": "/api/v1/namespaces/{namespace}/configmaps",
    "ServiceAccount": "/api/v1/namespaces/{namespace}/serviceaccounts",
}


class KubernetesAPIError(APIError):
    """Raised when a Kubernetes API request fails."""


class LoadBalancerTimeoutError(KubernetesAPIError):
    """Raised when a service never receives a load-balancer hostname."""


class KubeClient(JSONAPIClient):
    """Async client for the Kubernetes REST API.

    Attributes:
        token: Bearer token for the API server.
    """

    service_name = "Kubernetes API"
    error_class = KubernetesAPIError

    def __init__(
        self,
        base_url: str,
        token: str = "",
        ca_path: Optional[str] = None,
        **kwargs: Any,
    ):
        self.token = token
        if ca_path:
            kwargs.setdefault("verify", ca_path)
        super().__init__(base_url=base_url, **kwargs)

    def _default_headers(self) -> Dict[str, str]:
        headers = super()._default_headers()
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    async def namespace_exists(self, name: str) -> bool:
        try:
            await self._request(method="GET", path=f"/api/v1/namespaces/{name}")
        except KubernetesAPIError as e:
            if e.is_not_found:
                return False
            raise
        return True

    async def get_or_create_namespace(self, name: str) -> Dict[str, Any]:
        try:
            response = await self._request(method="GET", path=f"/api/v1/namespaces/{name}")
            return response.json()
        except KubernetesAPIError as e:
            if not e.is_not_found:
                raise

        logger.info("Creating namespace", extra={"namespace": name})
        response = await self._request(
            method="POST",
            path="/api/v1/namespaces",
            json_data={
                "apiVersion": "v1",
                "kind": "Namespace",
                "metadata": {"name": name},
            },
        )
        return response.json()

    async def delete_namespace(self, name: str) -> None:
        """Delete a namespace and everything in it, without a grace period."""
        logger.info("Deleting namespace", extra={"namespace": name})
        await self._request(
            method="DELETE",
            path=f"/api/v1/namespaces/{name}",
            json_data={
                "apiVersion": "v1",
                "kind": "DeleteOptions",
                "gracePeriodSeconds": 0,
                "propagationPolicy": "Foreground",
            },
        )

    # ------------------------------------------------------------------
    # Deployments and secrets
    # ------------------------------------------------------------------

    async def get_deployment(self, namespace: str, name: str) -> Dict[str, Any]:
        response = await self._request(
            method="GET",
            path=f"/apis/apps/v1/namespaces/{namespace}/deployments/{name}",
        )
        return response.json()

    async def replace_deployment(
        self, namespace: str, name: str, deployment: Dict[str, Any]
    ) -> Dict[str, Any]:
        response = await self._request(
            method="PUT",
            path=f"/apis/apps/v1/namespaces/{namespace}/deployments/{name}",
            json_data=deployment,
        )
        return response.json()

    async def restart_deployment(self, namespace: str, name: str) -> None:
        """Roll the deployment's pods by bumping a pod-template label."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        await self._patch(
            f"/apis/apps/v1/namespaces/{namespace}/deployments/{name}",
            [
                {
                    "op": "add",
                    "path": "/spec/template/metadata/labels/date",
                    "value": stamp,
                }
            ],
        )

    async def patch_secret(
        self, namespace: str, name: str, values: Dict[str, str]
    ) -> None:
        """Replace keys of an existing secret with new plain-text values."""
        operations = [
            {
                "op": "replace",
                "path": f"/data/{key}",
                "value": base64.b64encode(value.encode()).decode(),
            }
            for key, value in values.items()
        ]
        await self._patch(f"/api/v1/namespaces/{namespace}/secrets/{name}", operations)

    async def _patch(self, path: str, operations: List[Dict[str, Any]]) -> None:
        await self._request(
            method="PATCH",
            path=path,
            content=json.dumps(operations).encode(),
            headers={"Content-Type": "application/json-patch+json"},
        )

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    async def get_load_balancer_hostname(
        self, namespace: str, service: str = LOAD_BALANCER_SERVICE
    ) -> Optional[str]:
        response = await self._request(
            method="GET", path=f"/api/v1/namespaces/{namespace}/services/{service}"
        )
        ingress = (
            response.json().get("status", {}).get("loadBalancer", {}).get("ingress") or []
        )
        if not ingress:
            return None
        return ingress[0].get("hostname") or ingress[0].get("ip")

    async def wait_for_load_balancer_hostname(
        self,
        namespace: str,
        service: str = LOAD_BALANCER_SERVICE,
        timeout: float = LOAD_BALANCER_TIMEOUT_SECONDS,
        interval: float = LOAD_BALANCER_POLL_SECONDS,
    ) -> str:
        """Poll a service until the cloud provider assigns its hostname.

        Raises:
            LoadBalancerTimeoutError: If no hostname appears within ``timeout``.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise LoadBalancerTimeoutError(
                    f"timed out waiting for a load balancer on {namespace}/{service}"
                )
            await asyncio.sleep(min(interval, remaining))
            try:
                hostname = await self.get_load_balancer_hostname(namespace, service)
            except KubernetesAPIError as e:
                logger.debug(
                    "Load balancer lookup failed",
                    extra={"namespace": namespace, "error": str(e)},
                )
                continue
            if hostname:
                return hostname
            logger.debug("No load balancer hostname yet", extra={"namespace": namespace})

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    async def apply_manifest(
        self, namespace: str, template: str, variables: Dict[str, str]
    ) -> List[str]:
        """Render a manifest template and create each document it holds.

        Args:
            namespace: Namespace to create the objects in.
            template: YAML text with ``$name`` placeholders.
            variables: Values substituted into the template.

        Returns:
            ``Kind/name`` of every object created.

        Raises:
            KubernetesAPIError: On an unsupported kind or a failed request.
        """
        rendered = Template(template).substitute(variables)
        created = []
        for document in yaml.safe_load_all(rendered):
            if not document:
                continue
            kind = document.get("kind", "")
            path = _KIND_PATHS.get(kind)
            if path is None:
                raise KubernetesAPIError(f"unsupported manifest kind: {kind!r}")
            document.setdefault("metadata", {})["namespace"] = namespace
            await self._request(
                method="POST",
                path=path.format(namespace=namespace),
                json_data=document,
            )
            created.append(f"{kind}/{document['metadata'].get('name', '')}")
        logger.info(
            "Applied manifest",
            extra={"namespace": namespace, "objects": created},
        )
        return created
