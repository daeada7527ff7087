"""Test deployments of the customer web server in a Kubernetes namespace.

Pull requests against the CWS repository get their own namespace named after
the RepeatableID. The namespace doubles as the environment's installation ID
and as the owner of the provisioner and payment webhooks registered for it.
"""

import logging
from pathlib import Path
from typing import Any, Dict

from src.spinwick.cloud.client import ProvisionerAPIError
from src.spinwick.cws.client import CustomerServiceAPIError, CustomerServiceClient
from src.spinwick.github.models import PullRequest
from src.spinwick.images.builds import CWS_IMAGE
from src.spinwick.kube.client import KubeClient, KubernetesAPIError
from src.spinwick.lifecycle.base import (
    CreateOptions,
    EnvironmentKind,
    LifecycleError,
    LifecycleStrategy,
    OperationAborted,
    UpdateOptions,
)
from src.spinwick.lifecycle.request import LifecycleRequest


logger = logging.getLogger(__name__)


CWS_DEPLOYMENT = "cws-test"
CWS_SECRET = "customer-web-server-secret"
CWS_SERVICE_PORT = 8077


def set_deployment_image(deployment: Dict[str, Any], image: str) -> Dict[str, Any]:
    """Point every container and init container of a deployment at ``image``."""
    pod_spec = deployment.get("spec", {}).get("template", {}).get("spec", {})
    for key in ("containers", "initContainers"):
        for container in pod_spec.get(key) or []:
            container["image"] = image
    return deployment


class KubernetesStrategy(LifecycleStrategy):
    """CWS deployed into a per-PR namespace."""

    kind = EnvironmentKind.KUBERNETES_NAMESPACE

    @property
    def kube(self) -> KubeClient:
        if self.deps.kube is None:
            raise LifecycleError("the Kubernetes API is not configured")
        return self.deps.kube

    @property
    def cws(self) -> CustomerServiceClient:
        if self.deps.cws is None:
            raise LifecycleError("the customer web server is not configured")
        return self.deps.cws

    def namespace(self, pr: PullRequest) -> str:
        return self.identity(pr).repeatable_id

    async def _configure_site(self, namespace: str, site_url: str, webhook_secret: str) -> None:
        """Store the public URL and webhook secret, then roll the pods.

        Failures are logged only; the deployment is usable without them.
        """
        try:
            await self.kube.patch_secret(
                namespace,
                CWS_SECRET,
                {
                    "CWS_SITEURL": site_url,
                    "STRIPE_WEBHOOK_SIGNATURE_SECRET": webhook_secret,
                },
            )
        except KubernetesAPIError as e:
            logger.error(
                "Unable to update CWS_SITEURL or STRIPE_WEBHOOK_SIGNATURE_SECRET secret",
                extra={"namespace": namespace, "error": str(e)},
            )
            return

        try:
            await self.kube.restart_deployment(namespace, CWS_DEPLOYMENT)
        except KubernetesAPIError as e:
            logger.error(
                "Unable to refresh the deployment",
                extra={"namespace": namespace, "error": str(e)},
            )

    async def _create(
        self, request: LifecycleRequest, pr: PullRequest, options: CreateOptions
    ) -> None:
        namespace = self.namespace(pr)
        if await self.kube.namespace_exists(namespace):
            raise OperationAborted(f"Namespace {namespace} already exists")
        await self.kube.get_or_create_namespace(namespace)
        request.with_installation_id(namespace)

        await self.deps.builds.wait_for_image(
            pr, CWS_IMAGE, self.settings.image_wait_timeout_seconds
        )
        version = self.deps.builds.installation_version(pr)

        template = Path(self.settings.cws_deployment_template).read_text()
        await self.kube.apply_manifest(
            namespace,
            template,
            {"namespace": namespace, "image_tag": version, "split_server_id": namespace},
        )
        logger.info("Deployment created successfully", extra={"namespace": namespace})

        hostname = await self.kube.wait_for_load_balancer_hostname(namespace)
        site_url = f"http://{hostname}"

        await self.deps.provisioner.create_webhook(
            namespace,
            f"http://cws-test-service.{namespace}:{CWS_SERVICE_PORT}/api/v1/internal/webhook",
        )
        secret = await self.cws.register_payment_webhook(site_url, namespace)
        await self._configure_site(namespace, site_url, secret)

        await self.remove_comments(
            pr, "Creating a SpinWick test CWS", "Creating a CWS SpinWick test server"
        )
        await self.comment(
            pr,
            f"CWS test server created! :tada:\n\nAccess here: {site_url}"
            f"\n\nSplit individual target: {namespace}",
        )

    async def _update(
        self, request: LifecycleRequest, pr: PullRequest, options: UpdateOptions
    ) -> None:
        namespace = self.namespace(pr)
        if not await self.kube.namespace_exists(namespace):
            raise LifecycleError(f"No namespace found with name {namespace}")
        request.with_installation_id(namespace)

        await self.announce_new_commit(pr)

        await self.deps.builds.wait_for_image(
            pr, CWS_IMAGE, self.settings.image_wait_timeout_seconds
        )
        image = f"{CWS_IMAGE}:{self.deps.builds.installation_version(pr)}"

        deployment = await self.kube.get_deployment(namespace, CWS_DEPLOYMENT)
        await self.kube.replace_deployment(
            namespace, CWS_DEPLOYMENT, set_deployment_image(deployment, image)
        )

        hostname = await self.kube.wait_for_load_balancer_hostname(namespace)
        await self.remove_comments(pr, "CWS test server updated")
        await self.comment(
            pr,
            f"CWS test server updated with git commit `{pr.sha}`.\n\n"
            f"Access here: http://{hostname}",
        )

    async def _destroy(self, request: LifecycleRequest, pr: PullRequest) -> None:
        namespace = self.namespace(pr)
        if not await self.kube.namespace_exists(namespace):
            raise OperationAborted(f"No namespace found with name {namespace}. Skipping deletion")
        request.with_installation_id(namespace)

        await self.kube.delete_namespace(namespace)
        logger.info("Kube namespace has been destroyed", extra={"namespace": namespace})

        try:
            removed = await self.deps.provisioner.delete_webhooks_for_owner(namespace)
        except ProvisionerAPIError as e:
            raise LifecycleError(f"failed to delete provisioner webhooks: {e}") from e
        logger.debug(
            "Removed provisioner webhooks",
            extra={"namespace": namespace, "count": removed},
        )

        try:
            await self.cws.delete_payment_webhook(namespace)
        except CustomerServiceAPIError as e:
            raise LifecycleError(f"failed to delete payment webhook: {e}") from e

        await self.replace_status_comments(pr, self.settings.destroyed_message)
