"""Cloud installation provisioner client and models."""

from src.spinwick.cloud.client import ProvisionerAPIError, ProvisionerClient
from src.spinwick.cloud.models import (
    CreateInstallationRequest,
    EnvVar,
    EnvVarMap,
    Installation,
    PatchInstallationRequest,
    Webhook,
)

__all__ = [
    "CreateInstallationRequest",
    "EnvVar",
    "EnvVarMap",
    "Installation",
    "PatchInstallationRequest",
    "ProvisionerAPIError",
    "ProvisionerClient",
    "Webhook",
]
