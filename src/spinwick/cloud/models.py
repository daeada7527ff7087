"""Cloud provisioner data models.

The provisioner's REST API uses Go-style PascalCase JSON keys
(``OwnerID``, ``MattermostEnv`` ...). Models declare those keys as aliases
and are populated by Python field name internally.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EnvVar(BaseModel):
    """A Mattermost environment variable override.

    ``EnvVar()`` (no value) is the explicit clear marker: the provisioner
    removes the variable from the installation when it receives it.
    """

    value: Optional[str] = None

    @classmethod
    def clear(cls) -> "EnvVar":
        return cls()

    @property
    def is_clear(self) -> bool:
        return self.value is None


# Ordered mapping of variable name to override; dict preserves insertion order
EnvVarMap = Dict[str, EnvVar]


def env_map_to_json(env: Optional[EnvVarMap]) -> Optional[Dict[str, Dict[str, str]]]:
    """Serialize an EnvVarMap in the provisioner's wire format."""
    if env is None:
        return None
    return {name: var.model_dump(exclude_none=True) for name, var in env.items()}


class _ProvisionerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Installation(_ProvisionerModel):
    """An installation as reported by the provisioner."""

    id: str = Field(..., alias="ID")
    owner_id: str = Field("", alias="OwnerID")
    version: str = Field("", alias="Version")
    image: str = Field("", alias="Image")
    dns: str = Field("", alias="DNS")
    state: str = Field("", alias="State")
    size: str = Field("", alias="Size")
    group_id: Optional[str] = Field(None, alias="GroupID")

    @property
    def url(self) -> str:
        return f"https://{self.dns}" if self.dns else ""


class CreateInstallationRequest(_ProvisionerModel):
    owner_id: str = Field(..., alias="OwnerID")
    version: str = Field(..., alias="Version")
    image: str = Field(..., alias="Image")
    dns: str = Field(..., alias="DNS")
    size: str = Field("miniSingleton", alias="Size")
    affinity: str = Field("multitenant", alias="Affinity")
    database: str = Field("aws-multitenant-rds-postgres-pgbouncer", alias="Database")
    filestore: str = Field("bifrost", alias="Filestore")
    annotations: List[str] = Field(default_factory=lambda: ["multi-tenant"], alias="Annotations")
    license: Optional[str] = Field(None, alias="License")
    group_id: Optional[str] = Field(None, alias="GroupID")
    mattermost_env: Optional[EnvVarMap] = Field(None, alias="MattermostEnv")

    def to_json(self) -> dict:
        data = self.model_dump(by_alias=True, exclude_none=True, exclude={"mattermost_env"})
        env = env_map_to_json(self.mattermost_env)
        if env:
            data["MattermostEnv"] = env
        return data


class PatchInstallationRequest(_ProvisionerModel):
    """Fields to change on an existing installation; None means unchanged."""

    version: Optional[str] = Field(None, alias="Version")
    image: Optional[str] = Field(None, alias="Image")
    license: Optional[str] = Field(None, alias="License")
    mattermost_env: Optional[EnvVarMap] = Field(None, alias="MattermostEnv")

    def to_json(self) -> dict:
        data = self.model_dump(by_alias=True, exclude_none=True, exclude={"mattermost_env"})
        env = env_map_to_json(self.mattermost_env)
        if env:
            data["MattermostEnv"] = env
        return data


class Webhook(_ProvisionerModel):
    id: str = Field(..., alias="ID")
    owner_id: str = Field("", alias="OwnerID")
    url: str = Field("", alias="URL")
