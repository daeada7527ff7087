"""SpinWick configuration using pydantic-settings.

SpinWickSettings reads configuration from environment variables with the
SPINWICK_ prefix. Secrets and service endpoints have no defaults and must be
provided; timeouts, label names and messages default to the values the
service has always run with.

List-valued settings such as ``pr_labels`` are read as
JSON, e.g. ``SPINWICK_PR_LABELS='[{"label": "needs-qa", "message": "..."}]'``.
"""

from typing import List, Optional

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LabelMessage(BaseModel):
    """A guidance comment posted when a label is added to a PR.

    ``USERNAME`` in the message is replaced with the PR author's login.
    """

    label: str
    message: str


class SpinWickSettings(BaseSettings):
    """SpinWick configuration from environment variables.

    All environment variables are prefixed with SPINWICK_ (e.g.,
    SPINWICK_GITHUB_TOKEN).

    Required fields (must be set via environment variables):
    - github_token: GitHub API token for comments and labels
    - github_webhook_secret: Shared secret for X-Hub-Signature validation
    - provisioner_url: Base URL of the cloud installation provisioner
    - dns_base_domain: Domain SpinWick hostnames are created under
    """

    model_config = SettingsConfigDict(
        env_prefix="SPINWICK_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    github_token: str
    github_webhook_secret: str
    github_base_url: str = "https://api.github.com"

    # Login of the bot account; only its own comments are ever deleted
    github_username: str = "mattermost-build"
    org: str = "mattermost"

    # Inbound webhooks are rejected while remaining API calls are at or below this
    github_token_reserve: int = 50

    # -------------------------------------------------------------------------
    # Labels and Messages
    # -------------------------------------------------------------------------
    spinwick_label: str = "Setup Cloud Test Server"
    spinwick_ha_label: str = "Setup HA Cloud Test Server"
    spinwick_cws_label: str = "Setup Cloud + CWS Test Server"

    pr_labels: List[LabelMessage] = []

    setup_failed_message: str = (
        "Failed to create the SpinWick test server. Please check the logs."
    )
    destroyed_message: str = "Test server destroyed"

    # -------------------------------------------------------------------------
    # Repositories
    # -------------------------------------------------------------------------
    server_repo: str = "mattermost"
    webapp_repo: str = "mattermost-webapp"
    cws_repo: str = "customer-web-server"

    # -------------------------------------------------------------------------
    # Cloud Provisioner
    # -------------------------------------------------------------------------
    provisioner_url: str
    provisioner_api_key: str = ""
    dns_base_domain: str
    cloud_group_id: str = ""
    ha_license: str = ""

    # -------------------------------------------------------------------------
    # Docker Registry
    # -------------------------------------------------------------------------
    docker_registry_url: str = "https://registry-1.docker.io"
    docker_username: str = ""
    docker_password: str = ""

    # Fixed image version for local testing; skips registry lookups when set
    build_override: Optional[str] = None

    # -------------------------------------------------------------------------
    # Customer Web Server
    # -------------------------------------------------------------------------
    cws_public_url: str = ""
    cws_internal_url: str = ""
    cws_api_key: str = ""
    cws_user_password: str = ""
    cws_group_id: str = ""

    # -------------------------------------------------------------------------
    # Kubernetes
    # -------------------------------------------------------------------------
    kube_api_url: str = ""
    kube_token: str = ""
    kube_ca_path: Optional[str] = None
    cws_deployment_template: str = "/spinwick/templates/cws/cws_deployment.yaml"

    # -------------------------------------------------------------------------
    # Operator Notifications
    # -------------------------------------------------------------------------
    operator_webhook_url: str = ""
    operator_webhook_footer: str = ""

    # -------------------------------------------------------------------------
    # Timeouts (seconds)
    # -------------------------------------------------------------------------
    image_wait_timeout_seconds: float = 45 * 60
    image_fallback_timeout_seconds: float = 30 * 60
    create_stable_timeout_seconds: float = 20 * 60
    update_stable_timeout_seconds: float = 10 * 60
    delete_timeout_seconds: float = 15 * 60
    update_build_delay_seconds: float = 60

    # -------------------------------------------------------------------------
    # Runtime Behaviour
    # -------------------------------------------------------------------------
    # Poll the provisioner instead of waiting for its webhooks
    use_polling_waiter: bool = False

    # Skip org-membership checks for slash commands
    local_testing: bool = False

    # -------------------------------------------------------------------------
    # Server and Logging
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 8077
    log_level: str = "INFO"
    debug: bool = False

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_token", "github_webhook_secret")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate that required secrets are not empty."""
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v

    @field_validator("provisioner_url", "github_base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that service URLs are absolute HTTP URLs."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("dns_base_domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        """Ensure the domain carries its leading dot."""
        v = v.strip()
        if not v:
            raise ValueError("dns_base_domain cannot be empty")
        return v if v.startswith(".") else f".{v}"

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def spinwick_labels(self) -> List[str]:
        return [self.spinwick_label, self.spinwick_ha_label, self.spinwick_cws_label]


def get_settings() -> SpinWickSettings:
    """Create and return a SpinWickSettings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return SpinWickSettings()
