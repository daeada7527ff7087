"""Shared fixtures for the SpinWick test suite."""

import pytest

from src.spinwick.config import SpinWickSettings


@pytest.fixture
def settings() -> SpinWickSettings:
    """Settings with every required value filled and no build delay.

    Tests needing other values use ``settings.model_copy(update=...)``.
    """
    return SpinWickSettings(
        github_token="ghp_test_token",
        github_webhook_secret="webhook-secret",
        provisioner_url="http://provisioner.test",
        dns_base_domain=".test.mattermost.cloud",
        ha_license="ha-license-data",
        cws_user_password="Cws-Passw0rd!",
        cws_public_url="http://cws.test",
        cws_internal_url="http://cws-internal.test",
        update_build_delay_seconds=0,
    )
