"""Inbound webhook handling.

- handler: GitHub signature validation and event parsing
- models: GitHub event and provisioner notification models
- channels: per-installation channels fed by provisioner notifications
"""

from .channels import ChannelAlreadyRegisteredError, WebhookChannelRegistry
from .handler import WebhookHandler, compute_signature
from .models import (
    CloudWebhookPayload,
    IssueCommentEvent,
    PingEvent,
    PullRequestAction,
    PullRequestEvent,
)

__all__ = [
    "ChannelAlreadyRegisteredError",
    "CloudWebhookPayload",
    "IssueCommentEvent",
    "PingEvent",
    "PullRequestAction",
    "PullRequestEvent",
    "WebhookChannelRegistry",
    "WebhookHandler",
    "compute_signature",
]
