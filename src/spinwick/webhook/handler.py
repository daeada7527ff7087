"""GitHub and provisioner webhook parsing.

WebhookHandler validates the ``X-Hub-Signature`` header GitHub attaches to
every delivery and parses the three event types SpinWick consumes:

- ``ping``: sent once when the hook is configured
- ``pull_request``: label changes, new commits, closes
- ``issue_comment``: slash commands left on pull requests

Parsing is defensive: malformed payloads are logged and yield None so the
HTTP layer can acknowledge and move on.

GitHub Webhook Payload Structure (pull_request event):
{
  "action": "labeled",
  "number": 42,
  "label": {"name": "Setup Cloud Test Server"},
  "pull_request": {
    "number": 42,
    "state": "open",
    "user": {"login": "author"},
    "head": {"ref": "feature-branch", "sha": "abc123..."},
    "base": {"repo": {"name": "mattermost", "owner": {"login": "mattermost"}}},
    "labels": [{"name": "Setup Cloud Test Server"}]
  }
}
"""

import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from src.spinwick.github.models import PullRequest
from .models import (
    CloudWebhookPayload,
    IssueCommentEvent,
    PingEvent,
    PullRequestAction,
    PullRequestEvent,
)

logger = logging.getLogger(__name__)


SIGNATURE_PREFIX = "sha1="


def compute_signature(secret: str, body: bytes) -> str:
    """Return the ``X-Hub-Signature`` value GitHub would send for ``body``."""
    digest = hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class WebhookHandler:
    """Validator and parser for inbound webhooks.

    Attributes:
        secret: The shared GitHub webhook secret.
    """

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Check a GitHub HMAC-SHA1 signature in constant time.

        Args:
            body: Raw request body, exactly as received.
            signature: Value of the ``X-Hub-Signature`` header.

        Returns:
            True if the signature is present, uses sha1 and matches.
        """
        if not signature or not signature.startswith(SIGNATURE_PREFIX):
            return False
        expected = compute_signature(self.secret, body)
        return hmac.compare_digest(signature, expected)

    def parse_ping_event(self, payload: Dict[str, Any]) -> Optional[PingEvent]:
        if not isinstance(payload, dict):
            return None
        hook_id = payload.get("hook_id")
        return PingEvent(
            hook_id=hook_id if isinstance(hook_id, int) else None,
            zen=str(payload.get("zen") or ""),
        )

    def parse_pull_request_event(
        self, payload: Dict[str, Any]
    ) -> Optional[PullRequestEvent]:
        """Parse a pull_request event.

        Args:
            payload: The raw webhook payload as a dictionary.

        Returns:
            PullRequestEvent if parsing succeeds, None for malformed
            payloads.
        """
        if not isinstance(payload, dict):
            logger.warning("Invalid payload: expected dict, got %s", type(payload))
            return None

        pr_data = payload.get("pull_request")
        if not isinstance(pr_data, dict):
            logger.warning(
                "Missing or invalid 'pull_request' field in payload: %s",
                type(pr_data),
            )
            return None

        label = None
        label_data = payload.get("label")
        if isinstance(label_data, dict) and isinstance(label_data.get("name"), str):
            label = label_data["name"]

        try:
            pull_request = PullRequest.from_github_response(pr_data)
        except (ValidationError, KeyError, TypeError) as e:
            logger.warning("Malformed pull_request payload: %s", e)
            return None

        event = PullRequestEvent(
            action=PullRequestAction.parse(payload.get("action")),
            label=label,
            pull_request=pull_request,
        )
        logger.info(
            "Parsed pull_request event: action=%s, pr=%s",
            event.action.value,
            pull_request.pr_id,
        )
        return event

    def parse_issue_comment_event(
        self, payload: Dict[str, Any]
    ) -> Optional[IssueCommentEvent]:
        """Parse an issue_comment event.

        Returns:
            IssueCommentEvent if parsing succeeds, None for malformed
            payloads.
        """
        if not isinstance(payload, dict):
            return None

        issue = payload.get("issue")
        comment = payload.get("comment")
        repo = payload.get("repository")
        if not all(isinstance(part, dict) for part in (issue, comment, repo)):
            logger.warning("issue_comment payload is missing issue, comment or repository")
            return None

        try:
            return IssueCommentEvent(
                action=str(payload.get("action") or ""),
                owner=(repo.get("owner") or {}).get("login", ""),
                repository=repo.get("name", ""),
                issue_number=issue.get("number", 0),
                is_pull_request=isinstance(issue.get("pull_request"), dict),
                comment_body=comment.get("body") or "",
                commenter=(comment.get("user") or {}).get("login", ""),
            )
        except ValidationError as e:
            logger.warning("Malformed issue_comment payload: %s", e)
            return None

    def parse_cloud_payload(
        self, payload: Dict[str, Any]
    ) -> Optional[CloudWebhookPayload]:
        """Parse a provisioner state-change notification."""
        try:
            return CloudWebhookPayload.model_validate(payload)
        except ValidationError as e:
            logger.warning("Malformed provisioner webhook payload: %s", e)
            return None
