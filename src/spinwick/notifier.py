"""Operator escalation through a chat incoming webhook.

Reportable failures are posted to an operator channel with enough context
(repository, PR, installation ID) to investigate without digging through
logs. Notification problems are logged and never fail the workflow.
"""

import logging
from typing import Any, Mapping, Optional

from src.spinwick.github.models import PullRequest
from src.spinwick.http import APIError, JSONAPIClient


logger = logging.getLogger(__name__)


NOTIFIER_USERNAME = "SpinWick"


class NotificationError(APIError):
    """Raised when the incoming webhook rejects a message."""


def format_pretty_error(
    title: str,
    pr: PullRequest,
    error: Optional[BaseException],
    fields: Optional[Mapping[str, str]] = None,
) -> str:
    """Build the escalation text for a failed operation.

    Args:
        title: Headline, e.g. ``[ SpinWick ] Creation Failed``.
        pr: Pull request the operation ran for.
        error: The failure.
        fields: Extra ``key: value`` lines such as the installation ID.

    Returns:
        The message text, without footer.
    """
    text = (
        f"{title}\n---\n"
        f"Error: {error}\n"
        f"Repository: {pr.owner}/{pr.repository}\n"
        f"Pull Request: {pr.number} [ status={pr.state} ]\n"
        f"URL: {pr.url}\n"
    )
    for key, value in (fields or {}).items():
        text += f"{key}: {value}\n"
    return text


class OperatorNotifier(JSONAPIClient):
    """Posts messages to the operator channel's incoming webhook.

    Attributes:
        webhook_url: Incoming webhook URL; empty disables notifications.
        footer: Text appended to every message.
    """

    service_name = "Operator webhook"
    error_class = NotificationError

    def __init__(self, webhook_url: str, footer: str = "", **kwargs: Any):
        self.webhook_url = webhook_url
        self.footer = footer
        kwargs.setdefault("max_retries", 1)
        super().__init__(base_url=webhook_url or "http://localhost", **kwargs)

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def notify(self, text: str) -> bool:
        """Send ``text`` with the configured footer.

        Returns:
            True if the message was accepted.
        """
        if not self.enabled:
            logger.warning("No operator webhook URL set: unable to send message")
            return False

        logger.debug("Sending operator message", extra={"text": text[:200]})
        try:
            await self._request(
                method="POST",
                path="",
                base_url=self.webhook_url,
                json_data={"username": NOTIFIER_USERNAME, "text": text + self.footer},
            )
        except NotificationError as e:
            logger.error(
                "Unable to post to operator webhook",
                extra={"error": str(e), "status_code": e.status_code},
            )
            return False
        return True

    async def notify_failure(
        self,
        title: str,
        pr: PullRequest,
        error: Optional[BaseException],
        fields: Optional[Mapping[str, str]] = None,
    ) -> bool:
        return await self.notify(format_pretty_error(title, pr, error, fields))
