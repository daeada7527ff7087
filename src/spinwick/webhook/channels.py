"""Registry of per-installation channels for provisioner webhooks.

The provisioner notifies SpinWick of every installation state change through
a single webhook endpoint. Waiters that care about one installation register
a channel keyed by its installation ID; ``dispatch`` fans each notification
out to every registered channel, and each waiter discards payloads for other
installations.

Delivery is one task per subscriber per payload, each bounded by its own
grace period, so a subscriber that stopped reading cannot hold up the rest.
Only map mutation happens under the lock.
"""

import asyncio
import logging
import threading
from typing import Dict, List, Set

from src.spinwick.webhook.models import CloudWebhookPayload


logger = logging.getLogger(__name__)


DELIVERY_TIMEOUT_SECONDS = 5.0


class ChannelAlreadyRegisteredError(Exception):
    """Raised when a channel already exists for an installation ID."""

    def __init__(self, installation_id: str):
        self.installation_id = installation_id
        super().__init__(f"A channel already exists for ID {installation_id}")


class WebhookChannelRegistry:
    """Process-wide map of installation ID to notification channel.

    Attributes:
        delivery_timeout: Seconds each delivery may block on a full channel
            before the payload is dropped for that subscriber.
    """

    def __init__(self, delivery_timeout: float = DELIVERY_TIMEOUT_SECONDS):
        self.delivery_timeout = delivery_timeout
        self._channels: Dict[str, asyncio.Queue] = {}
        self._lock = threading.Lock()
        self._deliveries: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)

    def __contains__(self, installation_id: str) -> bool:
        with self._lock:
            return installation_id in self._channels

    def request_channel(self, installation_id: str) -> asyncio.Queue:
        """Create and return the channel for an installation.

        Raises:
            ChannelAlreadyRegisteredError: If a channel is already registered
                for ``installation_id``.
        """
        with self._lock:
            if installation_id in self._channels:
                raise ChannelAlreadyRegisteredError(installation_id)
            channel: asyncio.Queue = asyncio.Queue(maxsize=1)
            self._channels[installation_id] = channel

        logger.debug(
            "Registered webhook channel",
            extra={"installation_id": installation_id},
        )
        return channel

    def remove_channel(self, installation_id: str) -> None:
        """Remove the channel for an installation. Unknown IDs are ignored."""
        with self._lock:
            removed = self._channels.pop(installation_id, None)

        if removed is not None:
            logger.debug(
                "Removed webhook channel",
                extra={"installation_id": installation_id},
            )

    def dispatch(self, payload: CloudWebhookPayload) -> List[asyncio.Task]:
        """Fan a provisioner notification out to every registered channel.

        Must be called from within a running event loop.

        Returns:
            The spawned delivery tasks, one per subscriber.
        """
        with self._lock:
            subscribers = list(self._channels.items())

        tasks = []
        for subscriber_id, channel in subscribers:
            task = asyncio.create_task(self._deliver(subscriber_id, channel, payload))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)
            tasks.append(task)

        logger.debug(
            "Dispatched provisioner webhook",
            extra={
                "payload_id": payload.id,
                "new_state": payload.new_state,
                "subscribers": len(tasks),
            },
        )
        return tasks

    async def _deliver(
        self,
        subscriber_id: str,
        channel: asyncio.Queue,
        payload: CloudWebhookPayload,
    ) -> bool:
        try:
            await asyncio.wait_for(channel.put(payload), timeout=self.delivery_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "Timed out delivering provisioner webhook",
                extra={
                    "subscriber_id": subscriber_id,
                    "payload_id": payload.id,
                    "timeout": self.delivery_timeout,
                },
            )
            return False
