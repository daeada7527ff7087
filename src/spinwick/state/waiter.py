"""Wait for an installation to reach a state.

Two interchangeable strategies:

- WebhookStateWaiter listens on a channel of the webhook registry and reacts
  to the provisioner's push notifications.
- PollingStateWaiter asks the provisioner for the installation state on a
  fixed interval, for deployments where the provisioner cannot reach
  SpinWick.

Both translate observed states the same way (``StateWaiter._evaluate``) and
signal every non-success outcome by raising a StateWaitError subclass.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Collection, Optional

from src.spinwick.cloud.client import ProvisionerAPIError, ProvisionerClient
from src.spinwick.lifecycle.request import LifecycleRequest
from src.spinwick.state.models import (
    DELETION_STATES,
    STATE_CREATION_NO_COMPATIBLE_CLUSTERS,
    STATE_DELETED,
    InstallationFailedError,
    LabelRemovedError,
    NoCompatibleClustersError,
    StateWaitTimeoutError,
)
from src.spinwick.webhook.channels import WebhookChannelRegistry


logger = logging.getLogger(__name__)


POLL_INTERVAL_SECONDS = 30

# Returns False once the environment is no longer wanted (label removed)
StillRequested = Callable[[], Awaitable[bool]]


class StateWaiter(ABC):
    """Interface for installation state waiters."""

    @abstractmethod
    async def wait_for_state(
        self,
        request: LifecycleRequest,
        target_states: Collection[str],
        failure_states: Collection[str],
        timeout: float,
        still_requested: Optional[StillRequested] = None,
    ) -> str:
        """Block until the installation reaches one of ``target_states``.

        Args:
            request: Operation whose ``installation_id`` is watched.
            target_states: States that end the wait successfully.
            failure_states: States that end the wait with a failure.
            timeout: Seconds to wait.
            still_requested: Checked when a deletion state is seen; if it
                returns False the wait is abandoned.

        Returns:
            The target state reached.

        Raises:
            StateWaitTimeoutError: The deadline passed.
            InstallationFailedError: A failure state was reached.
            NoCompatibleClustersError: No cluster can host the installation.
            LabelRemovedError: The environment is being deleted on purpose.
        """
        pass

    async def _evaluate(
        self,
        installation_id: str,
        state: str,
        target_states: Collection[str],
        failure_states: Collection[str],
        still_requested: Optional[StillRequested],
    ) -> bool:
        """Translate one observed state.

        Returns:
            True if ``state`` is a target, False to keep waiting.
        """
        if state in target_states:
            return True

        if state == STATE_CREATION_NO_COMPATIBLE_CLUSTERS:
            raise NoCompatibleClustersError(
                "no k8s clusters available", installation_id, state
            )

        if state in failure_states:
            raise InstallationFailedError(
                f"the installation reached state {state}", installation_id, state
            )

        if state in DELETION_STATES and still_requested is not None:
            # Another actor may have deleted the installation; only a
            # removed label makes that intentional.
            if not await still_requested():
                raise LabelRemovedError(
                    "the SpinWick label has been removed. Aborting",
                    installation_id,
                    state,
                )

        return False


class WebhookStateWaiter(StateWaiter):
    """Waits on provisioner webhook notifications.

    Attributes:
        registry: Channel registry fed by the ``/cloud_webhooks`` endpoint.
    """

    def __init__(self, registry: WebhookChannelRegistry):
        self.registry = registry

    async def wait_for_state(
        self,
        request: LifecycleRequest,
        target_states: Collection[str],
        failure_states: Collection[str],
        timeout: float,
        still_requested: Optional[StillRequested] = None,
    ) -> str:
        installation_id = request.installation_id
        channel = self.registry.request_channel(installation_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise StateWaitTimeoutError(
                        "timed out waiting for the installation to reach "
                        f"{', '.join(sorted(target_states))}",
                        installation_id,
                    )
                try:
                    payload = await asyncio.wait_for(channel.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    continue

                if payload.id != installation_id:
                    continue

                logger.info(
                    "Installation changed state",
                    extra={
                        "installation_id": installation_id,
                        "state": payload.new_state,
                        "old_state": payload.old_state,
                    },
                )
                if await self._evaluate(
                    installation_id,
                    payload.new_state,
                    target_states,
                    failure_states,
                    still_requested,
                ):
                    return payload.new_state
        finally:
            self.registry.remove_channel(installation_id)


class PollingStateWaiter(StateWaiter):
    """Polls the provisioner for the installation state.

    An installation the provisioner no longer knows counts as ``deleted``.

    Attributes:
        provisioner: Provisioner client.
        interval: Seconds between polls.
    """

    def __init__(self, provisioner: ProvisionerClient, interval: float = POLL_INTERVAL_SECONDS):
        self.provisioner = provisioner
        self.interval = interval

    async def _current_state(self, installation_id: str) -> Optional[str]:
        try:
            installation = await self.provisioner.get_installation(installation_id)
        except ProvisionerAPIError as e:
            logger.warning(
                "Failed to poll installation state",
                extra={"installation_id": installation_id, "error": str(e)},
            )
            return None
        if installation is None:
            return STATE_DELETED
        return installation.state

    async def wait_for_state(
        self,
        request: LifecycleRequest,
        target_states: Collection[str],
        failure_states: Collection[str],
        timeout: float,
        still_requested: Optional[StillRequested] = None,
    ) -> str:
        installation_id = request.installation_id
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last_state = ""

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise StateWaitTimeoutError(
                    "timed out waiting for the installation to reach "
                    f"{', '.join(sorted(target_states))}",
                    installation_id,
                    last_state,
                )

            try:
                state = await asyncio.wait_for(
                    self._current_state(installation_id), timeout=remaining
                )
            except asyncio.TimeoutError:
                continue

            if state is not None:
                if state != last_state:
                    logger.info(
                        "Installation changed state",
                        extra={"installation_id": installation_id, "state": state},
                    )
                    last_state = state
                if await self._evaluate(
                    installation_id, state, target_states, failure_states, still_requested
                ):
                    return state

            remaining = deadline - loop.time()
            if remaining > 0:
                await asyncio.sleep(min(self.interval, remaining))
