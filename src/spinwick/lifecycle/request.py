"""Per-operation result accumulator."""

from dataclasses import dataclass
from typing import Optional


NO_INSTALLATION_ID = "n/a"


@dataclass
class LifecycleRequest:
    """Outcome of one create, update or destroy operation.

    Strategies fill it in as they go and return it; only the controller
    acts on it. A request belongs to a single operation and is never shared
    between tasks.

    Attributes:
        installation_id: Installation (or namespace) the operation touched.
        error: The error that stopped the operation, None on success.
        aborted: The stop was intentional; no escalation.
        report_error: The failure should be escalated to operators.
    """

    installation_id: str = NO_INSTALLATION_ID
    error: Optional[BaseException] = None
    aborted: bool = False
    report_error: bool = False

    def with_error(self, error: BaseException) -> "LifecycleRequest":
        self.error = error
        return self

    def with_installation_id(self, installation_id: str) -> "LifecycleRequest":
        self.installation_id = installation_id
        return self

    def should_report_error(self) -> "LifecycleRequest":
        self.report_error = True
        return self

    def intentional_abort(self) -> "LifecycleRequest":
        self.aborted = True
        return self

    @property
    def succeeded(self) -> bool:
        return self.error is None
