"""Customer web server client."""

from src.spinwick.cws.client import (
    CustomerServiceAPIError,
    CustomerServiceClient,
    CWSCustomer,
    CWSInstallation,
    CWSSession,
    CWSUser,
)

__all__ = [
    "CWSCustomer",
    "CWSInstallation",
    "CWSSession",
    "CWSUser",
    "CustomerServiceAPIError",
    "CustomerServiceClient",
]
