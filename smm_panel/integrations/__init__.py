"""External integrations for payment processing."""
from .zenopay_client import (
    GatewayError,
    GatewayRejected,
    GatewayTimeout,
    GatewayUnavailable,
    ZenoPayClient,
)

__all__ = [
    "GatewayError",
    "GatewayRejected",
    "GatewayTimeout",
    "GatewayUnavailable",
    "ZenoPayClient",
]
