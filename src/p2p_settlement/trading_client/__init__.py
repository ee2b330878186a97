"""
Trading Platform P2P API Client.

Provides:
- Asset release (finish order), idempotent via OrderNotInProgressError
- Order chat messages
- Advertisement removal
"""

from .client import (
    OrderNotInProgressError,
    TradingClient,
    TradingPlatformAPIError,
    TradingPlatformConnectionError,
    TradingPlatformError,
    TradingPlatformTimeoutError,
    sign_payload,
)

__all__ = [
    "TradingClient",
    "TradingPlatformError",
    "TradingPlatformAPIError",
    "TradingPlatformConnectionError",
    "TradingPlatformTimeoutError",
    "OrderNotInProgressError",
    "sign_payload",
]
