"""
Payout Platform API Client.

Provides:
- Approve a payout with a PDF receipt as proof
- List platform transactions by status (status monitor)

Timeouts are a distinct failure class (PayoutPlatformTimeoutError).
"""

from .client import (
    PayoutClient,
    PayoutPlatformAPIError,
    PayoutPlatformConnectionError,
    PayoutPlatformError,
    PayoutPlatformTimeoutError,
)

__all__ = [
    "PayoutClient",
    "PayoutPlatformError",
    "PayoutPlatformAPIError",
    "PayoutPlatformConnectionError",
    "PayoutPlatformTimeoutError",
]
