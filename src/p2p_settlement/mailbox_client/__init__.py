"""
Mailbox API Client.

Provides:
- Search messages by sender and date (Gmail query syntax)
- Fetch message headers
- Fetch attachments as base64 payloads
"""

from .client import (
    MailboxAPIError,
    MailboxAttachment,
    MailboxClient,
    MailboxConnectionError,
    MailboxError,
    MailboxMessage,
    MailboxMessageRef,
    MailboxTimeoutError,
)

__all__ = [
    "MailboxClient",
    "MailboxError",
    "MailboxAPIError",
    "MailboxConnectionError",
    "MailboxTimeoutError",
    "MailboxAttachment",
    "MailboxMessage",
    "MailboxMessageRef",
]
