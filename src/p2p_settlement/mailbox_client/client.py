"""
Gmail REST API mailbox client.

Only the read operations the scanner needs: search, fetch message headers,
fetch attachments. OAuth token refresh is the caller's concern; the client
takes a ready access token.
"""

import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
API_PREFIX = "/gmail/v1/users/me"


class MailboxError(Exception):
    """Base exception for mailbox client errors."""

    pass


class MailboxAPIError(MailboxError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Mailbox API error {status_code}: {message}")


class MailboxConnectionError(MailboxError):
    """Failed to connect to the mailbox API."""

    pass


class MailboxTimeoutError(MailboxConnectionError):
    """Mailbox API did not answer in time."""

    pass


@dataclass
class MailboxMessageRef:
    """Search hit: just the ids."""

    id: str
    thread_id: str | None = None


@dataclass
class MailboxAttachment:
    """Attachment payload. `data` is base64 (URL-safe or standard alphabet)."""

    filename: str
    data: str
    size: int = 0
    mime_type: str | None = None

    def decode(self) -> bytes:
        padded = self.data + "=" * (-len(self.data) % 4)
        return base64.urlsafe_b64decode(padded)


@dataclass
class MailboxMessage:
    """Message metadata."""

    id: str
    headers: dict[str, str] = field(default_factory=dict)
    received_at: datetime | None = None
    attachment_parts: list[dict[str, Any]] = field(default_factory=list)

    @property
    def subject(self) -> str | None:
        return self.headers.get("subject")

    @property
    def sender(self) -> str | None:
        return self.headers.get("from")

    @classmethod
    def from_api_response(cls, data: dict) -> "MailboxMessage":
        payload = data.get("payload") or {}
        headers = {h["name"].lower(): h.get("value", "") for h in payload.get("headers", [])}

        received_at = None
        internal_date = data.get("internalDate")
        if internal_date:
            received_at = datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)

        return cls(
            id=data["id"],
            headers=headers,
            received_at=received_at,
            attachment_parts=list(_iter_attachment_parts(payload)),
        )


def _iter_attachment_parts(part: dict):
    """Walk the MIME tree, yielding parts that carry a filename."""
    if part.get("filename"):
        yield part
    for child in part.get("parts") or []:
        yield from _iter_attachment_parts(child)


def build_search_query(sender: str, after: datetime, has_attachment: bool = True) -> str:
    """Gmail search syntax: from:x after:YYYY/MM/DD has:attachment."""
    query = f"from:{sender} after:{after.strftime('%Y/%m/%d')}"
    if has_attachment:
        query += " has:attachment"
    return query


class MailboxClient:
    """
    Client for the Gmail REST API (users/me).

    Usage:
        client = MailboxClient("https://gmail.googleapis.com", access_token)
        for ref in client.search_messages("noreply@tinkoff.ru", after=since):
            attachments = client.get_attachments(ref.id)
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize mailbox client.

        Args:
            base_url: API root (e.g., "https://gmail.googleapis.com")
            access_token: OAuth access token
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            }
        )

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(self, method: str, endpoint: str, params: dict | None = None) -> dict:
        """Make an API request with error handling. Returns decoded JSON."""
        url = f"{self.base_url}{API_PREFIX}{endpoint}"
        logger.debug("Mailbox request: %s %s", method, url)

        try:
            response = self.session.request(
                method=method, url=url, params=params, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise MailboxTimeoutError(f"Request to mailbox API timed out: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise MailboxConnectionError(
                f"Failed to connect to mailbox API at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise MailboxError(f"Request failed: {e}") from e

        if not response.ok:
            message = response.reason
            try:
                message = response.json().get("error", {}).get("message", message)
            except ValueError:
                pass
            raise MailboxAPIError(
                status_code=response.status_code,
                message=message,
                response_body=response.text,
            )

        return response.json()

    def test_connection(self) -> bool:
        """Test connection to the mailbox API."""
        try:
            self._request("GET", "/profile")
            return True
        except MailboxError:
            return False

    def search_messages(
        self,
        sender: str,
        after: datetime,
        has_attachment: bool = True,
        max_results: int = 50,
    ) -> list[MailboxMessageRef]:
        """
        Search messages, newest first, up to max_results.

        Follows nextPageToken until max_results is reached.
        """
        query = build_search_query(sender, after, has_attachment)
        refs: list[MailboxMessageRef] = []
        page_token = None

        while len(refs) < max_results:
            params: dict[str, Any] = {"q": query, "maxResults": max_results - len(refs)}
            if page_token:
                params["pageToken"] = page_token

            data = self._request("GET", "/messages", params=params)
            for item in data.get("messages", []):
                refs.append(MailboxMessageRef(id=item["id"], thread_id=item.get("threadId")))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.debug("Mailbox search %r returned %d message(s)", query, len(refs))
        return refs[:max_results]

    def get_message(self, message_id: str) -> MailboxMessage:
        """Fetch message metadata and MIME structure."""
        data = self._request("GET", f"/messages/{message_id}", params={"format": "full"})
        return MailboxMessage.from_api_response(data)

    def get_attachments(self, message_id: str) -> list[MailboxAttachment]:
        """Fetch all attachments of a message."""
        message = self.get_message(message_id)
        attachments = []

        for part in message.attachment_parts:
            body = part.get("body") or {}
            data = body.get("data")
            if not data and body.get("attachmentId"):
                fetched = self._request(
                    "GET", f"/messages/{message_id}/attachments/{body['attachmentId']}"
                )
                data = fetched.get("data", "")
            if not data:
                continue

            attachments.append(
                MailboxAttachment(
                    filename=part["filename"],
                    data=data,
                    size=body.get("size", 0),
                    mime_type=part.get("mimeType"),
                )
            )

        return attachments
