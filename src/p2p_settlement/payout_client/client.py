"""
Payout platform API client implementation.
"""

import logging
from collections.abc import Iterator
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class PayoutPlatformError(Exception):
    """Base exception for payout platform client errors."""

    pass


class PayoutPlatformAPIError(PayoutPlatformError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Payout platform API error {status_code}: {message}")


class PayoutPlatformConnectionError(PayoutPlatformError):
    """Failed to connect to the payout platform."""

    pass


class PayoutPlatformTimeoutError(PayoutPlatformConnectionError):
    """Payout platform did not answer in time."""

    pass


class PayoutClient:
    """
    Client for the payout platform.

    Endpoints:
    - POST /api/v1/payouts/{id}/approve  (multipart, PDF proof)
    - GET  /api/v1/payouts?status=N&page=P[&account=A]
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize payout platform client.

        Args:
            base_url: Platform URL
            token: API token
            timeout: Request timeout in seconds (applies to every call)
            max_retries: Maximum retry attempts for idempotent requests
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            }
        )

        # Approvals are not retried at the transport level: a retried POST
        # could approve twice on a platform without idempotency keys.
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        files: dict | None = None,
    ) -> dict[str, Any]:
        """Make an API request with error handling. Returns decoded JSON."""
        url = f"{self.base_url}{endpoint}"
        logger.debug("Payout platform request: %s %s", method, url)

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                files=files,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error("Timeout for %s: %s", url, e)
            raise PayoutPlatformTimeoutError(f"Request to payout platform timed out: {e}") from e
        except requests.exceptions.ConnectionError as e:
            logger.error("Connection error to %s: %s", url, e)
            raise PayoutPlatformConnectionError(
                f"Failed to connect to payout platform at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise PayoutPlatformError(f"Request failed: {e}") from e

        if not response.ok:
            message = response.reason
            try:
                message = response.json().get("message", message)
            except ValueError:
                pass
            logger.error("Payout platform API error %s: %s", response.status_code, message)
            raise PayoutPlatformAPIError(
                status_code=response.status_code,
                message=message,
                response_body=response.text,
            )

        try:
            return response.json()
        except ValueError:
            return {}

    def test_connection(self) -> bool:
        """Test connection to the payout platform."""
        try:
            self._request("GET", "/api/v1/ping")
            return True
        except PayoutPlatformError:
            return False

    def approve_payout(
        self,
        payout_id: str,
        proof_pdf: bytes,
        filename: str = "receipt.pdf",
    ) -> bool:
        """
        Approve a payout, attaching the bank receipt as proof.

        Returns:
            True if the platform accepted the approval

        Raises:
            PayoutPlatformError: On transport or API failure
        """
        data = self._request(
            "POST",
            f"/api/v1/payouts/{payout_id}/approve",
            files={"attachments[]": (filename, proof_pdf, "application/pdf")},
        )
        approved = data.get("success") is True
        if approved:
            logger.info("Payout %s approved on platform", payout_id)
        else:
            logger.warning("Payout %s approval rejected: %s", payout_id, data.get("message"))
        return approved

    def list_transactions(
        self,
        status: int,
        page: int = 1,
        account: str | None = None,
        page_size: int = 100,
    ) -> tuple[list[dict[str, Any]], bool]:
        """
        List one page of platform transactions in a status.

        Returns:
            Tuple of (items, has_next_page)
        """
        params: dict[str, Any] = {"status": status, "page": page, "per_page": page_size}
        if account:
            params["account"] = account

        data = self._request("GET", "/api/v1/payouts", params=params)
        items = data.get("items", [])
        return items, bool(data.get("next_page"))

    def iter_transactions(
        self,
        statuses: list[int],
        account: str | None = None,
        page_size: int = 100,
    ) -> Iterator[dict[str, Any]]:
        """Iterate all transactions in any of the statuses, following pagination."""
        for status in statuses:
            page = 1
            while True:
                items, has_next = self.list_transactions(
                    status, page=page, account=account, page_size=page_size
                )
                yield from items
                if not has_next or not items:
                    break
                page += 1
