"""
Trading platform P2P API client.

Requests are signed with HMAC-SHA256 over
``timestamp + api_key + recv_window + payload`` where payload is the JSON body
for POST and the query string for GET. Responses use the envelope
``{"retCode": 0, "retMsg": "OK", "result": {...}}``.
"""

import hashlib
import hmac
import json
import logging
import time
import uuid
from typing import Any
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_RECV_WINDOW = 5000

# Substring of retMsg when the order was already finished or cancelled
NOT_IN_PROGRESS_MARKER = "not in progress"


class TradingPlatformError(Exception):
    """Base exception for trading platform client errors."""

    pass


class TradingPlatformAPIError(TradingPlatformError):
    """HTTP error or non-zero retCode."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str | None = None,
        ret_code: int | None = None,
    ):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        self.ret_code = ret_code
        super().__init__(f"Trading platform API error {status_code} (retCode={ret_code}): {message}")


class OrderNotInProgressError(TradingPlatformAPIError):
    """The order is no longer in progress (already released or cancelled)."""

    pass


class TradingPlatformConnectionError(TradingPlatformError):
    """Failed to connect to the trading platform."""

    pass


class TradingPlatformTimeoutError(TradingPlatformConnectionError):
    """Trading platform did not answer in time."""

    pass


def sign_payload(api_secret: str, timestamp: str, api_key: str, recv_window: int, payload: str) -> str:
    """HMAC-SHA256 hex signature of the request."""
    message = f"{timestamp}{api_key}{recv_window}{payload}"
    return hmac.new(api_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class TradingClient:
    """
    Client for the trading platform P2P endpoints used by settlement.

    Usage:
        client = TradingClient("https://api.bybit.com", key, secret)
        client.release_assets(order_id)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        recv_window: int = DEFAULT_RECV_WINDOW,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.api_secret = api_secret
        self.recv_window = recv_window
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

        # Only GETs are retried; order actions are not safe to replay blindly.
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _signed_headers(self, payload: str) -> dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        return {
            "X-BAPI-API-KEY": self.api_key,
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": str(self.recv_window),
            "X-BAPI-SIGN": sign_payload(
                self.api_secret, timestamp, self.api_key, self.recv_window, payload
            ),
        }

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Make a signed request. Returns the envelope's `result`."""
        url = f"{self.base_url}{endpoint}"

        if method == "GET":
            payload = urlencode(params or {})
            data = None
            headers = self._signed_headers(payload)
        else:
            payload = json.dumps(body or {}, separators=(",", ":"), ensure_ascii=False)
            data = payload.encode("utf-8")
            headers = self._signed_headers(payload)
            headers["Content-Type"] = "application/json; charset=utf-8"

        logger.debug("Trading platform request: %s %s", method, url)

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params if method == "GET" else None,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error("Timeout for %s: %s", url, e)
            raise TradingPlatformTimeoutError(f"Request to trading platform timed out: {e}") from e
        except requests.exceptions.ConnectionError as e:
            logger.error("Connection error to %s: %s", url, e)
            raise TradingPlatformConnectionError(
                f"Failed to connect to trading platform at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.RequestException as e:
            raise TradingPlatformError(f"Request failed: {e}") from e

        if not response.ok:
            raise TradingPlatformAPIError(
                status_code=response.status_code,
                message=response.reason or "HTTP error",
                response_body=response.text,
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise TradingPlatformAPIError(
                status_code=response.status_code,
                message="Response is not valid JSON",
                response_body=response.text,
            ) from e

        ret_code = envelope.get("retCode", 0)
        if ret_code != 0:
            message = envelope.get("retMsg") or "Unknown error"
            error_cls = (
                OrderNotInProgressError
                if NOT_IN_PROGRESS_MARKER in message.lower()
                else TradingPlatformAPIError
            )
            raise error_cls(
                status_code=response.status_code,
                message=message,
                response_body=response.text,
                ret_code=ret_code,
            )

        return envelope.get("result")

    def test_connection(self) -> bool:
        """Test API key validity."""
        try:
            self._request("GET", "/v5/user/query-api")
            return True
        except TradingPlatformError:
            return False

    def release_assets(self, order_id: str) -> None:
        """
        Finish the order, releasing the crypto asset to the buyer.

        Raises:
            OrderNotInProgressError: Order already released or cancelled
            TradingPlatformError: Any other failure
        """
        self._request("POST", "/v5/p2p/order/finish", body={"orderId": str(order_id)})
        logger.info("Order %s finished on trading platform", order_id)

    def send_chat_message(self, order_id: str, text: str) -> None:
        """Send a text message to the order chat."""
        self._request(
            "POST",
            "/v5/p2p/order/message/send",
            body={
                "orderId": str(order_id),
                "message": text,
                "contentType": "str",
                "msgUuid": uuid.uuid4().hex,
            },
        )

    def delete_advertisement(self, ad_id: str) -> None:
        """Take an advertisement offline."""
        self._request("POST", "/v5/p2p/item/cancel", body={"itemId": str(ad_id)})
        logger.info("Advertisement %s removed", ad_id)
