"""
Thin async HTTP client shared by the CRM provider adapters.

Wraps an ``httpx.AsyncClient`` so that every adapter gets the same
behavior for:
- Base URL joining and default headers per account
- Translating non-2xx responses and transport failures into CrmAPIError
- Decoding JSON bodies (empty bodies decode to an empty dict)
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

# Status code used for failures that never produced an HTTP response
TRANSPORT_ERROR_STATUS = 0


class CrmAPIError(Exception):
    """Raised when a CRM API request fails."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"CRM API request failed ({status_code}): {message}")

    @property
    def is_retryable(self) -> bool:
        """True for rate limiting (429) and server-side (5xx) failures."""
        return self.status_code == 429 or self.status_code >= 500

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class RateLimitError(CrmAPIError):
    """Raised when a CRM API request is rate limited (429)."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(429, message)


def is_retryable_error(error: Exception) -> bool:
    """Retry predicate for RetryPolicy: only 429 and 5xx CRM failures."""
    return isinstance(error, CrmAPIError) and error.is_retryable


def new_http_client(timeout: float = DEFAULT_TIMEOUT_SECONDS) -> httpx.AsyncClient:
    """Create the AsyncClient one rollup run shares across all accounts."""
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))


class CrmClient:
    """
    Per-account request helper bound to a base URL and auth headers.

    Usage:
        client = CrmClient(http_client, "https://api.example.com", headers)
        payload = await client.request("GET", "/contacts/", params={"limit": 100})
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        headers: Optional[dict[str, str]] = None,
    ):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Send one request and return the decoded JSON object.

        Args:
            method: HTTP method
            path: Path relative to the base URL, or an absolute URL
            params: Query parameters (None values are dropped)
            json: JSON request body

        Returns:
            Decoded JSON object, or an empty dict for empty bodies

        Raises:
            CrmAPIError: On transport failure, non-2xx status or a body that
                         is not a JSON object.
            RateLimitError: On a 429 response
        """
        query = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = await self.http_client.request(
                method,
                self.url(path),
                params=query or None,
                json=json,
                headers=self.headers,
            )
        except httpx.HTTPError as e:
            raise CrmAPIError(TRANSPORT_ERROR_STATUS, str(e) or type(e).__name__) from e

        if response.status_code == 429:
            raise RateLimitError(
                _safe_error_message(response), _retry_after(response)
            )
        if response.status_code < 200 or response.status_code >= 300:
            raise CrmAPIError(response.status_code, _safe_error_message(response))

        if not response.content or not response.content.strip():
            return {}

        try:
            payload = response.json()
        except ValueError as e:
            raise CrmAPIError(response.status_code, "Invalid JSON payload") from e

        if not isinstance(payload, dict):
            raise CrmAPIError(response.status_code, "Payload must be a JSON object")
        return payload


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            detail = errors[0].get("detail") or errors[0].get("title")
            if isinstance(detail, str) and detail.strip():
                return " ".join(detail.split())[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return response.reason_phrase or "unknown error"


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
