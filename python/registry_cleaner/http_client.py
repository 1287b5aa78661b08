"""
HTTP client for registry APIs with retry, throttle and error handling.

Every request is retried up to `retry` times with a linear delay of
`throttle * attempt` milliseconds. Any 4xx response fails immediately; network
errors, timeouts and other statuses are retried until the budget runs out.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import requests

from registry_cleaner.error_utils import AuthenticationError, NotFoundError, RegistryError
from registry_cleaner.retry_utils import retry_operation

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    401: "Authentication failed",
    403: "Access forbidden",
    404: "Resource not found",
    405: "Method not allowed",
    429: "Rate limit exceeded",
    500: "Internal server error",
    502: "Bad gateway",
    503: "Service unavailable",
}


@dataclass
class RegistryResponse:
    status: int
    reason: str = ""
    data: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup"""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default


class HttpClient:
    """Synchronous HTTP client used by every registry provider"""

    def __init__(
        self,
        retry: int = 3,
        throttle: int = 1000,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        verify: bool = True,
        session: Optional[requests.Session] = None,
    ):
        """Initialize HttpClient

        Args:
            retry: Number of retries after the first attempt
            throttle: Base retry delay in milliseconds
            timeout: Per-attempt timeout in seconds
            headers: Headers sent with every request
            verify: Verify TLS certificates
            session: Optional pre-built requests session
        """
        self.retry = retry
        self.throttle = throttle
        self.timeout = timeout
        self.default_headers = dict(headers or {})
        self.session = session or requests.Session()
        self.session.verify = verify

    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> RegistryResponse:
        """Make an HTTP request with retry and throttle

        Raises:
            RegistryError: (or a subclass) once the request has definitively failed
        """
        merged_headers = {**self.default_headers, **(headers or {})}

        def _attempt() -> RegistryResponse:
            return self._send(method, url, merged_headers, **kwargs)

        return retry_operation(
            _attempt,
            max_retries=self.retry,
            throttle_ms=self.throttle,
            operation_name=f"{method} {url}",
        )

    def get(self, url: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> RegistryResponse:
        return self.request("GET", url, headers=headers, **kwargs)

    def delete(self, url: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> RegistryResponse:
        return self.request("DELETE", url, headers=headers, **kwargs)

    def _send(self, method: str, url: str, headers: Dict[str, str], **kwargs) -> RegistryResponse:
        """Single attempt; converts transport failures and error statuses to RegistryError"""
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise RegistryError(f"Request to {url} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise RegistryError(f"Request to {url} failed: {e}") from e

        data = self._parse_body(response)
        if not response.ok:
            raise self._error_for(response.status_code, data)

        return RegistryResponse(
            status=response.status_code,
            reason=response.reason or "",
            data=data,
            headers=dict(response.headers),
            content=response.content or b"",
        )

    @staticmethod
    def _parse_body(response: requests.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    def _error_for(self, status: int, data: Any) -> RegistryError:
        message = self._error_message(status, data)
        if status == 401:
            return AuthenticationError(message)
        if status == 404:
            return NotFoundError(message)
        return RegistryError(message, status)

    @staticmethod
    def _error_message(status: int, data: Any) -> str:
        """Prefer the registry's own message, fall back to a generic one per status"""
        if isinstance(data, dict):
            if data.get("message"):
                return str(data["message"])
            if data.get("error"):
                return str(data["error"])
            errors = data.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict) and errors[0].get("message"):
                return f"HTTP {status}: {errors[0]['message']}"
        return _STATUS_MESSAGES.get(status, f"HTTP {status}: Request failed")
