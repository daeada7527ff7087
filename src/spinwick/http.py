"""Shared async JSON API client base.

Every external service SpinWick talks to (GitHub, the cloud provisioner,
the customer web server, the Kubernetes API, the Docker registry) is a JSON
HTTP API. This module holds the pieces they share:

- A lazily created httpx.AsyncClient with per-service default headers
- Retry with exponential backoff and full jitter for transient failures
- A common APIError carrying the status code, body and URL of a failure

Service clients subclass JSONAPIClient and set ``error_class`` so that
callers can catch service-specific errors.
"""

import asyncio
import logging
import random
from typing import Any, Dict, Optional, Type, Union

import httpx


logger = logging.getLogger(__name__)


class APIError(Exception):
    """Raised when an external API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body returned by the service.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Full-jitter exponential backoff for the given 0-indexed attempt."""
    return random.uniform(0, min(base_delay * (2 ** attempt), max_delay))


class JSONAPIClient:
    """Base for SpinWick's service clients.

    Transient failures (timeouts, connection errors and the statuses in
    ``RETRYABLE_STATUS_CODES``) are retried up to ``max_retries`` times.
    Any other 4xx/5xx raises ``error_class`` straight away.
    """

    RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

    service_name = "API"
    error_class: Type[APIError] = APIError

    def __init__(
        self,
        base_url: str,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        verify: Union[bool, str] = True,
    ):
        """
        Args:
            base_url: Root URL of the service; paths are appended to it.
            max_retries: Extra attempts after the first one.
            base_delay: Backoff seed in seconds; 0 disables waiting.
            max_delay: Cap on a single backoff wait.
            timeout: Per-request timeout in seconds.
            transport: httpx transport override; tests pass a MockTransport.
            verify: TLS verification flag or CA bundle path.
        """
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._verify = verify
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
                verify=self._verify,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "User-Agent": "SpinWick/1.0"}

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "JSONAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _check_response(self, response: httpx.Response) -> None:
        """Service-specific inspection, run before status handling."""

    def _raise_for_status(self, method: str, path: str, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        body = response.text
        # 404 is an expected answer for most lookups
        level = logging.DEBUG if response.status_code == 404 else logging.ERROR
        logger.log(
            level,
            "%s returned %s",
            self.service_name,
            response.status_code,
            extra={
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "response_body": body[:500],
            },
        )
        raise self.error_class(
            message=f"{self.service_name} error: {response.status_code}",
            status_code=response.status_code,
            response_body=body,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[bytes] = None,
        base_url: Optional[str] = None,
    ) -> httpx.Response:
        """Send one request, retrying transient failures.

        Args:
            method: HTTP method.
            path: Path relative to the base URL.
            json_data: JSON body.
            params: Query parameters.
            headers: Extra headers for this request only.
            content: Raw body, instead of ``json_data``.
            base_url: Another host for this request only, for services
                with separate public and internal endpoints.

        Raises:
            APIError: ``error_class`` on a client error, or once the
                retries are used up.
        """
        url = f"{base_url.rstrip('/')}{path}" if base_url else path
        failure = ""

        for attempt in range(self.max_retries + 1):
            last_attempt = attempt == self.max_retries
            try:
                response = await self.client.request(
                    method=method,
                    url=url,
                    json=json_data,
                    params=params,
                    headers=headers,
                    content=content,
                )
            except httpx.RequestError as e:
                failure = f"{type(e).__name__}: {e}"
                if last_attempt:
                    break
            else:
                await self._check_response(response)
                if last_attempt or response.status_code not in self.RETRYABLE_STATUS_CODES:
                    self._raise_for_status(method, path, response)
                    return response
                failure = f"status {response.status_code}"

            delay = backoff_delay(attempt, self.base_delay, self.max_delay)
            logger.warning(
                "%s request failed, retrying",
                self.service_name,
                extra={
                    "path": path,
                    "attempt": attempt + 1,
                    "max_retries": self.max_retries,
                    "delay": delay,
                    "error": failure,
                },
            )
            await asyncio.sleep(delay)

        logger.error(
            "%s request failed after all retries",
            self.service_name,
            extra={"method": method, "path": path, "error": failure},
        )
        raise self.error_class(
            message=f"{self.service_name} request failed after {self.max_retries} retries: {failure}",
            request_url=f"{base_url or self.base_url}{path}",
        )
