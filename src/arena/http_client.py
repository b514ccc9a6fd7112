"""Shared HTTP plumbing for the REST clients.

Every external service (execution backend, code host, deployment host) is
reached through a subclass of :class:`BaseHttpClient`. The base class owns a
lazily created, pooled ``httpx.Client`` and wraps each request in the same
sequence: circuit breaker check, retry with exponential backoff and jitter on
rate limits and server errors, and translation of ``httpx`` failures into the
client's own :class:`~arena.exceptions.TransientFetchError` subclass.

Backoff follows the GitHub guidance:
https://docs.github.com/en/rest/using-the-rest-api/rate-limits-for-the-rest-api
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Self, TypeVar

import httpx

from arena.circuit_breaker import CircuitBreaker
from arena.exceptions import TransientFetchError
from arena.logging import get_logger

logger = get_logger(__name__)

# Default timeout for HTTP requests (connect, read, write, pool)
DEFAULT_TIMEOUT = httpx.Timeout(10.0, read=30.0)

# Server-side statuses worth retrying within the same call
RETRYABLE_SERVER_STATUSES = frozenset({500, 502, 503, 504})

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts.
        initial_delay: Initial delay in seconds before first retry.
        max_delay: Maximum delay in seconds between retries.
        jitter_min: Minimum jitter multiplier.
        jitter_max: Maximum jitter multiplier.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    jitter_min: float = 0.7
    jitter_max: float = 1.3


DEFAULT_RETRY_CONFIG = RetryConfig()


def _calculate_backoff_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: float | None = None,
) -> float:
    """Calculate the delay before the next retry attempt.

    Args:
        attempt: Current retry attempt number (0-indexed).
        config: Retry configuration.
        retry_after: Optional server-provided delay in seconds.

    Returns:
        Delay in seconds before next retry.
    """
    if retry_after is not None:
        base_delay = min(retry_after, config.max_delay)
    else:
        base_delay = min(config.initial_delay * (2**attempt), config.max_delay)

    jitter = random.uniform(config.jitter_min, config.jitter_max)
    return base_delay * jitter


def _check_rate_limit_warning(response: httpx.Response, service: str) -> None:
    """Log a warning if the service reports its rate limit is nearly exhausted."""
    remaining = response.headers.get("X-RateLimit-Remaining")
    if remaining is None:
        return
    try:
        if int(remaining) <= 10:
            logger.warning(
                "%s rate limit near exhaustion. Remaining: %s, Reset: %s",
                service,
                remaining,
                response.headers.get("X-RateLimit-Reset", "unknown"),
            )
    except ValueError:
        pass


def _get_retry_after(response: httpx.Response) -> float | None:
    """Extract a retry delay from ``Retry-After`` or ``X-RateLimit-Reset``.

    Args:
        response: HTTP response to check.

    Returns:
        Delay in seconds, or None if neither header is usable.
    """
    retry_after = response.headers.get("Retry-After")
    if retry_after is not None:
        try:
            return float(retry_after)
        except ValueError:
            logger.warning("Invalid Retry-After header value: %s", retry_after)

    reset_time = response.headers.get("X-RateLimit-Reset")
    if reset_time is not None:
        try:
            delay = int(reset_time) - int(time.time())
            if delay > 0:
                return float(delay)
        except ValueError:
            logger.warning("Invalid X-RateLimit-Reset header value: %s", reset_time)

    return None


def _is_retryable(response: httpx.Response) -> bool:
    status = response.status_code
    if status == 429 or status in RETRYABLE_SERVER_STATUSES:
        return True
    if status == 403:
        # 403 is only a rate limit when the remaining quota is exhausted
        remaining = response.headers.get("X-RateLimit-Remaining")
        return remaining is not None and remaining.strip() == "0"
    return False


def execute_with_retry(
    operation: Callable[[], T],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
) -> T:
    """Execute an HTTP operation, retrying rate limits and transient server errors.

    Args:
        operation: Callable performing the request. It must raise
            ``httpx.HTTPStatusError`` for error responses.
        config: Retry configuration.

    Returns:
        Result from the operation.

    Raises:
        httpx.HTTPStatusError: For non-retryable statuses, or the last
            retryable one once retries are exhausted.
        httpx.RequestError: For transport failures (not retried here; the
            next poll tick retries them).
    """
    for attempt in range(config.max_retries + 1):
        try:
            return operation()
        except httpx.HTTPStatusError as e:
            if not _is_retryable(e.response) or attempt >= config.max_retries:
                raise

            delay = _calculate_backoff_delay(attempt, config, _get_retry_after(e.response))
            logger.warning(
                "Request to %s returned %s (attempt %s/%s). Retrying in %.2fs",
                e.request.url.host,
                e.response.status_code,
                attempt + 1,
                config.max_retries + 1,
                delay,
            )
            time.sleep(delay)

    # range() always runs at least once and every path above returns or raises
    raise AssertionError("unreachable")


class BaseHttpClient:
    """Base class providing a pooled ``httpx.Client`` and guarded requests.

    Subclasses set ``service_name``, ``error_class``, ``base_url``,
    ``timeout`` and ``_headers`` in ``__init__`` and then call
    :meth:`_request`.

    Example subclass implementation::

        class MyClient(BaseHttpClient):
            service_name = "example"
            error_class = ExampleError

            def __init__(self, token: str) -> None:
                super().__init__(circuit_breaker=CircuitBreaker("example"))
                self.base_url = "https://api.example.com"
                self.timeout = DEFAULT_TIMEOUT
                self._headers = {"Authorization": f"Bearer {token}"}
    """

    service_name: str = "http"
    error_class: type[TransientFetchError] = TransientFetchError

    base_url: str
    timeout: httpx.Timeout
    _headers: dict[str, str]

    def __init__(
        self,
        circuit_breaker: CircuitBreaker | None = None,
        retry_config: RetryConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the base HTTP client.

        Args:
            circuit_breaker: Breaker guarding this service. Defaults to a
                breaker with default settings named after ``service_name``.
            retry_config: Retry configuration for rate limits and 5xx.
            transport: Optional ``httpx`` transport, used by tests to serve
                canned responses.
        """
        self._client: httpx.Client | None = None
        self._transport = transport
        self.retry_config = retry_config or DEFAULT_RETRY_CONFIG
        self._circuit_breaker = circuit_breaker or CircuitBreaker(self.service_name)

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        """Get the circuit breaker for this client."""
        return self._circuit_breaker

    def _get_client(self) -> httpx.Client:
        """Get or create the reusable HTTP client.

        Raises:
            RuntimeError: If the subclass has not set ``timeout`` or ``_headers``.
        """
        if self._client is None:
            if getattr(self, "timeout", None) is None or getattr(self, "_headers", None) is None:
                raise RuntimeError(
                    f"{self.__class__.__name__} must set self.timeout and self._headers "
                    "before calling _get_client()"
                )
            self._client = httpx.Client(
                timeout=self.timeout, headers=self._headers, transport=self._transport
            )
        return self._client

    def _request(self, method: str, path: str, action: str, **kwargs: Any) -> httpx.Response:
        """Send a guarded request that must succeed; see :meth:`_send`."""
        response = self._send(method, path, action, not_found_ok=False, **kwargs)
        if response is None:
            raise self.error_class(f"{action} returned no response")
        return response

    def _request_optional(
        self, method: str, path: str, action: str, **kwargs: Any
    ) -> httpx.Response | None:
        """Send a guarded request where a 404 means "absent" and yields None."""
        return self._send(method, path, action, not_found_ok=True, **kwargs)

    def _send(
        self,
        method: str,
        path: str,
        action: str,
        *,
        not_found_ok: bool = False,
        **kwargs: Any,
    ) -> httpx.Response | None:
        """Send one guarded request to ``base_url + path``.

        Args:
            method: HTTP method.
            path: Path relative to ``base_url``.
            action: Short description used in error messages and logs.
            not_found_ok: Return None for a 404 instead of raising. A 404
                still counts as a healthy call for the circuit breaker.
            **kwargs: Passed through to ``httpx.Client.request``.

        Returns:
            The successful response, or None for an accepted 404.

        Raises:
            TransientFetchError: The client's ``error_class`` when the circuit
                is open, the request times out, or the service answers with
                an error status.
        """
        if not self._circuit_breaker.allow_request():
            raise self.error_class(
                f"{self.service_name} circuit breaker is open - service may be unavailable. "
                f"State: {self._circuit_breaker.state.value}"
            )

        url = f"{self.base_url}{path}"

        def do_request() -> httpx.Response | None:
            response = self._get_client().request(method, url, **kwargs)
            _check_rate_limit_warning(response, self.service_name)
            if not_found_ok and response.status_code == 404:
                return None
            response.raise_for_status()
            return response

        try:
            result = execute_with_retry(do_request, self.retry_config)
            self._circuit_breaker.record_success()
            return result
        except httpx.TimeoutException as e:
            self._circuit_breaker.record_failure(e)
            raise self.error_class(f"{action} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            # Client errors are the caller's fault, not an unhealthy service
            if status >= 500 or status == 429:
                self._circuit_breaker.record_failure(e)
            else:
                self._circuit_breaker.record_success()
            error_msg = f"{action} failed with status {status}"
            try:
                error_data = e.response.json()
                if isinstance(error_data, dict) and "message" in error_data:
                    error_msg += f": {error_data['message']}"
            except ValueError:
                pass
            raise self.error_class(error_msg) from e
        except httpx.RequestError as e:
            self._circuit_breaker.record_failure(e)
            raise self.error_class(f"{action} request failed: {e}") from e

    def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
