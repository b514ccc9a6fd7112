"""Circuit breaker for calls to the execution, code and deployment hosts.

When consecutive failures against one service reach a threshold the circuit
"opens" and the REST clients fail fast instead of calling the service. After
the recovery timeout a limited number of probe calls are let through.

Circuit States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is failing, requests are rejected without a call
- HALF_OPEN: Testing recovery, limited requests pass through

Settings come from ``ARENA_CIRCUIT_BREAKER_*`` via :class:`arena.config.Config`.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from arena.logging import get_logger

if TYPE_CHECKING:
    from arena.config import Config

logger = get_logger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerConfigError(ValueError):
    """Raised when circuit breaker configuration is invalid."""


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior.

    Attributes:
        failure_threshold: Consecutive failures before opening the circuit.
        recovery_timeout: Seconds to wait before letting probe calls through.
        half_open_max_calls: Probe calls allowed (and successes required) in
            the half-open state.
        enabled: Whether the circuit breaker is enabled.

    Raises:
        CircuitBreakerConfigError: If any threshold values are not positive.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    half_open_max_calls: int = 3
    enabled: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.failure_threshold, bool) or self.failure_threshold <= 0:
            raise CircuitBreakerConfigError(
                f"failure_threshold must be a positive integer, got {self.failure_threshold!r}"
            )
        if self.recovery_timeout <= 0:
            raise CircuitBreakerConfigError(
                f"recovery_timeout must be positive, got {self.recovery_timeout}"
            )
        if isinstance(self.half_open_max_calls, bool) or self.half_open_max_calls <= 0:
            raise CircuitBreakerConfigError(
                f"half_open_max_calls must be a positive integer, got {self.half_open_max_calls!r}"
            )

    @classmethod
    def from_config(cls, config: Config) -> CircuitBreakerConfig:
        """Build a breaker configuration from the application config.

        A zero recovery timeout in the environment is treated as one second,
        since the breaker requires a positive value.
        """
        return cls(
            failure_threshold=config.circuit_breaker_failure_threshold,
            recovery_timeout=config.circuit_breaker_recovery_timeout or 1.0,
            half_open_max_calls=config.circuit_breaker_half_open_max_calls,
            enabled=config.circuit_breaker_enabled,
        )


@dataclass
class CircuitBreaker:
    """Thread-safe circuit breaker protecting one external service.

    Usage:
        cb = CircuitBreaker("github")

        if cb.allow_request():
            try:
                result = call_github_api()
                cb.record_success()
            except httpx.HTTPError as e:
                cb.record_failure(e)
                raise
    """

    service_name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    clock: Callable[[], float] = time.monotonic
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False)

    @property
    def state(self) -> CircuitState:
        """Get current circuit state, checking for automatic transitions."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _check_state_transition(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self.clock() - self._opened_at >= self.config.recovery_timeout
        ):
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state

        if new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._success_count = 0
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0
        elif new_state == CircuitState.OPEN:
            self._opened_at = self.clock()

        logger.info(
            "[CIRCUIT_BREAKER] %s: State changed from %s to %s",
            self.service_name,
            old_state.value,
            new_state.value,
        )

    def allow_request(self) -> bool:
        """Check if a request should be allowed through.

        Returns:
            True if request is allowed, False if circuit is open.
        """
        if not self.config.enabled:
            return True

        with self._lock:
            self._check_state_transition()

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                logger.warning(
                    "[CIRCUIT_BREAKER] %s: Request rejected, circuit is OPEN",
                    self.service_name,
                )
                return False

            if self._half_open_calls < self.config.half_open_max_calls:
                self._half_open_calls += 1
                return True

            logger.warning(
                "[CIRCUIT_BREAKER] %s: Request rejected, HALF_OPEN limit reached",
                self.service_name,
            )
            return False

    def record_success(self) -> None:
        """Record a successful call."""
        if not self.config.enabled:
            return

        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.half_open_max_calls:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self, exception: BaseException | None = None) -> None:
        """Record a failed call.

        Args:
            exception: Optional exception that caused the failure.
        """
        if not self.config.enabled:
            return

        with self._lock:
            error_info = f": {type(exception).__name__}: {exception}" if exception else ""
            logger.warning("[CIRCUIT_BREAKER] %s: Failure recorded%s", self.service_name, error_info)

            if self._state == CircuitState.HALF_OPEN:
                # Any failure while probing reopens the circuit
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.config.failure_threshold:
                    logger.warning(
                        "[CIRCUIT_BREAKER] %s: Failure threshold reached (%s/%s)",
                        self.service_name,
                        self._failure_count,
                        self.config.failure_threshold,
                    )
                    self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        """Reset the circuit breaker to closed state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._half_open_calls = 0
            self._opened_at = 0.0

    def get_status(self) -> dict[str, Any]:
        """Get current circuit breaker status for the health endpoint."""
        with self._lock:
            self._check_state_transition()
            return {
                "service_name": self.service_name,
                "state": self._state.value,
                "enabled": self.config.enabled,
                "failure_count": self._failure_count,
            }


class CircuitBreakerRegistry:
    """Registry holding one circuit breaker per service name.

    Usage:
        registry = CircuitBreakerRegistry(CircuitBreakerConfig.from_config(config))
        github_cb = registry.get("github")
    """

    def __init__(self, default_config: CircuitBreakerConfig | None = None) -> None:
        self._default_config = default_config or CircuitBreakerConfig()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, service_name: str) -> CircuitBreaker:
        """Get or create the circuit breaker for a service."""
        with self._lock:
            if service_name not in self._breakers:
                self._breakers[service_name] = CircuitBreaker(
                    service_name=service_name, config=self._default_config
                )
            return self._breakers[service_name]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all registered circuit breakers."""
        with self._lock:
            return {name: cb.get_status() for name, cb in self._breakers.items()}
