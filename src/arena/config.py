"""Configuration loading from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Valid log levels
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Port validation bounds
MIN_PORT = 1
MAX_PORT = 65535

DEFAULT_WARP_API_URL = "https://app.warp.dev/api/v1"
DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_VERCEL_API_URL = "https://api.vercel.com"


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment.

    This dataclass is frozen (immutable) to prevent accidental modification
    after creation.
    """

    # Polling configuration
    poll_interval: float = 10.0  # seconds between ticks
    initial_poll_delay: float = 2.0  # seconds before the first tick
    tick_timeout: float = 60.0  # max seconds one tick waits for agent tasks
    max_poll_workers: int = 8

    # Convergence heuristic
    majority_threshold: float = 0.5
    idle_timeout: float = 60.0  # seconds since the last agent finished
    max_wait: float = 1800.0  # seconds since the job started

    # Job limits
    max_agents_per_job: int = 10
    default_model_id: str = "claude-4-sonnet"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    diagnostic_tags: str = ""

    # HTTP API
    api_host: str = "127.0.0.1"
    api_port: int = 3001
    arena_ui_url: str = "http://localhost:3000"

    # Execution backend (Warp)
    warp_api_key: str = ""
    warp_environment_id: str = ""
    warp_api_url: str = DEFAULT_WARP_API_URL

    # Code host (GitHub)
    github_token: str = ""
    github_api_url: str = DEFAULT_GITHUB_API_URL
    github_webhook_secret: str = ""  # verifies webhook deliveries when set

    # Deployment host (Vercel)
    vercel_token: str = ""
    vercel_team_id: str = ""
    vercel_api_url: str = DEFAULT_VERCEL_API_URL
    preview_cache_ttl: int = 600  # seconds a resolved preview URL is reused

    # Circuit breaker configuration
    circuit_breaker_enabled: bool = True
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_recovery_timeout: float = 30.0
    circuit_breaker_half_open_max_calls: int = 3

    @property
    def warp_configured(self) -> bool:
        """Check if the execution backend is configured."""
        return bool(self.warp_api_key)

    @property
    def github_configured(self) -> bool:
        """Check if GitHub REST API is configured."""
        return bool(self.github_token)

    @property
    def vercel_configured(self) -> bool:
        """Check if the Vercel REST API is configured."""
        return bool(self.vercel_token)


def _parse_positive_int(value: str, name: str, default: int) -> int:
    """Parse a string as a positive integer with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed positive integer, or the default if invalid.

    Logs a warning if the value is invalid.
    """
    try:
        parsed = int(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %d is not positive, using default %d",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_positive_float(value: str, name: str, default: float) -> float:
    """Parse a string as a strictly positive float, falling back to the default."""
    try:
        parsed = float(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %f is not positive, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _parse_non_negative_float(value: str, name: str, default: float) -> float:
    """Parse a string as a non-negative float with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed non-negative float, or the default if invalid.
    """
    try:
        parsed = float(value)
        if parsed < 0:
            logging.warning(
                "Invalid %s: %f is negative, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _parse_fraction(value: str, name: str, default: float) -> float:
    """Parse a string as a fraction in the half-open range (0.0, 1.0]."""
    try:
        parsed = float(value)
        if parsed <= 0.0 or parsed > 1.0:
            logging.warning(
                "Invalid %s: %f is not in range (0.0, 1.0], using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _parse_port(value: str, name: str, default: int) -> int:
    """Parse a string as a valid TCP port number with range validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed port number (MIN_PORT-MAX_PORT), or the default if invalid.
    """
    try:
        parsed = int(value)
        if parsed < MIN_PORT or parsed > MAX_PORT:
            logging.warning(
                "Invalid %s: %d is not a valid port (must be %d-%d), using default %d",
                name,
                parsed,
                MIN_PORT,
                MAX_PORT,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _validate_log_level(value: str, default: str = "INFO") -> str:
    """Validate and normalize a log level string.

    Args:
        value: The log level string to validate.
        default: The default value to use if invalid.

    Returns:
        The validated log level (uppercase), or the default if invalid.
    """
    normalized = value.upper()
    if normalized not in VALID_LOG_LEVELS:
        logging.warning(
            "Invalid ARENA_LOG_LEVEL: '%s' is not valid, using default '%s'. Valid values: %s",
            value,
            default,
            ", ".join(sorted(VALID_LOG_LEVELS)),
        )
        return default
    return normalized


def _parse_bool(value: str) -> bool:
    """Parse a string as a boolean.

    Returns:
        True if value is "true", "1", or "yes" (case-insensitive), False otherwise.
    """
    return value.lower() in ("true", "1", "yes")


def load_config(env_file: Path | None = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env_file: Optional path to .env file. If not provided,
                  looks for .env in current directory.

    Returns:
        Config object with loaded values.

    Invalid values are logged and replaced with their defaults; this function
    never raises for a malformed setting.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    poll_interval = _parse_positive_float(
        os.getenv("ARENA_POLL_INTERVAL", "10"),
        "ARENA_POLL_INTERVAL",
        10.0,
    )
    initial_poll_delay = _parse_non_negative_float(
        os.getenv("ARENA_INITIAL_POLL_DELAY", "2"),
        "ARENA_INITIAL_POLL_DELAY",
        2.0,
    )
    tick_timeout = _parse_positive_float(
        os.getenv("ARENA_TICK_TIMEOUT", "60"),
        "ARENA_TICK_TIMEOUT",
        60.0,
    )
    max_poll_workers = _parse_positive_int(
        os.getenv("ARENA_MAX_POLL_WORKERS", "8"),
        "ARENA_MAX_POLL_WORKERS",
        8,
    )

    majority_threshold = _parse_fraction(
        os.getenv("ARENA_MAJORITY_THRESHOLD", "0.5"),
        "ARENA_MAJORITY_THRESHOLD",
        0.5,
    )
    idle_timeout = _parse_positive_float(
        os.getenv("ARENA_IDLE_TIMEOUT", "60"),
        "ARENA_IDLE_TIMEOUT",
        60.0,
    )
    max_wait = _parse_positive_float(
        os.getenv("ARENA_MAX_WAIT", "1800"),
        "ARENA_MAX_WAIT",
        1800.0,
    )

    max_agents_per_job = _parse_positive_int(
        os.getenv("ARENA_MAX_AGENTS_PER_JOB", "10"),
        "ARENA_MAX_AGENTS_PER_JOB",
        10,
    )

    log_level = _validate_log_level(os.getenv("ARENA_LOG_LEVEL", "INFO"))
    log_json = _parse_bool(os.getenv("ARENA_LOG_JSON", ""))

    api_port = _parse_port(
        os.getenv("ARENA_API_PORT", "3001"),
        "ARENA_API_PORT",
        3001,
    )

    preview_cache_ttl = _parse_positive_int(
        os.getenv("ARENA_PREVIEW_CACHE_TTL", "600"),
        "ARENA_PREVIEW_CACHE_TTL",
        600,
    )

    circuit_breaker_enabled = _parse_bool(os.getenv("ARENA_CIRCUIT_BREAKER_ENABLED", "true"))
    circuit_breaker_failure_threshold = _parse_positive_int(
        os.getenv("ARENA_CIRCUIT_BREAKER_FAILURE_THRESHOLD", "5"),
        "ARENA_CIRCUIT_BREAKER_FAILURE_THRESHOLD",
        5,
    )
    circuit_breaker_recovery_timeout = _parse_non_negative_float(
        os.getenv("ARENA_CIRCUIT_BREAKER_RECOVERY_TIMEOUT", "30.0"),
        "ARENA_CIRCUIT_BREAKER_RECOVERY_TIMEOUT",
        30.0,
    )
    circuit_breaker_half_open_max_calls = _parse_positive_int(
        os.getenv("ARENA_CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS", "3"),
        "ARENA_CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS",
        3,
    )

    return Config(
        poll_interval=poll_interval,
        initial_poll_delay=initial_poll_delay,
        tick_timeout=tick_timeout,
        max_poll_workers=max_poll_workers,
        majority_threshold=majority_threshold,
        idle_timeout=idle_timeout,
        max_wait=max_wait,
        max_agents_per_job=max_agents_per_job,
        default_model_id=os.getenv("ARENA_DEFAULT_MODEL_ID", "") or "claude-4-sonnet",
        log_level=log_level,
        log_json=log_json,
        diagnostic_tags=os.getenv("ARENA_DIAGNOSTIC_TAGS", ""),
        api_host=os.getenv("ARENA_API_HOST", "127.0.0.1"),
        api_port=api_port,
        arena_ui_url=os.getenv("ARENA_UI_URL", "") or "http://localhost:3000",
        warp_api_key=os.getenv("WARP_API_KEY", ""),
        warp_environment_id=os.getenv("WARP_ENVIRONMENT_ID", ""),
        warp_api_url=os.getenv("WARP_API_URL", "") or DEFAULT_WARP_API_URL,
        github_token=os.getenv("GITHUB_TOKEN", ""),
        github_api_url=os.getenv("GITHUB_API_URL", "") or DEFAULT_GITHUB_API_URL,
        github_webhook_secret=os.getenv("GITHUB_WEBHOOK_SECRET", ""),
        vercel_token=os.getenv("VERCEL_TOKEN", ""),
        vercel_team_id=os.getenv("VERCEL_TEAM_ID", ""),
        vercel_api_url=os.getenv("VERCEL_API_URL", "") or DEFAULT_VERCEL_API_URL,
        preview_cache_ttl=preview_cache_ttl,
        circuit_breaker_enabled=circuit_breaker_enabled,
        circuit_breaker_failure_threshold=circuit_breaker_failure_threshold,
        circuit_breaker_recovery_timeout=circuit_breaker_recovery_timeout,
        circuit_breaker_half_open_max_calls=circuit_breaker_half_open_max_calls,
    )
