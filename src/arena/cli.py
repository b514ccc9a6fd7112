"""Command-line interface argument parsing.

CLI flags override the matching environment variables:
- Poll interval
- Log level
- API bind address
- Environment file location
"""

from __future__ import annotations

import argparse
from pathlib import Path


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of arguments to parse. If None, uses sys.argv.

    Returns:
        Parsed arguments namespace with the following attributes:
        - interval: Poll interval in seconds
        - log_level: Logging level
        - env_file: Path to .env file
        - host: API bind host
        - port: API bind port
    """
    parser = argparse.ArgumentParser(
        description="Agent Arena - run coding agents side by side and review their previews",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Poll interval in seconds (overrides ARENA_POLL_INTERVAL)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides ARENA_LOG_LEVEL)",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: ./.env)",
    )

    parser.add_argument(
        "--host",
        default=None,
        help="API bind host (overrides ARENA_API_HOST)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="API bind port (overrides ARENA_API_PORT)",
    )

    return parser.parse_args(args)


__all__ = ["parse_args"]
