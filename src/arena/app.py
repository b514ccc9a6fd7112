"""Core application runner.

Coordinates the lifecycle of the polling orchestrator and the API server:
bootstrap, start polling, start serving, wait for a shutdown signal, then
stop both and close the HTTP clients.

If the API server fails to start, the application logs an error and exits
with a non-zero code, since no job can be created without it.
"""

from __future__ import annotations

import argparse

from arena.api import create_app
from arena.api_server import ApiServer
from arena.bootstrap import BootstrapContext, bootstrap
from arena.cli import parse_args
from arena.logging import get_logger
from arena.shutdown import ShutdownHandler

logger = get_logger(__name__)


def start_api_server(context: BootstrapContext) -> ApiServer:
    """Start the API server for the bootstrapped components."""
    config = context.config
    app = create_app(
        context.store,
        context.spawner,
        code_host_client=context.code_host_client,
        circuit_breaker_registry=context.circuit_breaker_registry,
        webhook_secret=config.github_webhook_secret,
    )
    server = ApiServer(host=config.api_host, port=config.api_port)
    server.start(app)
    return server


def run_application(
    parsed: argparse.Namespace,
    context: BootstrapContext,
    shutdown_handler: ShutdownHandler | None = None,
) -> int:
    """Run until shutdown is requested.

    Args:
        parsed: Parsed command-line arguments.
        context: Bootstrap context with all dependencies.
        shutdown_handler: Handler to wait on; one with signal handlers
            installed is created when omitted.

    Returns:
        Exit code for the application.
    """
    if shutdown_handler is None:
        shutdown_handler = ShutdownHandler()
        shutdown_handler.install_signal_handlers()

    orchestrator = context.orchestrator
    api_server: ApiServer | None = None
    try:
        orchestrator.start()
        try:
            api_server = start_api_server(context)
        except OSError as e:
            logger.error(
                "API server failed to start on %s:%s: %s",
                context.config.api_host,
                context.config.api_port,
                e,
            )
            return 1
        if not api_server.is_running:
            return 1

        shutdown_handler.wait()
        return 0
    finally:
        if api_server is not None:
            api_server.shutdown()
        orchestrator.stop()
        context.close()
        logger.info("Arena stopped")


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        args: Optional list of command-line arguments.

    Returns:
        Exit code for the application.
    """
    parsed = parse_args(args)
    context = bootstrap(parsed)
    return run_application(parsed, context)


__all__ = [
    "main",
    "run_application",
    "start_api_server",
]
