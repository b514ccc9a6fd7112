"""FastAPI application factory for the job API."""

from __future__ import annotations

from fastapi import FastAPI

from arena.api.routes import create_health_routes, create_routes, create_webhook_routes
from arena.circuit_breaker import CircuitBreakerRegistry
from arena.github_client import CodeHostClient
from arena.spawner import JobSpawner
from arena.store import JobStore


def create_app(
    store: JobStore,
    spawner: JobSpawner,
    *,
    code_host_client: CodeHostClient | None = None,
    circuit_breaker_registry: CircuitBreakerRegistry | None = None,
    webhook_secret: str = "",
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Shared job store.
        spawner: Spawner used by job creation.
        code_host_client: Optional client for opening pull requests and
            replying on issues.
        circuit_breaker_registry: Optional registry reported by the readiness probe.
        webhook_secret: Secret verifying GitHub webhook deliveries; empty
            accepts unsigned deliveries.

    Returns:
        A configured FastAPI application.
    """
    from arena import __version__

    app = FastAPI(
        title="Agent Arena",
        description="Run several coding agents on one issue and review their previews",
        version=__version__,
    )
    app.include_router(create_routes(store, spawner, code_host_client=code_host_client))
    app.include_router(
        create_webhook_routes(spawner, code_host_client, webhook_secret=webhook_secret)
    )
    app.include_router(create_health_routes(circuit_breaker_registry))
    return app
