"""Bootstrap and dependency wiring.

This module is the composition root. It:
- Loads configuration and applies CLI overrides
- Sets up logging
- Creates the circuit breaker registry
- Builds each REST client whose credentials are present
- Assembles the store, orchestrator and spawner

Circuit breakers are injected into the clients from one
:class:`CircuitBreakerRegistry`, so the readiness probe reports the same
breaker state the clients act on.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from typing import Any

from arena.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from arena.config import Config, load_config
from arena.deployment_monitor import DeploymentMonitor
from arena.github_client import CodeHostClient, GitHubRestClient
from arena.logging import get_logger, setup_logging
from arena.orchestrator import PollingOrchestrator
from arena.preview import PreviewResolver, VercelRestClient
from arena.spawner import JobSpawner
from arena.store import JobStore
from arena.termination import TerminationPolicy
from arena.warp_client import ExecutionClient, WarpRestClient

logger = get_logger(__name__)


class BootstrapContext:
    """Container for all bootstrapped dependencies."""

    def __init__(
        self,
        config: Config,
        store: JobStore,
        circuit_breaker_registry: CircuitBreakerRegistry,
        orchestrator: PollingOrchestrator,
        spawner: JobSpawner,
        preview_resolver: PreviewResolver,
        execution_client: ExecutionClient | None = None,
        code_host_client: CodeHostClient | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.circuit_breaker_registry = circuit_breaker_registry
        self.orchestrator = orchestrator
        self.spawner = spawner
        self.preview_resolver = preview_resolver
        self.execution_client = execution_client
        self.code_host_client = code_host_client

    def close(self) -> None:
        """Close every HTTP client."""
        if self.execution_client is not None:
            self.execution_client.close()
        if self.code_host_client is not None:
            self.code_host_client.close()
        self.preview_resolver.close()


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply CLI argument overrides to the configuration.

    Args:
        config: Base configuration loaded from environment.
        parsed: Parsed command-line arguments.

    Returns:
        New Config instance with CLI overrides applied.
    """
    overrides: dict[str, Any] = {}

    if parsed.interval:
        overrides["poll_interval"] = parsed.interval
    if parsed.log_level:
        overrides["log_level"] = parsed.log_level
    if parsed.host:
        overrides["api_host"] = parsed.host
    if parsed.port:
        overrides["api_port"] = parsed.port

    if overrides:
        return replace(config, **overrides)
    return config


def create_execution_client(
    config: Config,
    circuit_breaker_registry: CircuitBreakerRegistry | None = None,
) -> ExecutionClient | None:
    """Create the Warp client, or None when ``WARP_API_KEY`` is not set."""
    if not config.warp_configured:
        logger.warning("WARP_API_KEY not configured. Jobs cannot be created until it is set.")
        return None
    logger.info("Using Warp REST API at %s", config.warp_api_url)
    return WarpRestClient(
        api_key=config.warp_api_key,
        base_url=config.warp_api_url,
        circuit_breaker=circuit_breaker_registry.get("warp") if circuit_breaker_registry else None,
    )


def create_code_host_client(
    config: Config,
    circuit_breaker_registry: CircuitBreakerRegistry | None = None,
) -> CodeHostClient | None:
    """Create the GitHub client, or None when ``GITHUB_TOKEN`` is not set."""
    if not config.github_configured:
        logger.warning(
            "GITHUB_TOKEN not configured. Deployment monitoring and pull requests are disabled."
        )
        return None
    logger.info("Using GitHub REST API at %s", config.github_api_url)
    return GitHubRestClient(
        token=config.github_token,
        base_url=config.github_api_url,
        circuit_breaker=(
            circuit_breaker_registry.get("github") if circuit_breaker_registry else None
        ),
    )


def create_preview_resolver(
    config: Config,
    circuit_breaker_registry: CircuitBreakerRegistry | None = None,
) -> PreviewResolver:
    """Create the preview resolver; it resolves nothing without ``VERCEL_TOKEN``."""
    client: VercelRestClient | None = None
    if config.vercel_configured:
        client = VercelRestClient(
            token=config.vercel_token,
            team_id=config.vercel_team_id,
            base_url=config.vercel_api_url,
            circuit_breaker=(
                circuit_breaker_registry.get("vercel") if circuit_breaker_registry else None
            ),
        )
    else:
        logger.info("VERCEL_TOKEN not configured; dashboard links will not be resolved")
    return PreviewResolver(client, cache_ttl=config.preview_cache_ttl)


def build_context(config: Config) -> BootstrapContext:
    """Wire every component from a loaded configuration."""
    circuit_breaker_registry = CircuitBreakerRegistry(CircuitBreakerConfig.from_config(config))

    execution_client = create_execution_client(config, circuit_breaker_registry)
    code_host_client = create_code_host_client(config, circuit_breaker_registry)
    preview_resolver = create_preview_resolver(config, circuit_breaker_registry)

    store = JobStore()
    orchestrator = PollingOrchestrator(
        store,
        execution_client,
        deployment_monitor=DeploymentMonitor(code_host_client) if code_host_client else None,
        preview_resolver=preview_resolver,
        policy=TerminationPolicy(
            majority_threshold=config.majority_threshold,
            idle_timeout=config.idle_timeout,
            max_wait=config.max_wait,
        ),
        poll_interval=config.poll_interval,
        initial_delay=config.initial_poll_delay,
        tick_timeout=config.tick_timeout,
        max_workers=config.max_poll_workers,
    )
    spawner = JobSpawner(
        store,
        execution_client,
        orchestrator,
        environment_id=config.warp_environment_id,
        arena_ui_url=config.arena_ui_url,
        default_model_id=config.default_model_id,
        max_agents_per_job=config.max_agents_per_job,
    )

    return BootstrapContext(
        config=config,
        store=store,
        circuit_breaker_registry=circuit_breaker_registry,
        orchestrator=orchestrator,
        spawner=spawner,
        preview_resolver=preview_resolver,
        execution_client=execution_client,
        code_host_client=code_host_client,
    )


def bootstrap(parsed: argparse.Namespace) -> BootstrapContext:
    """Bootstrap the application with all dependencies.

    Args:
        parsed: Parsed command-line arguments.

    Returns:
        BootstrapContext with all initialized dependencies.
    """
    config = load_config(parsed.env_file)
    config = apply_cli_overrides(config, parsed)

    setup_logging(
        config.log_level, json_format=config.log_json, diagnostic_tags=config.diagnostic_tags
    )

    return build_context(config)


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "BootstrapContext",
    "apply_cli_overrides",
    "bootstrap",
    "build_context",
    "create_code_host_client",
    "create_execution_client",
    "create_preview_resolver",
]
