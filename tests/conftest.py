"""Shared pytest fixtures for Agent Arena tests.

Most tests build their collaborators directly (see ``tests/mocks.py`` and
``tests/helpers.py``); the fixtures here cover the common wiring of a store,
mock clients, a fake clock and an orchestrator that is never started, so
tests drive it tick by tick through ``run_once``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from arena.deployment_monitor import DeploymentMonitor
from arena.orchestrator import PollingOrchestrator
from arena.preview import PreviewResolver
from arena.store import JobStore
from arena.termination import TerminationPolicy
from tests.helpers import FakeClock
from tests.mocks import MockCodeHostClient, MockExecutionClient


@pytest.fixture
def store() -> JobStore:
    return JobStore()


@pytest.fixture
def execution_client() -> MockExecutionClient:
    return MockExecutionClient()


@pytest.fixture
def code_host_client() -> MockCodeHostClient:
    return MockCodeHostClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def orchestrator(
    store: JobStore,
    execution_client: MockExecutionClient,
    code_host_client: MockCodeHostClient,
    clock: FakeClock,
) -> Iterator[PollingOrchestrator]:
    """Orchestrator with default policy, no preview resolution and a fake clock."""
    orch = PollingOrchestrator(
        store,
        execution_client,
        deployment_monitor=DeploymentMonitor(code_host_client),
        preview_resolver=PreviewResolver(None),
        policy=TerminationPolicy(majority_threshold=0.5, idle_timeout=60.0, max_wait=1800.0),
        max_workers=4,
        clock=clock,
    )
    yield orch
    orch.stop(timeout=1.0)


@pytest.fixture(autouse=True)
def _reset_arena_logger_level() -> Iterator[None]:
    """Undo level changes made by tests that call setup_logging."""
    arena_logger = logging.getLogger("arena")
    root_logger = logging.getLogger()
    arena_level, root_level = arena_logger.level, root_logger.level
    root_handlers = root_logger.handlers[:]
    yield
    arena_logger.setLevel(arena_level)
    root_logger.setLevel(root_level)
    root_logger.handlers[:] = root_handlers
