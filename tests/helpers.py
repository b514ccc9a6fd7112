"""Test helper functions for Agent Arena tests.

These helpers create domain objects with sensible defaults while allowing
customization.

Usage
=====

Import and use helpers directly in tests::

    from tests.helpers import FakeClock, make_agent, make_config, make_job

    def test_example():
        job = make_job(agents=[make_agent("agent_alpha", "run-1")])
        clock = FakeClock(start=1000.0)
        # ... use in test ...
"""

from __future__ import annotations

from typing import Any

from arena.config import Config
from arena.models import Agent, Job
from arena.spawner import INITIAL_AGENT_LOGS, branch_name_for
from arena.types import AgentStatus, JobStatus


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


def make_config(**overrides: Any) -> Config:
    """Create a Config with test defaults; keyword arguments override fields."""
    defaults: dict[str, Any] = {
        "poll_interval": 0.01,
        "initial_poll_delay": 0.0,
        "warp_api_key": "test-warp-key",
        "github_token": "test-github-token",
    }
    defaults.update(overrides)
    return Config(**defaults)


def make_agent(
    agent_id: str = "agent_alpha",
    run_id: str = "run-1",
    job_id: str = "job12345",
    ordinal: int = 1,
    status: AgentStatus = AgentStatus.INITIALIZING,
    **kwargs: Any,
) -> Agent:
    """Create an Agent whose branch follows the spawner's naming."""
    kwargs.setdefault("terminal_logs", list(INITIAL_AGENT_LOGS))
    return Agent(
        id=agent_id,
        run_id=run_id,
        branch_name=branch_name_for(job_id, ordinal),
        model_id="claude-4-sonnet",
        status=status,
        **kwargs,
    )


def make_job(
    job_id: str = "job12345",
    agents: list[Agent] | None = None,
    agent_count: int = 1,
    status: JobStatus = JobStatus.PROCESSING,
    owner: str | None = "acme",
    repo: str | None = "shop",
    **kwargs: Any,
) -> Job:
    """Create a Job; without ``agents``, ``agent_count`` default agents are generated."""
    if agents is None:
        names = ["agent_alpha", "agent_beta", "agent_gamma", "agent_delta", "agent_epsilon"]
        agents = [
            make_agent(
                names[i] if i < len(names) else f"agent_run_{i}",
                f"run-{i + 1}",
                job_id=job_id,
                ordinal=i + 1,
            )
            for i in range(agent_count)
        ]
    kwargs.setdefault("repo_name", f"{owner}/{repo}" if owner and repo else "shop")
    kwargs.setdefault("issue_title", "Add dark mode")
    kwargs.setdefault("issue_description", "Users want a dark theme.")
    return Job(
        id=job_id,
        github_repo_owner=owner,
        github_repo_name=repo,
        status=status,
        agents=agents,
        **kwargs,
    )
