"""Domain entities held by the job store.

Instances handed out by :class:`arena.store.JobStore` are deep copies; mutate
state only through the store's operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from arena.types import AgentStatus, JobStatus


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of the post-deployment verification of an agent."""

    passed: bool
    reason: str


@dataclass(frozen=True)
class DeploymentTracking:
    """Identifiers observed the last time the deployment pipeline was checked."""

    workflow_run_id: int | None = None
    deployment_id: int | None = None
    last_checked_at: datetime | None = None


@dataclass
class Agent:
    """One automated attempt at a job's task.

    Attributes:
        id: Stable label within the job (e.g. ``agent_alpha``).
        run_id: Execution backend run id; the reconciliation key.
        branch_name: Branch the agent is instructed to push.
        model_id: Model the run was requested with.
        status: Current lifecycle status.
        terminal_logs: Append-only log lines shown to the reviewer.
        deployment_url: Directly browsable preview address.
        deployment_details_url: Deployment dashboard address reported by the
            code host.
        session_link: Link to the live agent session, when known.
        verification: Verification record, set once the agent is ready.
        deployment_tracking: Identifiers from the last deployment check.
    """

    id: str
    run_id: str
    branch_name: str
    model_id: str
    status: AgentStatus = AgentStatus.INITIALIZING
    terminal_logs: list[str] = field(default_factory=list)
    deployment_url: str | None = None
    deployment_details_url: str | None = None
    session_link: str | None = None
    verification: VerificationResult | None = None
    deployment_tracking: DeploymentTracking | None = None


@dataclass
class Job:
    """A request to run several agents against the same issue."""

    id: str
    repo_name: str
    issue_title: str
    issue_description: str
    issue_id: int = 0
    github_repo_owner: str | None = None
    github_repo_name: str | None = None
    status: JobStatus = JobStatus.PROCESSING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    agents: list[Agent] = field(default_factory=list)
    winner_agent_ids: list[str] = field(default_factory=list)

    @property
    def has_repository(self) -> bool:
        """Whether the job carries an ``owner/repo`` coordinate on the code host."""
        return bool(self.github_repo_owner and self.github_repo_name)

    def find_agent(self, agent_id: str) -> Agent | None:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "Agent",
    "DeploymentTracking",
    "Job",
    "VerificationResult",
]
