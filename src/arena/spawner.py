"""Create jobs and start their agents on the execution backend."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from arena.exceptions import ConfigurationError, ExecutionClientError, SpawnError
from arena.logging import get_logger
from arena.models import Agent, Job
from arena.store import JobStore
from arena.warp_client import ExecutionClient, RunConfig

if TYPE_CHECKING:
    from arena.orchestrator import PollingOrchestrator

logger = get_logger(__name__)

DEFAULT_MODEL_ID = "claude-4-sonnet"
MAX_AGENTS_PER_SLOT = 10

AGENT_NAMES: tuple[str, ...] = ("alpha", "beta", "gamma", "delta", "epsilon")

INITIAL_AGENT_LOGS: tuple[str, ...] = ("Agent started...", "Connecting to Warp...")

BUILD_HINT = (
    'When you build to test your work, use this command "cd /workspace/<repo> && '
    'npm install && npm run build 2>&1" otherwise you will get package not found errors'
)


@dataclass(frozen=True)
class AgentSlot:
    """Request for ``count`` agents running ``model_id``."""

    count: int = 1
    model_id: str = DEFAULT_MODEL_ID


@dataclass(frozen=True)
class SpawnRequest:
    """Everything needed to create a job."""

    repo_name: str
    issue_title: str
    issue_description: str
    issue_id: int = 0
    github_repo_owner: str | None = None
    github_repo_name: str | None = None
    agent_slots: Sequence[AgentSlot] | None = None


@dataclass(frozen=True)
class SpawnResult:
    """Identifiers handed back to whoever requested the job."""

    job_id: str
    arena_url: str
    session_links: list[str | None] = field(default_factory=list)


def branch_name_for(job_id: str, ordinal: int) -> str:
    """Branch an agent pushes to; ``ordinal`` counts from 1 across the whole job."""
    return f"arena-{job_id}-{ordinal}"


def agent_label(index: int) -> str:
    """Stable agent id for the agent at 0-based ``index`` within its job."""
    if index < len(AGENT_NAMES):
        return f"agent_{AGENT_NAMES[index]}"
    return f"agent_run_{index}"


def resolve_repository(
    repo_name: str, owner: str | None = None, name: str | None = None
) -> tuple[str | None, str | None]:
    """Work out the ``(owner, repo)`` coordinate of a job.

    Explicit values win; otherwise ``repo_name`` is split on ``/``. A bare
    repository name yields no owner, which disables deployment monitoring.
    """
    if owner and name:
        return owner, name
    if "/" in repo_name:
        split_owner, _, split_name = repo_name.partition("/")
        return split_owner or None, split_name or None
    return None, repo_name or None


def normalize_slots(
    slots: Sequence[AgentSlot] | None,
    default_model_id: str = DEFAULT_MODEL_ID,
    max_total: int = 10,
) -> list[AgentSlot]:
    """Validate requested agent slots.

    Each count is clamped into ``1..MAX_AGENTS_PER_SLOT`` and a missing model
    falls back to ``default_model_id``. No slots means one default agent.

    Raises:
        ValueError: If the total number of agents is outside ``1..max_total``.
    """
    if not slots:
        return [AgentSlot(count=1, model_id=default_model_id)]

    normalized = [
        AgentSlot(
            count=max(1, min(MAX_AGENTS_PER_SLOT, slot.count)),
            model_id=slot.model_id or default_model_id,
        )
        for slot in slots
    ]
    total = sum(slot.count for slot in normalized)
    if total < 1 or total > max_total:
        raise ValueError(f"Total agents must be between 1 and {max_total}")
    return normalized


def build_prompt(request: SpawnRequest, branch_name: str, workspace_prepared: bool) -> str:
    """Task instructions sent to one agent.

    Args:
        request: The job request.
        branch_name: Branch this agent must push to.
        workspace_prepared: Whether the backend environment already has the
            repository checked out.
    """
    if workspace_prepared:
        repo_context = (
            f"The repository ({request.repo_name}) has been cloned and is available in your "
            "workspace. You can immediately explore the files and start coding, no need to "
            "clone or set up the repo."
        )
    else:
        repo_context = f"Repository: {request.repo_name}"

    return f"""Repository: {request.repo_name}

GitHub Issue: {request.issue_title}

{request.issue_description}

{repo_context}

Instructions:
- You are working on the repository `{request.repo_name}`; all changes must target this repo
- Create a branch named `{branch_name}` (e.g. `git checkout -b {branch_name}`)
- Implement the requested change or feature
- Commit your work to `{branch_name}` and push to origin when ready
- Do NOT create a pull request for your work. The human will review your branch and decide whether to open a PR.
- {BUILD_HINT}"""


class JobSpawner:
    """Allocate a job, start one run per requested agent and begin monitoring."""

    def __init__(
        self,
        store: JobStore,
        execution_client: ExecutionClient | None,
        orchestrator: PollingOrchestrator | None = None,
        environment_id: str = "",
        arena_ui_url: str = "http://localhost:3000",
        default_model_id: str = DEFAULT_MODEL_ID,
        max_agents_per_job: int = 10,
    ) -> None:
        self._store = store
        self._execution_client = execution_client
        self._orchestrator = orchestrator
        self._environment_id = environment_id
        self._arena_ui_url = arena_ui_url.rstrip("/")
        self._default_model_id = default_model_id
        self._max_agents_per_job = max_agents_per_job

    @property
    def configured(self) -> bool:
        return self._execution_client is not None

    def job_url(self, job_id: str) -> str:
        return f"{self._arena_ui_url}/jobs/{job_id}"

    def spawn(self, request: SpawnRequest) -> SpawnResult:
        """Create a job and start its agents.

        Runs that fail to start are logged and left out of the job; the job
        is created as long as at least one agent started.

        Args:
            request: The job request.

        Returns:
            The job id, its UI URL and per-agent session links.

        Raises:
            ConfigurationError: If no execution backend is configured.
            ValueError: If the requested agent slots are invalid.
            SpawnError: If no agent could be started.
        """
        client = self._execution_client
        if client is None:
            raise ConfigurationError("WARP_API_KEY not configured. Set it in .env to spawn agents.")

        slots = normalize_slots(
            request.agent_slots, self._default_model_id, self._max_agents_per_job
        )
        total = sum(slot.count for slot in slots)
        job_id = self._store.allocate_job_id()
        owner, repo = resolve_repository(
            request.repo_name, request.github_repo_owner, request.github_repo_name
        )
        log = logger.with_context(job_id=job_id)
        log.info(
            "Spawning %d agent(s) for %s: %s",
            total,
            request.repo_name,
            ", ".join(f"{slot.count}x {slot.model_id}" for slot in slots),
        )

        agents: list[Agent] = []
        errors: list[Exception] = []
        ordinal = 0
        for slot in slots:
            for _ in range(slot.count):
                ordinal += 1
                try:
                    agents.append(
                        self._start_agent(client, request, job_id, ordinal, total, slot)
                    )
                except ExecutionClientError as e:
                    log.error("Failed to start agent %d/%d: %s", ordinal, total, e)
                    errors.append(e)

        if not agents:
            raise SpawnError(f"Failed to start any of {total} agent(s): {errors[0]}", errors)

        job = self._store.create_job(
            Job(
                id=job_id,
                repo_name=request.repo_name,
                issue_title=request.issue_title,
                issue_description=request.issue_description,
                issue_id=request.issue_id,
                github_repo_owner=owner,
                github_repo_name=repo,
                agents=agents,
            )
        )
        if self._orchestrator is not None:
            self._orchestrator.register(job.id, [agent.run_id for agent in job.agents])

        if errors:
            log.warning("Job created with %d of %d agent(s)", len(agents), total)
        return SpawnResult(
            job_id=job.id,
            arena_url=self.job_url(job.id),
            session_links=[agent.session_link for agent in job.agents],
        )

    def _start_agent(
        self,
        client: ExecutionClient,
        request: SpawnRequest,
        job_id: str,
        ordinal: int,
        total: int,
        slot: AgentSlot,
    ) -> Agent:
        branch_name = branch_name_for(job_id, ordinal)
        config = RunConfig(
            name=f"arena-{job_id}",
            model_id=slot.model_id,
            environment_id=self._environment_id or None,
        )
        handle = client.run_agent(
            build_prompt(request, branch_name, workspace_prepared=bool(self._environment_id)),
            title=f"Arena: {request.issue_title} (Agent {ordinal}/{total})",
            config=config,
        )

        session_link: str | None = None
        try:
            session_link = client.get_run(handle.run_id).session_link
        except ExecutionClientError as e:
            logger.warning("Failed to fetch session link for run %s: %s", handle.run_id, e)

        return Agent(
            id=agent_label(ordinal - 1),
            run_id=handle.run_id,
            branch_name=branch_name,
            model_id=slot.model_id,
            terminal_logs=list(INITIAL_AGENT_LOGS),
            session_link=session_link,
        )
