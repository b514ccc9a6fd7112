"""In-memory job store shared by the spawner, the orchestrator and the HTTP API.

All state lives in a single dictionary guarded by one re-entrant lock. No
operation performs I/O while holding the lock. Reads return deep copies so
callers never observe (or cause) a half-applied update.

Thread Safety:
    All public methods are thread-safe. Compound checks such as
    "agent still in status X" and "every selected agent is ready" happen
    under the same lock as the write they guard.
"""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass
from typing import Any

from arena.logging import get_logger
from arena.models import Agent, Job
from arena.types import AgentStatus, JobStatus

logger = get_logger(__name__)

# Agent fields that may be replaced through update_agent/apply_agent_update.
# terminal_logs is append-only and only grows through append_log or log_line.
UPDATABLE_AGENT_FIELDS: frozenset[str] = frozenset(
    {
        "status",
        "deployment_url",
        "deployment_details_url",
        "session_link",
        "verification",
        "deployment_tracking",
    }
)

JOB_ID_LENGTH = 8


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of :meth:`JobStore.select_winners`.

    Attributes:
        job: Snapshot of the job after the operation, None if it does not exist.
        error: Human-readable reason the selection was refused, or None.
    """

    job: Job | None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.job is not None and self.error is None


class JobStore:
    """Lock-guarded repository of jobs and their agents.

    Maintains a reverse index from run id to job id so polling can resolve a
    run without scanning every job.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._run_index: dict[str, str] = {}
        self._lock = threading.RLock()

    def allocate_job_id(self) -> str:
        """Return a short random job id that is not in use yet."""
        with self._lock:
            while True:
                job_id = uuid.uuid4().hex[:JOB_ID_LENGTH]
                if job_id not in self._jobs:
                    return job_id

    def create_job(self, job: Job) -> Job:
        """Insert a job and index its agents.

        Args:
            job: The job to insert. The store keeps its own copy.

        Returns:
            Snapshot of the stored job.

        Raises:
            ValueError: If the job id, or any run id, is already present, or
                the job lists the same run id twice.
        """
        run_ids = [agent.run_id for agent in job.agents]
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            if len(set(run_ids)) != len(run_ids):
                raise ValueError(f"Job {job.id} lists a run id more than once")
            duplicates = [run_id for run_id in run_ids if run_id in self._run_index]
            if duplicates:
                raise ValueError(f"Run ids already tracked: {', '.join(duplicates)}")

            stored = copy.deepcopy(job)
            self._jobs[stored.id] = stored
            for run_id in run_ids:
                self._run_index[run_id] = stored.id
            logger.info("Created job %s with %d agents", stored.id, len(stored.agents))
            return copy.deepcopy(stored)

    def get_job(self, job_id: str) -> Job | None:
        """Return a snapshot of a job, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def list_jobs(self) -> list[Job]:
        """Return snapshots of all jobs, newest first."""
        with self._lock:
            jobs = copy.deepcopy(list(self._jobs.values()))
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    def get_agent_by_run_id(self, run_id: str) -> tuple[Job, Agent] | None:
        """Resolve a run id to snapshots of its job and agent."""
        with self._lock:
            located = self._locate(run_id)
            if located is None:
                return None
            job, agent = located
            snapshot = copy.deepcopy(job)
            return snapshot, next(a for a in snapshot.agents if a.run_id == agent.run_id)

    def update_agent(self, job_id: str, run_id: str, **fields: Any) -> bool:
        """Merge the given fields into an agent.

        Args:
            job_id: Job owning the agent.
            run_id: Run id of the agent.
            **fields: Agent fields to replace; see ``UPDATABLE_AGENT_FIELDS``.

        Returns:
            True if the agent was updated, False if the job or agent is absent.

        Raises:
            TypeError: If a field name is not updatable.
        """
        _check_fields(fields)
        with self._lock:
            agent = self._find_agent(job_id, run_id)
            if agent is None:
                logger.debug("Ignoring update for unknown agent %s/%s", job_id, run_id)
                return False
            _merge(agent, fields)
            return True

    def apply_agent_update(
        self,
        job_id: str,
        run_id: str,
        expected_status: AgentStatus,
        log_line: str | None = None,
        **fields: Any,
    ) -> bool:
        """Compare-and-set update used by the polling path.

        The update is applied only while the job is not completed and the
        agent's stored status still equals ``expected_status``, so a slow
        poll cannot overwrite a newer state or a human decision.

        Args:
            job_id: Job owning the agent.
            run_id: Run id of the agent.
            expected_status: Status the caller based its decision on.
            log_line: Optional line appended to the agent's log together with
                the update.
            **fields: Agent fields to replace.

        Returns:
            True if the update was applied.
        """
        _check_fields(fields)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status == JobStatus.COMPLETED:
                return False
            agent = self._find_agent(job_id, run_id)
            if agent is None or agent.status != expected_status:
                logger.debug(
                    "Discarding stale update for %s/%s (expected %s)",
                    job_id,
                    run_id,
                    expected_status,
                )
                return False
            _merge(agent, fields)
            if log_line is not None:
                agent.terminal_logs.append(log_line)
            return True

    def append_log(self, job_id: str, run_id: str, line: str) -> bool:
        """Append one line to an agent's terminal log."""
        with self._lock:
            agent = self._find_agent(job_id, run_id)
            if agent is None:
                return False
            agent.terminal_logs.append(line)
            return True

    def update_job_status(self, job_id: str, status: JobStatus) -> bool:
        """Advance a job's status.

        Status only moves forward; a request to move backwards (or to stay
        put) is refused.

        Returns:
            True if the status changed, False if the job is absent or the
            transition would not advance it.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if status.rank <= job.status.rank:
                if status.rank < job.status.rank:
                    logger.warning(
                        "Refusing to move job %s from %s back to %s", job_id, job.status, status
                    )
                return False
            logger.info("Job %s: %s -> %s", job_id, job.status, status)
            job.status = status
            return True

    def select_winners(self, job_id: str, agent_ids: list[str]) -> SelectionResult:
        """Record the human's choice of winning agents and complete the job.

        Every listed agent must exist and be ``ready``. The check and the
        write happen atomically.

        Args:
            job_id: Job to complete.
            agent_ids: Ids of the chosen agents; must not be empty.

        Returns:
            A :class:`SelectionResult` describing the outcome.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return SelectionResult(job=None, error=f"Job {job_id} not found")
            if job.status == JobStatus.COMPLETED:
                return SelectionResult(job=copy.deepcopy(job), error="Job is already completed")
            if not agent_ids:
                return SelectionResult(job=copy.deepcopy(job), error="No agents selected")
            for agent_id in agent_ids:
                agent = job.find_agent(agent_id)
                if agent is None:
                    return SelectionResult(
                        job=copy.deepcopy(job), error=f"Agent {agent_id} not found"
                    )
                if agent.status != AgentStatus.READY:
                    return SelectionResult(
                        job=copy.deepcopy(job),
                        error=f"Agent {agent_id} is not ready (status: {agent.status})",
                    )
            job.winner_agent_ids = list(agent_ids)
            self.update_job_status(job_id, JobStatus.COMPLETED)
            return SelectionResult(job=copy.deepcopy(job))

    def _locate(self, run_id: str) -> tuple[Job, Agent] | None:
        job_id = self._run_index.get(run_id)
        if job_id is None:
            return None
        agent = self._find_agent(job_id, run_id)
        if agent is None:
            return None
        return self._jobs[job_id], agent

    def _find_agent(self, job_id: str, run_id: str) -> Agent | None:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        for agent in job.agents:
            if agent.run_id == run_id:
                return agent
        return None


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_AGENT_FIELDS
    if unknown:
        raise TypeError(f"Unknown or read-only agent fields: {', '.join(sorted(unknown))}")


def _merge(agent: Agent, fields: dict[str, Any]) -> None:
    for name, value in fields.items():
        setattr(agent, name, value)
