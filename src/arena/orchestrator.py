"""Periodic reconciliation of agent state against the remote pipelines.

One background thread ticks on a fixed period. Each tick fans out one task
per tracked agent to a thread pool; every task asks the execution backend
for the run state, consults the deployment pipeline once the run has handed
its code off, and writes the result back with a compare-and-set. After the
agents of a job are processed the termination policy decides whether the job
is ready for review, in which case it leaves the active set.

Polling is at-least-once: re-deriving the status an agent already has writes
nothing and appends no log line. Terminal agent statuses are never revisited.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from arena.deployment_monitor import DeploymentCheck, DeploymentMonitor, is_direct_preview_url
from arena.exceptions import CodeHostError, ExecutionClientError
from arena.logging import get_logger
from arena.models import Agent, DeploymentTracking, Job, VerificationResult
from arena.preview import PreviewResolver
from arena.status_mapper import map_run_state
from arena.store import JobStore
from arena.termination import TerminationPolicy
from arena.types import AgentStatus, DeploymentOutcome, JobStatus
from arena.warp_client import ExecutionClient, RunInfo

logger = get_logger(__name__)

VERIFIED_REASON = "Agent completed and deployed successfully"

_OUTCOME_TO_STATUS: dict[DeploymentOutcome, AgentStatus] = {
    DeploymentOutcome.SUCCESS: AgentStatus.READY,
    DeploymentOutcome.FAILURE: AgentStatus.DEPLOYMENT_FAILED,
    DeploymentOutcome.PENDING: AgentStatus.DEPLOYING,
    DeploymentOutcome.NOT_FOUND: AgentStatus.PUSHING,
}


@dataclass
class MonitoringEntry:
    """Polling bookkeeping for one active job.

    Attributes:
        job_id: The monitored job.
        run_ids: Run ids of the job's agents.
        started_at: Epoch seconds the job was registered.
        last_finisher_at: Epoch seconds of the most recent transition of any
            agent into a terminal status; None until the first one.
    """

    job_id: str
    run_ids: list[str]
    started_at: float
    last_finisher_at: float | None = None


@dataclass
class TickSummary:
    """What one tick did; returned by :meth:`PollingOrchestrator.run_once`."""

    jobs_polled: int = 0
    agents_polled: int = 0
    transitions: int = 0
    timed_out: int = 0
    converged_job_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Reconciliation:
    """New agent state derived from one poll, before it is written."""

    status: AgentStatus
    fields: dict[str, Any]
    log_line: str | None


def transition_log_line(
    status: AgentStatus, run: RunInfo, preview_url: str | None
) -> str | None:
    """Log line shown to the reviewer when an agent enters ``status``."""
    if status == AgentStatus.READY:
        return f"✓ Deployed to Vercel: {preview_url}" if preview_url else "✓ Deployment succeeded"
    if status == AgentStatus.DEPLOYMENT_FAILED:
        return "✗ Deployment failed"
    if status == AgentStatus.DEPLOYING:
        return "⏳ Deployment in progress..."
    if status == AgentStatus.PUSHING:
        return "⏳ Waiting for code to be pushed..."
    if status == AgentStatus.FAILED:
        return f"✗ Agent failed: {run.status_message or 'Unknown error'}"
    if status == AgentStatus.DEVELOPING:
        return "Agent is developing..."
    return None


class PollingOrchestrator:
    """Drives reconciliation of every active job on a fixed period.

    Thread Safety:
        ``register``, ``deregister`` and ``run_once`` may be called from any
        thread. Store writes go through the store's own lock; the active set
        is guarded by ``_lock``. Ticks never overlap: ``run_once`` holds
        ``_tick_lock`` for its duration.
    """

    def __init__(
        self,
        store: JobStore,
        execution_client: ExecutionClient | None,
        deployment_monitor: DeploymentMonitor | None = None,
        preview_resolver: PreviewResolver | None = None,
        policy: TerminationPolicy | None = None,
        poll_interval: float = 10.0,
        initial_delay: float = 2.0,
        tick_timeout: float = 60.0,
        max_workers: int = 8,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Shared job store.
            execution_client: Execution backend; when None, ticks do nothing.
            deployment_monitor: Deployment pipeline monitor; when None, agents
                whose run succeeded stay ``pushing``.
            preview_resolver: Resolver for dashboard links.
            policy: Convergence policy.
            poll_interval: Seconds between ticks.
            initial_delay: Seconds before the first tick after ``start``.
            tick_timeout: Max seconds one tick waits for its agent tasks.
            max_workers: Size of the reconciliation thread pool.
            clock: Epoch-seconds clock, injectable for tests.
        """
        self._store = store
        self._execution_client = execution_client
        self._deployment_monitor = deployment_monitor
        self._preview_resolver = preview_resolver
        self._policy = policy or TerminationPolicy()
        self._poll_interval = poll_interval
        self._initial_delay = initial_delay
        self._tick_timeout = tick_timeout
        self._max_workers = max_workers
        self._clock = clock

        self._entries: dict[str, MonitoringEntry] = {}
        self._lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

        if deployment_monitor is None:
            logger.warning("No code host configured; agents will stay 'pushing' after their run")

    # Active set

    def register(self, job_id: str, run_ids: Iterable[str]) -> MonitoringEntry:
        """Start monitoring a job.

        Args:
            job_id: Job to monitor.
            run_ids: Run ids of the job's agents.

        Returns:
            The new monitoring entry (start time = now, no finisher yet).
        """
        entry = MonitoringEntry(job_id=job_id, run_ids=list(run_ids), started_at=self._clock())
        with self._lock:
            self._entries[job_id] = entry
        logger.info("Monitoring job %s (%d runs)", job_id, len(entry.run_ids))
        return entry

    def deregister(self, job_id: str) -> bool:
        """Stop monitoring a job. In-flight work for it may still finish."""
        with self._lock:
            removed = self._entries.pop(job_id, None)
        if removed is not None:
            logger.info("Stopped monitoring job %s", job_id)
        return removed is not None

    def get_entry(self, job_id: str) -> MonitoringEntry | None:
        with self._lock:
            return self._entries.get(job_id)

    def active_job_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def _mark_finisher(self, job_id: str, when: float) -> None:
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is not None:
                entry.last_finisher_at = when

    # Lifecycle

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background polling thread."""
        if self.is_running:
            logger.warning("Polling orchestrator already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="arena-poller", daemon=True
        )
        self._thread.start()
        logger.info(
            "Polling orchestrator started (interval: %ss, first tick in %ss)",
            self._poll_interval,
            self._initial_delay,
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the polling thread and the worker pool.

        In-flight agent tasks are not interrupted; their writes are discarded
        by the store if they have become stale.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Polling thread did not stop within %ss", timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.info("Polling orchestrator stopped")

    def _run_loop(self) -> None:
        if self._stop_event.wait(self._initial_delay):
            return
        while True:
            try:
                summary = self.run_once()
                if summary.transitions or summary.converged_job_ids:
                    logger.info(
                        "Tick: %d job(s), %d agent(s), %d transition(s), %d converged",
                        summary.jobs_polled,
                        summary.agents_polled,
                        summary.transitions,
                        len(summary.converged_job_ids),
                    )
            except Exception as e:
                logger.exception("Unexpected error in polling tick: %s", e)
            if self._stop_event.wait(self._poll_interval):
                return

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="arena-poll-"
            )
        return self._executor

    # Tick

    def run_once(self) -> TickSummary:
        """Run one reconciliation tick over every active job.

        Returns:
            A :class:`TickSummary` of the work done.
        """
        with self._tick_lock:
            return self._tick()

    def _tick(self) -> TickSummary:
        summary = TickSummary()
        if self._execution_client is None:
            return summary

        now = self._clock()
        with self._lock:
            entries = list(self._entries.values())

        jobs: list[tuple[MonitoringEntry, Job]] = []
        for entry in entries:
            job = self._store.get_job(entry.job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                # Gone, completed by a human, or already converged: never resurrect
                self.deregister(entry.job_id)
                continue
            jobs.append((entry, job))
        if not jobs:
            return summary

        summary.jobs_polled = len(jobs)
        futures: list[Future[bool]] = []
        executor = self._get_executor()
        for entry, job in jobs:
            tracked = set(entry.run_ids)
            for agent in job.agents:
                if agent.run_id not in tracked:
                    continue
                summary.agents_polled += 1
                futures.append(executor.submit(self._reconcile_agent, job, agent, now))

        done, not_done = wait(futures, timeout=self._tick_timeout)
        for future in done:
            try:
                if future.result():
                    summary.transitions += 1
            except Exception as e:
                logger.exception("Agent reconciliation failed: %s", e)
        summary.timed_out = len(not_done)
        if not_done:
            logger.warning(
                "%d agent check(s) still running after %ss; results will be applied if current",
                len(not_done),
                self._tick_timeout,
            )

        for entry, _ in jobs:
            if self._evaluate_job(entry.job_id, now):
                summary.converged_job_ids.append(entry.job_id)
        return summary

    def _evaluate_job(self, job_id: str, now: float) -> bool:
        entry = self.get_entry(job_id)
        job = self._store.get_job(job_id)
        if entry is None or job is None or job.status != JobStatus.PROCESSING:
            self.deregister(job_id)
            return False

        decision = self._policy.evaluate(
            [agent.status for agent in job.agents],
            started_at=entry.started_at,
            last_finisher_at=entry.last_finisher_at,
            now=now,
            ready_with_preview=any(
                agent.status == AgentStatus.READY
                and bool(agent.deployment_details_url or agent.deployment_url)
                for agent in job.agents
            ),
        )
        if not decision.converged:
            return False

        if self._store.update_job_status(job_id, JobStatus.REVIEW_NEEDED):
            logger.with_context(job_id=job_id).info(
                "Job converged (%s), ready for review", decision.reason
            )
        self.deregister(job_id)
        return True

    # Per-agent reconciliation

    def _reconcile_agent(self, job: Job, agent: Agent, now: float) -> bool:
        """Poll one agent and persist any change.

        Returns:
            True if the agent's status changed.
        """
        log = logger.with_context(job_id=job.id, agent_id=agent.id, run_id=agent.run_id)

        if agent.status.is_terminal:
            if agent.status == AgentStatus.READY:
                self._backfill_preview(job, agent)
            return False

        if self._execution_client is None:
            return False
        try:
            run = self._execution_client.get_run(agent.run_id)
        except ExecutionClientError as e:
            log.warning("Failed to fetch run: %s", e)
            return False

        try:
            result = self._derive(job, agent, run)
        except CodeHostError as e:
            log.warning("Failed to check deployment for %s: %s", agent.branch_name, e)
            return False

        status_changed = result.status != agent.status
        fields = dict(result.fields)
        if status_changed:
            fields["status"] = result.status
        if run.session_link and run.session_link != agent.session_link:
            fields["session_link"] = run.session_link
        if not fields:
            return False

        applied = self._store.apply_agent_update(
            job.id,
            agent.run_id,
            expected_status=agent.status,
            log_line=result.log_line if status_changed else None,
            **fields,
        )
        if not applied or not status_changed:
            return False

        if agent.status == AgentStatus.DEPLOYING and result.status == AgentStatus.PUSHING:
            log.warning(
                "Deployment record for %s disappeared; back to waiting for a push",
                agent.branch_name,
            )
        else:
            log.info("Agent %s -> %s", agent.status, result.status)

        if result.status.is_terminal:
            self._mark_finisher(job.id, now)
        return True

    def _derive(self, job: Job, agent: Agent, run: RunInfo) -> _Reconciliation:
        candidate = map_run_state(run.state)
        if candidate == AgentStatus.FAILED:
            return _Reconciliation(
                status=AgentStatus.FAILED,
                fields={},
                log_line=transition_log_line(AgentStatus.FAILED, run, None),
            )

        if candidate != AgentStatus.PUSHING:
            return _Reconciliation(
                status=candidate,
                fields={},
                log_line=transition_log_line(candidate, run, None),
            )

        owner, repo = job.github_repo_owner, job.github_repo_name
        if self._deployment_monitor is None or not owner or not repo:
            return _Reconciliation(
                status=AgentStatus.PUSHING,
                fields={},
                log_line=transition_log_line(AgentStatus.PUSHING, run, None),
            )

        check = self._deployment_monitor.check_branch(owner, repo, agent.branch_name)
        return self._from_deployment_check(agent, run, check)

    def _from_deployment_check(
        self, agent: Agent, run: RunInfo, check: DeploymentCheck
    ) -> _Reconciliation:
        status = _OUTCOME_TO_STATUS[check.status]
        fields: dict[str, Any] = {
            "deployment_tracking": DeploymentTracking(
                workflow_run_id=check.workflow_run_id,
                deployment_id=check.deployment_id,
                last_checked_at=datetime.now(UTC),
            )
        }

        preview_url: str | None = None
        if status == AgentStatus.READY:
            details_url = check.preview_url
            preview_url = self._resolve_preview(details_url)
            if details_url != agent.deployment_details_url:
                fields["deployment_details_url"] = details_url
            if preview_url is not None:
                fields["deployment_url"] = preview_url
            fields["verification"] = VerificationResult(passed=True, reason=VERIFIED_REASON)

        return _Reconciliation(
            status=status,
            fields=fields,
            log_line=transition_log_line(status, run, preview_url or check.preview_url),
        )

    def _resolve_preview(self, url: str | None) -> str | None:
        if not url:
            return None
        if is_direct_preview_url(url):
            return url
        if self._preview_resolver is None:
            return None
        return self._preview_resolver.resolve(url)

    def _backfill_preview(self, job: Job, agent: Agent) -> None:
        # A ready agent whose dashboard link could not be resolved yet gets retried
        if agent.deployment_url or not agent.deployment_details_url:
            return
        if self._preview_resolver is None or not self._preview_resolver.enabled:
            return
        preview_url = self._preview_resolver.resolve(agent.deployment_details_url)
        if preview_url is not None:
            self._store.apply_agent_update(
                job.id, agent.run_id, expected_status=AgentStatus.READY, deployment_url=preview_url
            )
