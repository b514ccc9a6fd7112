"""Route handlers for the job API.

Endpoints under ``/api`` create jobs, expose their state to the review UI and
record the reviewer's decision. A GitHub webhook starts jobs from issue
comments. Health endpoints live at the root.

Handlers that call remote services are plain ``def`` functions so FastAPI
runs them in its worker thread pool; handlers that only read the store are
``async``.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import time
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from arena.api.models import (
    CreateJobRequest,
    CreateJobResponse,
    CreatePullRequestsRequest,
    CreatePullRequestsResponse,
    IssueCommentEvent,
    JobDetailResponse,
    JobSummaryResponse,
    PullRequestResponse,
    SelectWinnerRequest,
    SelectWinnerResponse,
    WebhookResponse,
)
from arena.circuit_breaker import CircuitBreakerRegistry
from arena.exceptions import CodeHostError, ConfigurationError, SpawnError
from arena.github_client import CodeHostClient, PullRequest
from arena.logging import get_logger
from arena.models import Agent, Job
from arena.spawner import AgentSlot, JobSpawner, SpawnRequest, SpawnResult
from arena.store import JobStore
from arena.types import AgentStatus, JobStatus

logger = get_logger(__name__)

PULL_REQUEST_FOOTER = "Generated by Arena."

# A comment mentioning the arena starts a job for its issue
ARENA_TRIGGER = re.compile(r"arena\b", re.IGNORECASE)


def pull_request_title(job: Job, agent: Agent) -> str:
    return f"{job.issue_title} ({agent.id})"


def pull_request_body(job: Job) -> str | None:
    if not job.issue_description:
        return None
    return f"Addresses: {job.issue_description}\n\n{PULL_REQUEST_FOOTER}"


def webhook_signature_valid(secret: str, body: bytes, signature: str | None) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the delivery body."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.removeprefix("sha256="), expected)


def comment_spawn_request(event: IssueCommentEvent) -> SpawnRequest:
    """Job request for an issue comment: the issue plus the comment's instructions."""
    full_name = event.repository.full_name
    owner, _, repo = full_name.partition("/")
    description = (
        f"{event.issue.body or ''}\n\n---\n"
        f"Requested changes (from comment):\n{event.comment.body}"
    ).strip()
    return SpawnRequest(
        repo_name=full_name,
        issue_title=event.issue.title,
        issue_description=description,
        issue_id=event.issue.number,
        github_repo_owner=owner or None,
        github_repo_name=repo or None,
    )


def spawn_reply(result: SpawnResult) -> str:
    """Issue comment announcing a started job."""
    lines = [
        f"**Arena is on it!** {len(result.session_links)} agent(s) are working on this.",
        "",
        f"**[View progress]({result.arena_url})**",
    ]
    links = [link for link in result.session_links if link]
    if links:
        lines += ["", "**Watch agents live:**"]
        lines += [f"- [Agent {i}]({link})" for i, link in enumerate(links, start=1)]
    return "\n".join(lines)


def spawn_failure_reply(error: Exception) -> str:
    return (
        "Arena could not start agents. Please check WARP_API_KEY is set.\n\n"
        f"Error: {error}"
    )


def create_routes(
    store: JobStore,
    spawner: JobSpawner,
    code_host_client: CodeHostClient | None = None,
) -> APIRouter:
    """Create the ``/api`` job routes.

    Args:
        store: Shared job store.
        spawner: Spawner used by job creation.
        code_host_client: Client used to open pull requests; when None the
            pull request endpoint answers 503.

    Returns:
        An APIRouter with the job routes configured.
    """
    router = APIRouter(prefix="/api")

    def _get_job_or_404(job_id: str) -> Job:
        job = store.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return job

    @router.post("/jobs", status_code=201)
    def create_job(request: CreateJobRequest) -> CreateJobResponse:
        """Create a job and spawn its agents.

        Raises:
            HTTPException: 400 on missing fields or an invalid agent total,
                503 when the execution backend is not configured, 502 when no
                agent could be started.
        """
        if not (request.repo_name and request.issue_title and request.issue_description):
            raise HTTPException(
                status_code=400,
                detail="Missing required fields: repo_name, issue_title, issue_description",
            )

        slots = None
        if request.agent_configs:
            slots = [
                AgentSlot(count=slot.count, model_id=slot.model_id or "")
                for slot in request.agent_configs
            ]
        spawn_request = SpawnRequest(
            repo_name=request.repo_name,
            issue_title=request.issue_title,
            issue_description=request.issue_description,
            issue_id=request.issue_id,
            github_repo_owner=request.github_repo_owner,
            github_repo_name=request.github_repo_name,
            agent_slots=slots,
        )

        try:
            result = spawner.spawn(spawn_request)
        except ConfigurationError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except SpawnError as e:
            logger.error("Failed to spawn agents for %s: %s", request.repo_name, e)
            raise HTTPException(
                status_code=502, detail=f"Failed to spawn agents: {e}"
            ) from e

        return CreateJobResponse(
            job_id=result.job_id,
            arena_url=result.arena_url,
            session_links=result.session_links,
        )

    @router.get("/jobs")
    async def list_jobs() -> list[JobSummaryResponse]:
        """List every job, newest first."""
        return [JobSummaryResponse.from_job(job) for job in store.list_jobs()]

    @router.get("/jobs/{job_id}")
    async def get_job(job_id: str) -> JobDetailResponse:
        """Return one job with all of its agents.

        Raises:
            HTTPException: 404 if the job does not exist.
        """
        return JobDetailResponse.from_job(_get_job_or_404(job_id))

    @router.post("/jobs/{job_id}/select")
    async def select_winner(job_id: str, request: SelectWinnerRequest) -> SelectWinnerResponse:
        """Record the reviewer's winner and complete the job.

        Raises:
            HTTPException: 400 if no agent was given or it is not selectable,
                404 if the job does not exist.
        """
        if not request.winner_agent_id:
            raise HTTPException(status_code=400, detail="winner_agent_id required")

        result = store.select_winners(job_id, [request.winner_agent_id])
        if result.job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)

        logger.with_context(job_id=job_id, agent_id=request.winner_agent_id).info(
            "Winner selected"
        )
        return SelectWinnerResponse(ok=True, status=result.job.status.value)

    @router.post("/jobs/{job_id}/create-prs")
    def create_pull_requests(
        job_id: str, request: CreatePullRequestsRequest
    ) -> CreatePullRequestsResponse:
        """Open one pull request per chosen agent and complete the job.

        More than one chosen agent produces draft pull requests. An open pull
        request that already exists for a branch is reused.

        Raises:
            HTTPException: 400 on an invalid selection, 404 if the job does
                not exist, 503 without a code host client, 502 if the code
                host rejects a request.
        """
        if not request.agent_ids:
            raise HTTPException(
                status_code=400, detail="agent_ids array required (at least one)"
            )

        job = _get_job_or_404(job_id)
        if not job.has_repository:
            raise HTTPException(
                status_code=400,
                detail="Job has no GitHub repo configured (github_repo_owner/github_repo_name)",
            )
        if job.status == JobStatus.COMPLETED:
            raise HTTPException(status_code=400, detail="Job is already completed")

        chosen: list[Agent] = []
        invalid: list[str] = []
        for agent_id in request.agent_ids:
            agent = job.find_agent(agent_id)
            if agent is None or agent.status != AgentStatus.READY:
                invalid.append(agent_id)
            else:
                chosen.append(agent)
        if invalid:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid or not-ready agents: {', '.join(invalid)}",
            )

        if code_host_client is None:
            raise HTTPException(status_code=503, detail="GitHub client not configured")

        owner, repo = job.github_repo_owner or "", job.github_repo_name or ""
        draft = len(chosen) > 1
        results: list[PullRequestResponse] = []
        try:
            for agent in chosen:
                pull: PullRequest | None = code_host_client.find_pull_request(
                    owner, repo, agent.branch_name
                )
                if pull is None:
                    pull = code_host_client.create_pull_request(
                        owner,
                        repo,
                        head=agent.branch_name,
                        title=pull_request_title(job, agent),
                        body=pull_request_body(job),
                        draft=draft,
                    )
                results.append(
                    PullRequestResponse(
                        agent_id=agent.id,
                        html_url=pull.html_url,
                        number=pull.number,
                        draft=pull.draft,
                    )
                )
        except CodeHostError as e:
            logger.with_context(job_id=job_id).error("Failed to create pull requests: %s", e)
            raise HTTPException(
                status_code=502, detail=f"Failed to create pull requests: {e}"
            ) from e

        selection = store.select_winners(job_id, [agent.id for agent in chosen])
        if not selection.success:
            logger.with_context(job_id=job_id).warning(
                "Pull requests opened but job not completed: %s", selection.error
            )
        return CreatePullRequestsResponse(prs=results)

    return router


def create_webhook_routes(
    spawner: JobSpawner,
    code_host_client: CodeHostClient | None = None,
    webhook_secret: str = "",
) -> APIRouter:
    """Create the GitHub webhook route.

    A new comment on an issue (not a pull request) that mentions the arena
    starts a job for that issue. The outcome is posted back on the issue:
    the job's URL and session links, or the reason nothing started.

    Args:
        spawner: Spawner used to start the job.
        code_host_client: Client used to reply on the issue; without one the
            job still starts but no reply is posted.
        webhook_secret: Shared secret for ``X-Hub-Signature-256``; deliveries
            are not verified when empty.
    """
    router = APIRouter(prefix="/api/github")

    def _reply(owner: str, repo: str, issue_number: int, body: str) -> None:
        if code_host_client is None:
            logger.warning(
                "GitHub client not configured; not replying on %s/%s#%d", owner, repo, issue_number
            )
            return
        try:
            code_host_client.create_issue_comment(owner, repo, issue_number, body)
        except CodeHostError as e:
            logger.error("Failed to comment on %s/%s#%d: %s", owner, repo, issue_number, e)

    def _spawn_from_comment(event: IssueCommentEvent) -> WebhookResponse:
        request = comment_spawn_request(event)
        owner = request.github_repo_owner or ""
        repo = request.github_repo_name or ""
        issue_number = event.issue.number
        try:
            result = spawner.spawn(request)
        except (ConfigurationError, SpawnError, ValueError) as e:
            logger.error(
                "Failed to start arena for %s#%d: %s", event.repository.full_name, issue_number, e
            )
            _reply(owner, repo, issue_number, spawn_failure_reply(e))
            return WebhookResponse(ok=False, error=str(e))

        logger.with_context(job_id=result.job_id).info(
            "Job started from comment on %s#%d", event.repository.full_name, issue_number
        )
        _reply(owner, repo, issue_number, spawn_reply(result))
        return WebhookResponse(ok=True, job_id=result.job_id)

    @router.post("/webhook")
    async def github_webhook(request: Request) -> WebhookResponse:
        """Handle one webhook delivery.

        Deliveries that are not new arena comments on an issue are
        acknowledged and ignored.

        Raises:
            HTTPException: 401 on a bad signature, 400 on a malformed
                ``issue_comment`` payload.
        """
        body = await request.body()
        if webhook_secret and not webhook_signature_valid(
            webhook_secret, body, request.headers.get("X-Hub-Signature-256")
        ):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

        event_name = request.headers.get("X-GitHub-Event", "")
        if event_name != "issue_comment":
            return WebhookResponse(ok=True, ignored=f"event {event_name or 'unknown'}")

        try:
            event = IssueCommentEvent.model_validate_json(body)
        except ValidationError as e:
            raise HTTPException(
                status_code=400, detail=f"Invalid issue_comment payload: {e.error_count()} error(s)"
            ) from e

        if event.action != "created":
            return WebhookResponse(ok=True, ignored=f"action {event.action}")
        if event.issue.pull_request is not None:
            return WebhookResponse(ok=True, ignored="pull request")
        # The arena's own replies mention it too
        if event.comment.user.type == "Bot":
            return WebhookResponse(ok=True, ignored="bot comment")
        if not ARENA_TRIGGER.search(event.comment.body):
            return WebhookResponse(ok=True, ignored="no trigger")

        return await run_in_threadpool(_spawn_from_comment, event)

    return router


def create_health_routes(
    circuit_breaker_registry: CircuitBreakerRegistry | None = None,
) -> APIRouter:
    """Create liveness and readiness probes.

    Args:
        circuit_breaker_registry: Registry whose breakers are reported by the
            readiness probe.
    """
    router = APIRouter()

    @router.get("/health/live")
    async def health_live() -> dict[str, Any]:
        """Liveness probe; does not check external dependencies."""
        return {"status": "healthy", "timestamp": time.time()}

    @router.get("/health/ready")
    async def health_ready() -> dict[str, Any]:
        """Readiness probe reporting the circuit breaker of each external service.

        The status is ``degraded`` while any circuit is open.
        """
        checks = circuit_breaker_registry.get_all_status() if circuit_breaker_registry else {}
        degraded = any(check.get("state") == "open" for check in checks.values())
        return {
            "status": "degraded" if degraded else "healthy",
            "timestamp": time.time(),
            "checks": checks,
        }

    return router


# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "comment_spawn_request",
    "create_health_routes",
    "create_routes",
    "create_webhook_routes",
    "pull_request_body",
    "pull_request_title",
    "spawn_failure_reply",
    "spawn_reply",
    "webhook_signature_valid",
]
