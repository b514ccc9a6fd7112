"""Pydantic request/response models for the job API.

Models are grouped by endpoint:

- Spawn models: AgentSlotRequest, CreateJobRequest, CreateJobResponse
- Read models: VerificationResponse, DeploymentTrackingResponse, AgentResponse,
  JobSummaryResponse, JobDetailResponse
- Review models: SelectWinnerRequest, SelectWinnerResponse,
  CreatePullRequestsRequest, PullRequestResponse, CreatePullRequestsResponse
- Webhook models: WebhookUser, WebhookIssue, WebhookComment, WebhookRepository,
  IssueCommentEvent, WebhookResponse
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from arena.models import Agent, DeploymentTracking, Job, VerificationResult

# NOTE: Update this list when adding new models to this module.
__all__: list[str] = [
    # Spawn models
    "AgentSlotRequest",
    "CreateJobRequest",
    "CreateJobResponse",
    # Read models
    "VerificationResponse",
    "DeploymentTrackingResponse",
    "AgentResponse",
    "JobSummaryResponse",
    "JobDetailResponse",
    # Review models
    "SelectWinnerRequest",
    "SelectWinnerResponse",
    "CreatePullRequestsRequest",
    "PullRequestResponse",
    "CreatePullRequestsResponse",
    # Webhook models
    "WebhookUser",
    "WebhookIssue",
    "WebhookComment",
    "WebhookRepository",
    "IssueCommentEvent",
    "WebhookResponse",
]


# Spawn models
class AgentSlotRequest(BaseModel):
    """Request for ``count`` agents running ``model_id``."""

    count: int = 1
    model_id: str | None = None


class CreateJobRequest(BaseModel):
    """Request model for job creation.

    Required text fields default to empty so that their absence is reported
    as a 400 by the route rather than a schema error.
    """

    repo_name: str = ""
    issue_title: str = ""
    issue_description: str = ""
    issue_id: int = 0
    github_repo_owner: str | None = None
    github_repo_name: str | None = None
    agent_configs: list[AgentSlotRequest] | None = None


class CreateJobResponse(BaseModel):
    """Response model for job creation."""

    job_id: str
    arena_url: str
    session_links: list[str | None]


# Read models
class VerificationResponse(BaseModel):
    passed: bool
    reason: str

    @classmethod
    def from_result(cls, result: VerificationResult | None) -> VerificationResponse | None:
        if result is None:
            return None
        return cls(passed=result.passed, reason=result.reason)


class DeploymentTrackingResponse(BaseModel):
    workflow_run_id: int | None = None
    deployment_id: int | None = None
    last_checked_at: datetime | None = None

    @classmethod
    def from_tracking(
        cls, tracking: DeploymentTracking | None
    ) -> DeploymentTrackingResponse | None:
        if tracking is None:
            return None
        return cls(
            workflow_run_id=tracking.workflow_run_id,
            deployment_id=tracking.deployment_id,
            last_checked_at=tracking.last_checked_at,
        )


class AgentResponse(BaseModel):
    """One agent as shown on the review page."""

    id: str
    run_id: str
    branch_name: str
    model_id: str
    status: str
    terminal_logs: list[str]
    deployment_url: str | None = None
    deployment_details_url: str | None = None
    session_link: str | None = None
    verification: VerificationResponse | None = None
    deployment_tracking: DeploymentTrackingResponse | None = None

    @classmethod
    def from_agent(cls, agent: Agent) -> AgentResponse:
        return cls(
            id=agent.id,
            run_id=agent.run_id,
            branch_name=agent.branch_name,
            model_id=agent.model_id,
            status=agent.status.value,
            terminal_logs=list(agent.terminal_logs),
            deployment_url=agent.deployment_url,
            deployment_details_url=agent.deployment_details_url,
            session_link=agent.session_link,
            verification=VerificationResponse.from_result(agent.verification),
            deployment_tracking=DeploymentTrackingResponse.from_tracking(
                agent.deployment_tracking
            ),
        )


class JobSummaryResponse(BaseModel):
    """Job as listed on the overview page."""

    id: str
    issue_id: int
    repo_name: str
    issue_title: str
    status: str
    created_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> JobSummaryResponse:
        return cls(
            id=job.id,
            issue_id=job.issue_id,
            repo_name=job.repo_name,
            issue_title=job.issue_title,
            status=job.status.value,
            created_at=job.created_at,
        )


class JobDetailResponse(JobSummaryResponse):
    """Full job with its agents."""

    issue_description: str
    github_repo_owner: str | None = None
    github_repo_name: str | None = None
    agents: list[AgentResponse]
    winner_agent_ids: list[str]

    @classmethod
    def from_job(cls, job: Job) -> JobDetailResponse:
        return cls(
            id=job.id,
            issue_id=job.issue_id,
            repo_name=job.repo_name,
            issue_title=job.issue_title,
            status=job.status.value,
            created_at=job.created_at,
            issue_description=job.issue_description,
            github_repo_owner=job.github_repo_owner,
            github_repo_name=job.github_repo_name,
            agents=[AgentResponse.from_agent(agent) for agent in job.agents],
            winner_agent_ids=list(job.winner_agent_ids),
        )


# Review models
class SelectWinnerRequest(BaseModel):
    winner_agent_id: str = ""


class SelectWinnerResponse(BaseModel):
    ok: bool
    status: str


class CreatePullRequestsRequest(BaseModel):
    agent_ids: list[str] = []


class PullRequestResponse(BaseModel):
    agent_id: str
    html_url: str
    number: int
    draft: bool


class CreatePullRequestsResponse(BaseModel):
    prs: list[PullRequestResponse]


# Webhook models
class WebhookUser(BaseModel):
    login: str = ""
    type: str = "User"


class WebhookIssue(BaseModel):
    """The issue a comment was left on.

    GitHub delivers pull request conversations as issues too; those carry a
    ``pull_request`` object.
    """

    number: int
    title: str = ""
    body: str | None = None
    pull_request: dict[str, Any] | None = None


class WebhookComment(BaseModel):
    body: str = ""
    user: WebhookUser = WebhookUser()


class WebhookRepository(BaseModel):
    full_name: str


class IssueCommentEvent(BaseModel):
    """Subset of the ``issue_comment`` webhook payload used to start a job."""

    action: str
    issue: WebhookIssue
    comment: WebhookComment
    repository: WebhookRepository


class WebhookResponse(BaseModel):
    """Outcome of one webhook delivery.

    ``ignored`` names why a delivery started nothing; ``error`` carries the
    spawn failure that was reported back on the issue.
    """

    ok: bool
    job_id: str | None = None
    ignored: str | None = None
    error: str | None = None
