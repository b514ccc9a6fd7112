"""Merge the code host and deployment pipelines into one outcome per branch.

Deployments may be recorded against the branch name or against a commit SHA;
some setups never create a deployment record at all and only report a
workflow run or a commit status. :meth:`DeploymentMonitor.check_branch` walks
these sources in a fixed order and reports the first conclusive answer.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TypeVar

from arena.exceptions import CodeHostError
from arena.github_client import CodeHostClient, CommitStatus, DeploymentStatus, WorkflowRun
from arena.logging import get_logger
from arena.types import DeploymentOutcome

logger = get_logger(__name__)

T = TypeVar("T")

# Hosts serving a deployed preview directly (as opposed to a dashboard page)
DIRECT_PREVIEW_HOSTS: tuple[str, ...] = ("vercel.app", "vercel.sh")

# Commit status contexts that may carry a preview link
PREVIEW_STATUS_CONTEXTS: tuple[str, ...] = ("vercel", "preview")

_DEPLOYMENT_STATE_OUTCOMES: dict[str, DeploymentOutcome] = {
    "success": DeploymentOutcome.SUCCESS,
    "failure": DeploymentOutcome.FAILURE,
    "error": DeploymentOutcome.FAILURE,
}


@dataclass(frozen=True)
class DeploymentCheck:
    """Result of checking one branch.

    Attributes:
        status: Merged deployment outcome.
        preview_url: Best URL found for the deployment. It may be a direct
            preview address or a dashboard page; see :func:`is_direct_preview_url`.
        workflow_run_id: Id of the newest workflow run, if any was consulted.
        deployment_id: Id of the deployment record, if one was found.
    """

    status: DeploymentOutcome
    preview_url: str | None = None
    workflow_run_id: int | None = None
    deployment_id: int | None = None


def is_direct_preview_url(url: str | None) -> bool:
    """Whether ``url`` points at a deployed preview rather than a dashboard."""
    if not url:
        return False
    return any(host in url for host in DIRECT_PREVIEW_HOSTS)


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return datetime.min.replace(tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=UTC)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def latest_deployment_status(statuses: Iterable[DeploymentStatus]) -> DeploymentStatus | None:
    """Pick the status record with the greatest ``created_at``.

    The host returns statuses oldest first, but no order is assumed. Records
    without a parseable timestamp sort before all others; among equal
    timestamps the first one seen wins.

    Returns:
        The most recent status, or None when there are none.
    """
    latest: DeploymentStatus | None = None
    latest_at = datetime.min.replace(tzinfo=UTC)
    for status in statuses:
        created_at = _parse_timestamp(status.created_at)
        if latest is None or created_at > latest_at:
            latest, latest_at = status, created_at
    return latest


def find_preview_url(statuses: Iterable[CommitStatus]) -> str | None:
    """Scan commit statuses for a preview link.

    A status qualifies when its context mentions a preview provider or its
    target URL is on a direct preview host. The first direct preview URL wins
    outright; otherwise the first qualifying (dashboard) URL is returned.
    """
    dashboard_url: str | None = None
    for status in statuses:
        url = status.target_url
        if not url:
            continue
        context = status.context.lower()
        direct = is_direct_preview_url(url)
        if not direct and not any(name in context for name in PREVIEW_STATUS_CONTEXTS):
            continue
        if direct:
            return url
        if dashboard_url is None:
            dashboard_url = url
    return dashboard_url


def outcome_for_deployment_state(state: str) -> DeploymentOutcome:
    """Map a GitHub deployment status state to an outcome; unknown states are pending."""
    return _DEPLOYMENT_STATE_OUTCOMES.get(state.lower(), DeploymentOutcome.PENDING)


class DeploymentMonitor:
    """Determine the deployment outcome of an agent's branch."""

    def __init__(self, client: CodeHostClient) -> None:
        self._client = client

    def check_branch(self, owner: str, repo: str, branch: str) -> DeploymentCheck:
        """Check a branch's deployment state.

        Args:
            owner: Repository owner.
            repo: Repository name.
            branch: Branch the agent pushes to.

        Returns:
            The merged :class:`DeploymentCheck`.

        Raises:
            CodeHostError: If the branch lookup itself fails. Failures of the
                later lookups are logged and treated as "nothing found".
        """
        location = f"{owner}/{repo}@{branch}"
        head_sha = self._client.get_branch_head_sha(owner, repo, branch)
        if head_sha is None:
            logger.debug("Branch %s not found", location)
            return DeploymentCheck(status=DeploymentOutcome.NOT_FOUND)

        runs = self._lookup(
            f"workflow runs for {location}",
            lambda: self._client.list_workflow_runs(owner, repo, branch),
            [],
        )
        latest_run: WorkflowRun | None = runs[0] if runs else None
        if latest_run is not None:
            logger.debug(
                "Workflow run #%s for %s: status=%s, conclusion=%s",
                latest_run.id,
                location,
                latest_run.status,
                latest_run.conclusion or "none",
            )

        deployments = self._lookup(
            f"deployments for {location}",
            lambda: self._client.list_deployments(owner, repo, branch),
            [],
        )
        sha_to_try = (latest_run.head_sha if latest_run else None) or head_sha
        if not deployments and sha_to_try:
            deployments = self._lookup(
                f"deployments for {owner}/{repo}@{sha_to_try[:7]}",
                lambda: self._client.list_deployments(owner, repo, sha_to_try),
                [],
            )

        if not deployments:
            return self._check_without_deployment(owner, repo, branch, head_sha, latest_run)

        deployment = deployments[0]
        run_id = latest_run.id if latest_run else None
        statuses = self._lookup(
            f"statuses of deployment {deployment.id}",
            lambda: self._client.list_deployment_statuses(owner, repo, deployment.id),
            [],
        )
        latest_status = latest_deployment_status(statuses)
        if latest_status is None:
            logger.debug("Deployment #%s for %s has no status yet", deployment.id, location)
            return DeploymentCheck(
                status=DeploymentOutcome.PENDING,
                workflow_run_id=run_id,
                deployment_id=deployment.id,
            )

        logger.debug(
            "Deployment #%s for %s: state=%s, url=%s",
            deployment.id,
            location,
            latest_status.state,
            latest_status.environment_url or "none",
        )
        return DeploymentCheck(
            status=outcome_for_deployment_state(latest_status.state),
            preview_url=latest_status.environment_url,
            workflow_run_id=run_id,
            deployment_id=deployment.id,
        )

    def _check_without_deployment(
        self,
        owner: str,
        repo: str,
        branch: str,
        head_sha: str,
        latest_run: WorkflowRun | None,
    ) -> DeploymentCheck:
        if latest_run is None:
            # No CI at all: a native integration may still report through commit statuses
            if head_sha:
                url = self._preview_url_from_commit_statuses(owner, repo, head_sha)
                if url:
                    return DeploymentCheck(status=DeploymentOutcome.SUCCESS, preview_url=url)
            return DeploymentCheck(status=DeploymentOutcome.NOT_FOUND)

        if latest_run.status == "completed" and latest_run.conclusion == "failure":
            return DeploymentCheck(
                status=DeploymentOutcome.FAILURE, workflow_run_id=latest_run.id
            )

        if latest_run.status == "completed" and latest_run.conclusion == "success":
            url = self._preview_url_from_commit_statuses(
                owner, repo, latest_run.head_sha or branch
            )
            return DeploymentCheck(
                status=DeploymentOutcome.SUCCESS,
                preview_url=url,
                workflow_run_id=latest_run.id,
            )

        return DeploymentCheck(status=DeploymentOutcome.PENDING, workflow_run_id=latest_run.id)

    def _preview_url_from_commit_statuses(self, owner: str, repo: str, ref: str) -> str | None:
        statuses = self._lookup(
            f"commit statuses for {owner}/{repo}@{ref}",
            lambda: self._client.list_commit_statuses(owner, repo, ref),
            [],
        )
        return find_preview_url(statuses)

    @staticmethod
    def _lookup(description: str, fetch: Callable[[], T], default: T) -> T:
        try:
            return fetch()
        except CodeHostError as e:
            logger.warning("Failed to get %s: %s", description, e)
            return default
