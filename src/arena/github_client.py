"""Code host client for GitHub branches, workflow runs, deployments and PRs.

Supports both GitHub.com and GitHub Enterprise via a configurable base URL.
Absent resources (a branch that has not been pushed yet) are reported as
``None``; transport and server failures raise :class:`CodeHostError`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from arena.circuit_breaker import CircuitBreaker
from arena.config import DEFAULT_GITHUB_API_URL
from arena.exceptions import CodeHostError
from arena.http_client import DEFAULT_TIMEOUT, BaseHttpClient, RetryConfig
from arena.logging import get_logger

logger = get_logger(__name__)

# Page size used for the "latest N" listings; only the newest entries matter.
LISTING_PAGE_SIZE = 10


@dataclass(frozen=True)
class WorkflowRun:
    """A GitHub Actions workflow run, newest first in listings."""

    id: int
    status: str | None
    conclusion: str | None
    head_sha: str | None = None
    html_url: str | None = None


@dataclass(frozen=True)
class Deployment:
    """A GitHub deployment record."""

    id: int
    environment: str | None = None
    sha: str | None = None


@dataclass(frozen=True)
class DeploymentStatus:
    """One status record of a deployment; ``created_at`` is ISO-8601."""

    state: str
    created_at: str | None = None
    environment_url: str | None = None
    log_url: str | None = None


@dataclass(frozen=True)
class CommitStatus:
    """One commit status as returned by the combined status endpoint."""

    context: str
    state: str
    target_url: str | None = None


@dataclass(frozen=True)
class PullRequest:
    """A pull request that was found or opened."""

    number: int
    html_url: str
    draft: bool = False


class CodeHostClient(ABC):
    """Abstract interface for the code host operations used by the arena."""

    @abstractmethod
    def get_branch_head_sha(self, owner: str, repo: str, branch: str) -> str | None:
        """Return the head commit SHA of a branch, or None if it does not exist."""
        pass

    @abstractmethod
    def list_workflow_runs(self, owner: str, repo: str, branch: str) -> list[WorkflowRun]:
        """List the most recent workflow runs for a branch, newest first."""
        pass

    @abstractmethod
    def list_deployments(self, owner: str, repo: str, ref: str) -> list[Deployment]:
        """List deployments whose ref matches a branch name or commit SHA, newest first."""
        pass

    @abstractmethod
    def list_deployment_statuses(
        self, owner: str, repo: str, deployment_id: int
    ) -> list[DeploymentStatus]:
        """List status records of a deployment in whatever order the host returns them."""
        pass

    @abstractmethod
    def list_commit_statuses(self, owner: str, repo: str, ref: str) -> list[CommitStatus]:
        """List the commit statuses attached to a ref."""
        pass

    @abstractmethod
    def find_pull_request(self, owner: str, repo: str, branch: str) -> PullRequest | None:
        """Return the open pull request whose head is ``branch``, if any."""
        pass

    @abstractmethod
    def create_pull_request(
        self,
        owner: str,
        repo: str,
        head: str,
        title: str,
        body: str | None = None,
        draft: bool = False,
        base: str | None = None,
    ) -> PullRequest:
        """Open a pull request from ``head`` into ``base`` (default branch if None)."""
        pass

    @abstractmethod
    def create_issue_comment(self, owner: str, repo: str, issue_number: int, body: str) -> str:
        """Comment on an issue and return the comment's URL."""
        pass

    def close(self) -> None:
        """Release any held resources."""


class GitHubRestClient(BaseHttpClient, CodeHostClient):
    """Code host client that uses direct GitHub REST API calls."""

    service_name = "github"
    error_class = CodeHostError

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: httpx.Timeout | None = None,
        retry_config: RetryConfig | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the GitHub REST client.

        Args:
            token: GitHub personal access token or app token.
            base_url: Optional custom API base URL for GitHub Enterprise.
                     Defaults to "https://api.github.com".
                     For GitHub Enterprise: "https://your-ghe-host/api/v3"
            timeout: Optional custom timeout configuration.
            retry_config: Optional retry configuration for rate limiting.
            circuit_breaker: Breaker for the "github" service.
            transport: Optional ``httpx`` transport for tests.
        """
        super().__init__(
            circuit_breaker=circuit_breaker, retry_config=retry_config, transport=transport
        )
        self.base_url = (base_url or DEFAULT_GITHUB_API_URL).rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def get_branch_head_sha(self, owner: str, repo: str, branch: str) -> str | None:
        response = self._request_optional(
            "GET",
            f"/repos/{owner}/{repo}/branches/{_quote(branch)}",
            f"Get branch {owner}/{repo}@{branch}",
        )
        if response is None:
            return None
        data: dict[str, Any] = response.json()
        commit = data.get("commit") or {}
        sha = commit.get("sha")
        # The branch exists even if the payload has no SHA; report it with an empty one
        return str(sha) if sha else ""

    def list_workflow_runs(self, owner: str, repo: str, branch: str) -> list[WorkflowRun]:
        response = self._request(
            "GET",
            f"/repos/{owner}/{repo}/actions/runs",
            f"List workflow runs for {owner}/{repo}@{branch}",
            params={"branch": branch, "per_page": LISTING_PAGE_SIZE},
        )
        return [
            WorkflowRun(
                id=int(run["id"]),
                status=run.get("status"),
                conclusion=run.get("conclusion"),
                head_sha=run.get("head_sha") or None,
                html_url=run.get("html_url"),
            )
            for run in response.json().get("workflow_runs", [])
        ]

    def list_deployments(self, owner: str, repo: str, ref: str) -> list[Deployment]:
        response = self._request(
            "GET",
            f"/repos/{owner}/{repo}/deployments",
            f"List deployments for {owner}/{repo}@{ref}",
            params={"ref": ref, "per_page": LISTING_PAGE_SIZE},
        )
        return [
            Deployment(
                id=int(item["id"]),
                environment=item.get("environment"),
                sha=item.get("sha"),
            )
            for item in response.json()
        ]

    def list_deployment_statuses(
        self, owner: str, repo: str, deployment_id: int
    ) -> list[DeploymentStatus]:
        response = self._request(
            "GET",
            f"/repos/{owner}/{repo}/deployments/{deployment_id}/statuses",
            f"List statuses of deployment {deployment_id}",
            params={"per_page": LISTING_PAGE_SIZE},
        )
        return [
            DeploymentStatus(
                state=str(item.get("state", "")),
                created_at=item.get("created_at"),
                environment_url=item.get("environment_url") or None,
                log_url=item.get("log_url") or None,
            )
            for item in response.json()
        ]

    def list_commit_statuses(self, owner: str, repo: str, ref: str) -> list[CommitStatus]:
        response = self._request(
            "GET",
            f"/repos/{owner}/{repo}/commits/{_quote(ref)}/status",
            f"Get combined status for {owner}/{repo}@{ref}",
        )
        return [
            CommitStatus(
                context=str(item.get("context") or ""),
                state=str(item.get("state", "")),
                target_url=item.get("target_url") or None,
            )
            for item in response.json().get("statuses", [])
        ]

    def find_pull_request(self, owner: str, repo: str, branch: str) -> PullRequest | None:
        response = self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls",
            f"List pull requests for {owner}/{repo}@{branch}",
            params={"head": f"{owner}:{branch}", "state": "open"},
        )
        pulls = response.json()
        if not pulls:
            return None
        pull = pulls[0]
        return PullRequest(
            number=int(pull["number"]),
            html_url=str(pull["html_url"]),
            draft=bool(pull.get("draft", False)),
        )

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        head: str,
        title: str,
        body: str | None = None,
        draft: bool = False,
        base: str | None = None,
    ) -> PullRequest:
        if base is None:
            base = self._get_default_branch(owner, repo)

        payload: dict[str, Any] = {"title": title, "head": head, "base": base, "draft": draft}
        if body:
            payload["body"] = body

        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            f"Create pull request {owner}/{repo}@{head}",
            json=payload,
        )
        data = response.json()
        pull = PullRequest(
            number=int(data["number"]),
            html_url=str(data["html_url"]),
            draft=bool(data.get("draft", draft)),
        )
        logger.info("Opened pull request %s for %s/%s@%s", pull.html_url, owner, repo, head)
        return pull

    def create_issue_comment(self, owner: str, repo: str, issue_number: int, body: str) -> str:
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            f"Comment on {owner}/{repo}#{issue_number}",
            json={"body": body},
        )
        return str(response.json().get("html_url") or "")

    def _get_default_branch(self, owner: str, repo: str) -> str:
        response = self._request("GET", f"/repos/{owner}/{repo}", f"Get repository {owner}/{repo}")
        return str(response.json().get("default_branch") or "main")


def _quote(ref: str) -> str:
    return quote(ref, safe="")
