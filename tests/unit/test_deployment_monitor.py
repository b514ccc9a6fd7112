"""Tests for merging code host and deployment signals per branch."""

from __future__ import annotations

import pytest

from arena.deployment_monitor import (
    DeploymentMonitor,
    find_preview_url,
    is_direct_preview_url,
    latest_deployment_status,
    outcome_for_deployment_state,
)
from arena.exceptions import CodeHostError
from arena.github_client import CommitStatus, Deployment, DeploymentStatus, WorkflowRun
from arena.types import DeploymentOutcome
from tests.mocks import MockCodeHostClient

BRANCH = "arena-job1-1"


class TestHelpers:
    def test_direct_preview_hosts(self) -> None:
        assert is_direct_preview_url("https://shop-git-x.vercel.app")
        assert is_direct_preview_url("https://shop-abc.vercel.sh/path")
        assert not is_direct_preview_url("https://vercel.com/acme/shop/abc123")
        assert not is_direct_preview_url(None)

    def test_latest_status_uses_max_created_at(self) -> None:
        statuses = [
            DeploymentStatus(state="in_progress", created_at="2026-01-01T10:00:00Z"),
            DeploymentStatus(state="success", created_at="2026-01-01T10:05:00Z"),
            DeploymentStatus(state="pending", created_at="2026-01-01T09:00:00Z"),
        ]
        latest = latest_deployment_status(statuses)
        assert latest is not None
        assert latest.state == "success"

    def test_latest_status_ignores_unparseable_timestamps(self) -> None:
        statuses = [
            DeploymentStatus(state="success", created_at="2026-01-01T10:00:00+00:00"),
            DeploymentStatus(state="error", created_at="garbage"),
        ]
        latest = latest_deployment_status(statuses)
        assert latest is not None
        assert latest.state == "success"

    def test_latest_status_of_nothing(self) -> None:
        assert latest_deployment_status([]) is None

    def test_find_preview_url_prefers_direct_url(self) -> None:
        statuses = [
            CommitStatus(context="Vercel", state="success", target_url="https://vercel.com/a/b/c"),
            CommitStatus(context="ci/build", state="success", target_url="https://ci.example"),
            CommitStatus(context="deploy", state="success", target_url="https://b-x.vercel.app"),
        ]
        assert find_preview_url(statuses) == "https://b-x.vercel.app"

    def test_find_preview_url_falls_back_to_dashboard(self) -> None:
        statuses = [
            CommitStatus(context="ci/build", state="success", target_url="https://ci.example"),
            CommitStatus(context="Vercel Preview", state="success", target_url="https://vercel.com/a/b/c"),
        ]
        assert find_preview_url(statuses) == "https://vercel.com/a/b/c"

    def test_find_preview_url_none(self) -> None:
        statuses = [CommitStatus(context="ci/build", state="success", target_url=None)]
        assert find_preview_url(statuses) is None

    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            ("success", DeploymentOutcome.SUCCESS),
            ("failure", DeploymentOutcome.FAILURE),
            ("error", DeploymentOutcome.FAILURE),
            ("in_progress", DeploymentOutcome.PENDING),
            ("queued", DeploymentOutcome.PENDING),
            ("inactive", DeploymentOutcome.PENDING),
        ],
    )
    def test_outcome_for_deployment_state(self, state: str, expected: DeploymentOutcome) -> None:
        assert outcome_for_deployment_state(state) == expected


class TestCheckBranch:
    def test_missing_branch_is_not_found(self) -> None:
        client = MockCodeHostClient()

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.NOT_FOUND
        assert [call[0] for call in client.calls] == ["get_branch_head_sha"]

    def test_branch_lookup_error_propagates(self) -> None:
        client = MockCodeHostClient()
        client.failing_methods.add("get_branch_head_sha")
        with pytest.raises(CodeHostError):
            DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

    def test_deployment_success_by_branch(self) -> None:
        client = MockCodeHostClient()
        deployment_id = client.set_deployed(BRANCH, "https://shop-x.vercel.app")

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.SUCCESS
        assert result.preview_url == "https://shop-x.vercel.app"
        assert result.deployment_id == deployment_id

    def test_deployment_found_by_workflow_head_sha(self) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH, "branchsha")
        client.workflow_runs[BRANCH] = [
            WorkflowRun(id=7, status="completed", conclusion="success", head_sha="runsha")
        ]
        client.deployments["runsha"] = [Deployment(id=55)]
        client.deployment_statuses[55] = [
            DeploymentStatus(state="failure", created_at="2026-01-01T00:00:00Z")
        ]

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.FAILURE
        assert result.workflow_run_id == 7
        assert result.deployment_id == 55

    def test_deployment_found_by_branch_head_sha_without_runs(self) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH, "branchsha")
        client.deployments["branchsha"] = [Deployment(id=56)]
        client.deployment_statuses[56] = [
            DeploymentStatus(state="in_progress", created_at="2026-01-01T00:00:00Z")
        ]

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.PENDING
        assert result.deployment_id == 56

    def test_deployment_without_statuses_is_pending(self) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH)
        client.deployments[BRANCH] = [Deployment(id=57)]

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.PENDING

    def test_latest_of_unordered_statuses_wins(self) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH)
        client.deployments[BRANCH] = [Deployment(id=58)]
        client.deployment_statuses[58] = [
            DeploymentStatus(
                state="success",
                created_at="2026-01-01T10:05:00Z",
                environment_url="https://new.vercel.app",
            ),
            DeploymentStatus(state="in_progress", created_at="2026-01-01T10:00:00Z"),
        ]

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.SUCCESS
        assert result.preview_url == "https://new.vercel.app"

    def test_no_runs_no_deployments_uses_commit_statuses(self) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH, "headsha")
        client.commit_statuses["headsha"] = [
            CommitStatus(context="Vercel", state="success", target_url="https://shop-p.vercel.app")
        ]

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.SUCCESS
        assert result.preview_url == "https://shop-p.vercel.app"

    def test_no_runs_no_deployments_no_statuses_is_not_found(self) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH, "headsha")

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.NOT_FOUND

    def test_failed_workflow_without_deployment(self) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH)
        client.workflow_runs[BRANCH] = [WorkflowRun(id=9, status="completed", conclusion="failure")]

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.FAILURE
        assert result.workflow_run_id == 9

    def test_successful_workflow_reads_preview_from_commit_statuses(self) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH)
        client.workflow_runs[BRANCH] = [
            WorkflowRun(id=10, status="completed", conclusion="success", head_sha="runsha")
        ]
        client.commit_statuses["runsha"] = [
            CommitStatus(context="vercel", state="success", target_url="https://vercel.com/a/b/dpl1")
        ]

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.SUCCESS
        assert result.preview_url == "https://vercel.com/a/b/dpl1"

    def test_running_workflow_is_pending(self) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH)
        client.workflow_runs[BRANCH] = [WorkflowRun(id=11, status="in_progress", conclusion=None)]

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.PENDING

    def test_secondary_lookup_failure_is_tolerated(self, caplog: pytest.LogCaptureFixture) -> None:
        client = MockCodeHostClient()
        client.set_pushed(BRANCH)
        client.failing_methods.add("list_workflow_runs")
        client.deployments[BRANCH] = [Deployment(id=59)]
        client.deployment_statuses[59] = [
            DeploymentStatus(state="success", created_at="2026-01-01T00:00:00Z")
        ]

        result = DeploymentMonitor(client).check_branch("acme", "shop", BRANCH)

        assert result.status == DeploymentOutcome.SUCCESS
        assert result.workflow_run_id is None
        assert "Failed to get workflow runs" in caplog.text
