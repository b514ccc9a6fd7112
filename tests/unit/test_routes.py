"""Tests for the job API routes and health probes."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from arena.api import create_app
from arena.api.routes import pull_request_body, pull_request_title
from arena.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from arena.github_client import PullRequest
from arena.spawner import JobSpawner
from arena.store import JobStore
from arena.types import AgentStatus, JobStatus
from tests.helpers import make_job
from tests.mocks import MockCodeHostClient, MockExecutionClient

JOB_ID = "job12345"

VALID_JOB: dict[str, Any] = {
    "repo_name": "acme/shop",
    "issue_title": "Add dark mode",
    "issue_description": "Users want a dark theme.",
    "issue_id": 7,
}


@pytest.fixture
def client(
    store: JobStore,
    execution_client: MockExecutionClient,
    code_host_client: MockCodeHostClient,
) -> TestClient:
    spawner = JobSpawner(store, execution_client, arena_ui_url="http://arena.test")
    app = create_app(store, spawner, code_host_client=code_host_client)
    return TestClient(app)


def review_job(store: JobStore, ready: tuple[str, ...] = ("run-1",), **kwargs: Any) -> None:
    kwargs.setdefault("status", JobStatus.REVIEW_NEEDED)
    store.create_job(make_job(agent_count=3, **kwargs))
    for run_id in ready:
        store.update_agent(JOB_ID, run_id, status=AgentStatus.READY)


class TestCreateJob:
    def test_create_job(self, client: TestClient, store: JobStore) -> None:
        response = client.post(
            "/api/jobs",
            json={**VALID_JOB, "agent_configs": [{"count": 2, "model_id": "gpt-5"}]},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["arena_url"] == f"http://arena.test/jobs/{data['job_id']}"
        assert len(data["session_links"]) == 2
        job = store.get_job(data["job_id"])
        assert job is not None
        assert job.issue_id == 7
        assert [agent.model_id for agent in job.agents] == ["gpt-5", "gpt-5"]

    def test_missing_fields(self, client: TestClient) -> None:
        response = client.post("/api/jobs", json={"repo_name": "acme/shop"})

        assert response.status_code == 400
        assert "Missing required fields" in response.json()["detail"]

    def test_too_many_agents(self, client: TestClient) -> None:
        response = client.post(
            "/api/jobs",
            json={**VALID_JOB, "agent_configs": [{"count": 10}, {"count": 1}]},
        )

        assert response.status_code == 400
        assert "Total agents" in response.json()["detail"]

    def test_unconfigured_backend(self, store: JobStore) -> None:
        app = create_app(store, JobSpawner(store, None))

        response = TestClient(app).post("/api/jobs", json=VALID_JOB)

        assert response.status_code == 503
        assert "WARP_API_KEY" in response.json()["detail"]

    def test_all_agents_failing(
        self, client: TestClient, execution_client: MockExecutionClient
    ) -> None:
        execution_client.fail_run_agent_calls.add(1)

        response = client.post("/api/jobs", json=VALID_JOB)

        assert response.status_code == 502
        assert response.json()["detail"].startswith("Failed to spawn agents")


class TestReadJobs:
    def test_list_jobs(self, client: TestClient, store: JobStore) -> None:
        store.create_job(make_job())

        response = client.get("/api/jobs")

        assert response.status_code == 200
        [summary] = response.json()
        assert summary["id"] == JOB_ID
        assert summary["status"] == "processing"
        assert summary["repo_name"] == "acme/shop"
        assert "agents" not in summary

    def test_get_job(self, client: TestClient, store: JobStore) -> None:
        store.create_job(make_job(agent_count=2))

        response = client.get(f"/api/jobs/{JOB_ID}")

        assert response.status_code == 200
        data = response.json()
        assert data["github_repo_owner"] == "acme"
        assert data["winner_agent_ids"] == []
        assert [agent["id"] for agent in data["agents"]] == ["agent_alpha", "agent_beta"]
        first = data["agents"][0]
        assert first["status"] == "initializing"
        assert first["branch_name"] == "arena-job12345-1"
        assert first["terminal_logs"] == ["Agent started...", "Connecting to Warp..."]
        assert first["verification"] is None

    def test_unknown_job(self, client: TestClient) -> None:
        response = client.get("/api/jobs/nope")

        assert response.status_code == 404
        assert response.json()["detail"] == "Job not found"


class TestSelectWinner:
    def test_select_ready_agent(self, client: TestClient, store: JobStore) -> None:
        review_job(store)

        response = client.post(f"/api/jobs/{JOB_ID}/select", json={"winner_agent_id": "agent_alpha"})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "status": "completed"}
        job = store.get_job(JOB_ID)
        assert job is not None
        assert job.winner_agent_ids == ["agent_alpha"]

    def test_winner_required(self, client: TestClient, store: JobStore) -> None:
        review_job(store)
        response = client.post(f"/api/jobs/{JOB_ID}/select", json={})
        assert response.status_code == 400
        assert response.json()["detail"] == "winner_agent_id required"

    def test_not_ready_agent(self, client: TestClient, store: JobStore) -> None:
        review_job(store)

        response = client.post(f"/api/jobs/{JOB_ID}/select", json={"winner_agent_id": "agent_beta"})

        assert response.status_code == 400
        assert "not ready" in response.json()["detail"]

    def test_unknown_job(self, client: TestClient) -> None:
        response = client.post("/api/jobs/nope/select", json={"winner_agent_id": "agent_alpha"})
        assert response.status_code == 404

    def test_completed_job(self, client: TestClient, store: JobStore) -> None:
        review_job(store)
        client.post(f"/api/jobs/{JOB_ID}/select", json={"winner_agent_id": "agent_alpha"})

        response = client.post(f"/api/jobs/{JOB_ID}/select", json={"winner_agent_id": "agent_alpha"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Job is already completed"


class TestCreatePullRequests:
    def test_single_agent_opens_ready_pull_request(
        self, client: TestClient, store: JobStore, code_host_client: MockCodeHostClient
    ) -> None:
        review_job(store)

        response = client.post(f"/api/jobs/{JOB_ID}/create-prs", json={"agent_ids": ["agent_alpha"]})

        assert response.status_code == 200
        assert response.json() == {
            "prs": [
                {
                    "agent_id": "agent_alpha",
                    "html_url": "https://github.com/acme/shop/pull/1",
                    "number": 1,
                    "draft": False,
                }
            ]
        }
        [created] = code_host_client.created_pull_requests
        assert created["head"] == "arena-job12345-1"
        assert created["title"] == "Add dark mode (agent_alpha)"
        assert created["body"] == "Addresses: Users want a dark theme.\n\nGenerated by Arena."
        job = store.get_job(JOB_ID)
        assert job is not None
        assert job.status == JobStatus.COMPLETED
        assert job.winner_agent_ids == ["agent_alpha"]

    def test_several_agents_open_drafts(
        self, client: TestClient, store: JobStore, code_host_client: MockCodeHostClient
    ) -> None:
        review_job(store, ready=("run-1", "run-3"))

        response = client.post(
            f"/api/jobs/{JOB_ID}/create-prs", json={"agent_ids": ["agent_alpha", "agent_gamma"]}
        )

        assert response.status_code == 200
        assert [pr["draft"] for pr in response.json()["prs"]] == [True, True]
        assert [pr["head"] for pr in code_host_client.created_pull_requests] == [
            "arena-job12345-1",
            "arena-job12345-3",
        ]

    def test_existing_pull_request_is_reused(
        self, client: TestClient, store: JobStore, code_host_client: MockCodeHostClient
    ) -> None:
        review_job(store)
        code_host_client.pull_requests["arena-job12345-1"] = PullRequest(
            number=99, html_url="https://github.com/acme/shop/pull/99"
        )

        response = client.post(f"/api/jobs/{JOB_ID}/create-prs", json={"agent_ids": ["agent_alpha"]})

        assert response.status_code == 200
        assert response.json()["prs"][0]["number"] == 99
        assert code_host_client.created_pull_requests == []

    def test_agent_ids_required(self, client: TestClient, store: JobStore) -> None:
        review_job(store)
        response = client.post(f"/api/jobs/{JOB_ID}/create-prs", json={"agent_ids": []})
        assert response.status_code == 400

    def test_unknown_job(self, client: TestClient) -> None:
        response = client.post("/api/jobs/nope/create-prs", json={"agent_ids": ["agent_alpha"]})
        assert response.status_code == 404

    def test_job_without_repository(self, client: TestClient, store: JobStore) -> None:
        review_job(store, owner=None, repo=None)

        response = client.post(f"/api/jobs/{JOB_ID}/create-prs", json={"agent_ids": ["agent_alpha"]})

        assert response.status_code == 400
        assert "no GitHub repo" in response.json()["detail"]

    def test_not_ready_agents_listed(self, client: TestClient, store: JobStore) -> None:
        review_job(store)

        response = client.post(
            f"/api/jobs/{JOB_ID}/create-prs",
            json={"agent_ids": ["agent_alpha", "agent_beta", "agent_zeta"]},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid or not-ready agents: agent_beta, agent_zeta"

    def test_completed_job_refused(self, client: TestClient, store: JobStore) -> None:
        review_job(store)
        store.select_winners(JOB_ID, ["agent_alpha"])

        response = client.post(f"/api/jobs/{JOB_ID}/create-prs", json={"agent_ids": ["agent_alpha"]})

        assert response.status_code == 400
        assert response.json()["detail"] == "Job is already completed"

    def test_no_code_host_client(self, store: JobStore, execution_client: MockExecutionClient) -> None:
        review_job(store)
        app = create_app(store, JobSpawner(store, execution_client))

        response = TestClient(app).post(
            f"/api/jobs/{JOB_ID}/create-prs", json={"agent_ids": ["agent_alpha"]}
        )

        assert response.status_code == 503

    def test_code_host_failure(
        self, client: TestClient, store: JobStore, code_host_client: MockCodeHostClient
    ) -> None:
        review_job(store)
        code_host_client.failing_methods.add("create_pull_request")

        response = client.post(f"/api/jobs/{JOB_ID}/create-prs", json={"agent_ids": ["agent_alpha"]})

        assert response.status_code == 502
        job = store.get_job(JOB_ID)
        assert job is not None
        assert job.status == JobStatus.REVIEW_NEEDED


class TestPullRequestText:
    def test_title_and_body(self) -> None:
        job = make_job()
        assert pull_request_title(job, job.agents[0]) == "Add dark mode (agent_alpha)"
        assert pull_request_body(job) == "Addresses: Users want a dark theme.\n\nGenerated by Arena."

    def test_no_body_without_description(self) -> None:
        assert pull_request_body(make_job(issue_description="")) is None


class TestHealth:
    def test_live(self, client: TestClient) -> None:
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready_reports_open_circuit(
        self, store: JobStore, execution_client: MockExecutionClient
    ) -> None:
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1))
        registry.get("warp")
        registry.get("github").record_failure()
        app = create_app(store, JobSpawner(store, execution_client), circuit_breaker_registry=registry)

        data = TestClient(app).get("/health/ready").json()

        assert data["status"] == "degraded"
        assert data["checks"]["github"]["state"] == "open"
        assert data["checks"]["warp"]["state"] == "closed"

    def test_ready_without_registry(self, client: TestClient) -> None:
        data = client.get("/health/ready").json()
        assert data["status"] == "healthy"
        assert data["checks"] == {}
