"""Tests for the shared HTTP plumbing and the Warp and GitHub REST clients."""

from __future__ import annotations

import json
from collections.abc import Callable
from unittest.mock import patch

import httpx
import pytest

from arena.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from arena.exceptions import CodeHostError, ExecutionClientError
from arena.github_client import GitHubRestClient
from arena.http_client import (
    RetryConfig,
    _calculate_backoff_delay,
    _get_retry_after,
    _is_retryable,
)
from arena.warp_client import RunConfig, WarpRestClient

NO_RETRY = RetryConfig(max_retries=0)

Handler = Callable[[httpx.Request], httpx.Response]


def recording(handler: Handler) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def wrapped(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return httpx.MockTransport(wrapped), requests


def warp(handler: Handler, **kwargs: object) -> tuple[WarpRestClient, list[httpx.Request]]:
    transport, requests = recording(handler)
    kwargs.setdefault("retry_config", NO_RETRY)
    client = WarpRestClient(
        api_key="k", base_url="https://warp.test/api/v1", transport=transport, **kwargs  # type: ignore[arg-type]
    )
    return client, requests


def github(handler: Handler) -> tuple[GitHubRestClient, list[httpx.Request]]:
    transport, requests = recording(handler)
    client = GitHubRestClient(
        token="t", base_url="https://gh.test", retry_config=NO_RETRY, transport=transport
    )
    return client, requests


class TestRetryHelpers:
    def test_exponential_backoff(self) -> None:
        config = RetryConfig(initial_delay=1.0, jitter_min=1.0, jitter_max=1.0)
        assert _calculate_backoff_delay(0, config) == 1.0
        assert _calculate_backoff_delay(1, config) == 2.0
        assert _calculate_backoff_delay(2, config) == 4.0

    def test_backoff_respects_max_delay(self) -> None:
        config = RetryConfig(initial_delay=1.0, max_delay=5.0, jitter_min=1.0, jitter_max=1.0)
        assert _calculate_backoff_delay(10, config) == 5.0

    def test_backoff_uses_retry_after(self) -> None:
        config = RetryConfig(jitter_min=1.0, jitter_max=1.0)
        assert _calculate_backoff_delay(0, config, retry_after=7.0) == 7.0

    def test_retry_after_header(self) -> None:
        response = httpx.Response(429, headers={"Retry-After": "12"})
        assert _get_retry_after(response) == 12.0

    def test_retry_after_missing(self) -> None:
        assert _get_retry_after(httpx.Response(429)) is None

    @pytest.mark.parametrize(
        ("status", "headers", "expected"),
        [
            (429, {}, True),
            (500, {}, True),
            (503, {}, True),
            (403, {"X-RateLimit-Remaining": "0"}, True),
            (403, {"X-RateLimit-Remaining": "12"}, False),
            (403, {}, False),
            (404, {}, False),
            (422, {}, False),
        ],
    )
    def test_is_retryable(self, status: int, headers: dict[str, str], expected: bool) -> None:
        assert _is_retryable(httpx.Response(status, headers=headers)) is expected


class TestWarpRestClient:
    def test_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match="WARP_API_KEY"):
            WarpRestClient(api_key="")

    def test_run_agent_posts_prompt_and_config(self) -> None:
        client, requests = warp(
            lambda request: httpx.Response(200, json={"run_id": "r-1", "state": "QUEUED"})
        )

        handle = client.run_agent(
            "do it", "Arena: x (Agent 1/2)", RunConfig(name="arena-j", model_id="m", environment_id="env")
        )

        assert handle.run_id == "r-1"
        assert handle.state == "QUEUED"
        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/v1/agent/run"
        assert request.headers["Authorization"] == "Bearer k"
        body = json.loads(request.content)
        assert body == {
            "prompt": "do it",
            "title": "Arena: x (Agent 1/2)",
            "config": {"name": "arena-j", "model_id": "m", "environment_id": "env"},
        }

    def test_run_config_omits_missing_environment(self) -> None:
        assert RunConfig(name="n", model_id="m").to_payload() == {"name": "n", "model_id": "m"}

    def test_get_run_parses_fields(self) -> None:
        client, requests = warp(
            lambda request: httpx.Response(
                200,
                json={
                    "run_id": "r-1",
                    "state": "FAILED",
                    "session_link": "https://app.warp.dev/session/r-1",
                    "status_message": {"message": "out of credits"},
                },
            )
        )

        run = client.get_run("r-1")

        assert requests[0].url.path == "/api/v1/agent/runs/r-1"
        assert run.state == "FAILED"
        assert run.session_link == "https://app.warp.dev/session/r-1"
        assert run.status_message == "out of credits"

    def test_list_runs_pagination(self) -> None:
        client, requests = warp(
            lambda request: httpx.Response(
                200,
                json={
                    "runs": [{"run_id": "a", "state": "INPROGRESS"}],
                    "page_info": {"has_next_page": True, "next_cursor": "c2"},
                },
            )
        )

        page = client.list_runs(limit=5, states=["INPROGRESS", "QUEUED"])

        assert [run.run_id for run in page.runs] == ["a"]
        assert page.next_cursor == "c2"
        params = requests[0].url.params
        assert params["limit"] == "5"
        assert params.get_list("state") == ["INPROGRESS", "QUEUED"]

    def test_server_error_raises_execution_client_error(self) -> None:
        client, _ = warp(lambda request: httpx.Response(500, json={"message": "boom"}))

        with pytest.raises(ExecutionClientError, match="status 500: boom"):
            client.get_run("r-1")

    def test_transport_error_wrapped(self) -> None:
        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client, _ = warp(fail)
        with pytest.raises(ExecutionClientError, match="request failed"):
            client.get_run("r-1")

    def test_retries_rate_limit_then_succeeds(self) -> None:
        responses = iter(
            [
                httpx.Response(429, headers={"Retry-After": "1"}),
                httpx.Response(200, json={"run_id": "r-1", "state": "QUEUED"}),
            ]
        )
        client, requests = warp(
            lambda request: next(responses),
            retry_config=RetryConfig(max_retries=2, jitter_min=1.0, jitter_max=1.0),
        )

        with patch("arena.http_client.time.sleep") as sleep:
            run = client.get_run("r-1")

        assert run.state == "QUEUED"
        assert len(requests) == 2
        sleep.assert_called_once_with(1.0)

    def test_open_circuit_fails_fast(self) -> None:
        breaker = CircuitBreaker(
            "warp", config=CircuitBreakerConfig(failure_threshold=2, recovery_timeout=60.0)
        )
        client, requests = warp(lambda request: httpx.Response(503), circuit_breaker=breaker)

        for _ in range(2):
            with pytest.raises(ExecutionClientError):
                client.get_run("r-1")
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(ExecutionClientError, match="circuit breaker is open"):
            client.get_run("r-1")
        assert len(requests) == 2

    def test_client_errors_do_not_trip_breaker(self) -> None:
        breaker = CircuitBreaker("warp", config=CircuitBreakerConfig(failure_threshold=1))
        client, _ = warp(lambda request: httpx.Response(400), circuit_breaker=breaker)

        with pytest.raises(ExecutionClientError):
            client.get_run("r-1")

        assert breaker.state == CircuitState.CLOSED


class TestGitHubRestClient:
    def test_branch_head_sha(self) -> None:
        client, requests = github(
            lambda request: httpx.Response(200, json={"commit": {"sha": "abc123"}})
        )

        assert client.get_branch_head_sha("acme", "shop", "arena-j-1") == "abc123"
        assert requests[0].url.path == "/repos/acme/shop/branches/arena-j-1"
        assert requests[0].headers["Authorization"] == "Bearer t"

    def test_missing_branch_is_none(self) -> None:
        client, _ = github(lambda request: httpx.Response(404, json={"message": "Branch not found"}))
        assert client.get_branch_head_sha("acme", "shop", "arena-j-1") is None

    def test_branch_without_sha_is_empty_string(self) -> None:
        client, _ = github(lambda request: httpx.Response(200, json={"name": "b"}))
        assert client.get_branch_head_sha("acme", "shop", "b") == ""

    def test_branch_name_is_quoted(self) -> None:
        client, requests = github(lambda request: httpx.Response(404))
        client.get_branch_head_sha("acme", "shop", "feature/x")
        assert requests[0].url.raw_path.decode().endswith("/branches/feature%2Fx")

    def test_branch_lookup_server_error_raises(self) -> None:
        client, _ = github(lambda request: httpx.Response(502))
        with pytest.raises(CodeHostError):
            client.get_branch_head_sha("acme", "shop", "b")

    def test_list_workflow_runs(self) -> None:
        client, requests = github(
            lambda request: httpx.Response(
                200,
                json={
                    "workflow_runs": [
                        {"id": 3, "status": "completed", "conclusion": "success", "head_sha": "s1"}
                    ]
                },
            )
        )

        runs = client.list_workflow_runs("acme", "shop", "arena-j-1")

        assert runs[0].id == 3
        assert runs[0].conclusion == "success"
        assert requests[0].url.params["branch"] == "arena-j-1"

    def test_list_deployments_and_statuses(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/statuses"):
                return httpx.Response(
                    200,
                    json=[
                        {
                            "state": "success",
                            "created_at": "2026-01-01T00:00:00Z",
                            "environment_url": "https://x.vercel.app",
                        }
                    ],
                )
            return httpx.Response(200, json=[{"id": 42, "environment": "Preview", "sha": "s"}])

        client, requests = github(handler)

        deployments = client.list_deployments("acme", "shop", "arena-j-1")
        statuses = client.list_deployment_statuses("acme", "shop", deployments[0].id)

        assert deployments[0].id == 42
        assert requests[0].url.params["ref"] == "arena-j-1"
        assert statuses[0].environment_url == "https://x.vercel.app"
        assert requests[1].url.path == "/repos/acme/shop/deployments/42/statuses"

    def test_list_commit_statuses(self) -> None:
        client, _ = github(
            lambda request: httpx.Response(
                200,
                json={
                    "statuses": [
                        {"context": "Vercel", "state": "success", "target_url": "https://v.app"}
                    ]
                },
            )
        )

        statuses = client.list_commit_statuses("acme", "shop", "abc")

        assert statuses[0].context == "Vercel"
        assert statuses[0].target_url == "https://v.app"

    def test_create_pull_request_uses_default_branch(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"default_branch": "trunk"})
            return httpx.Response(
                201,
                json={"number": 12, "html_url": "https://github.com/acme/shop/pull/12", "draft": True},
            )

        client, requests = github(handler)

        pull = client.create_pull_request(
            "acme", "shop", head="arena-j-1", title="T (agent_alpha)", body="B", draft=True
        )

        assert pull.number == 12
        assert pull.draft is True
        payload = json.loads(requests[1].content)
        assert payload == {
            "title": "T (agent_alpha)",
            "head": "arena-j-1",
            "base": "trunk",
            "draft": True,
            "body": "B",
        }

    def test_find_pull_request(self) -> None:
        client, requests = github(
            lambda request: httpx.Response(
                200, json=[{"number": 5, "html_url": "https://github.com/acme/shop/pull/5"}]
            )
        )

        pull = client.find_pull_request("acme", "shop", "arena-j-1")

        assert pull is not None
        assert pull.number == 5
        assert requests[0].url.params["head"] == "acme:arena-j-1"

    def test_find_pull_request_none(self) -> None:
        client, _ = github(lambda request: httpx.Response(200, json=[]))
        assert client.find_pull_request("acme", "shop", "arena-j-1") is None

    def test_create_issue_comment(self) -> None:
        client, requests = github(
            lambda request: httpx.Response(
                201, json={"id": 9, "html_url": "https://github.com/acme/shop/issues/42#c9"}
            )
        )

        url = client.create_issue_comment("acme", "shop", 42, "Arena is on it!")

        assert url == "https://github.com/acme/shop/issues/42#c9"
        assert requests[0].method == "POST"
        assert requests[0].url.path == "/repos/acme/shop/issues/42/comments"
        assert json.loads(requests[0].content) == {"body": "Arena is on it!"}

    def test_create_issue_comment_failure(self) -> None:
        client, _ = github(lambda request: httpx.Response(403, json={"message": "Forbidden"}))
        with pytest.raises(CodeHostError):
            client.create_issue_comment("acme", "shop", 42, "hi")

    def test_context_manager_closes_client(self) -> None:
        client, _ = github(lambda request: httpx.Response(200, json=[]))
        with client:
            client.find_pull_request("acme", "shop", "b")
            assert client._client is not None
        assert client._client is None
