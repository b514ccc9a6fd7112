"""Execution backend client for Warp Oz agent runs.

The abstract :class:`ExecutionClient` is what the spawner and the orchestrator
depend on; :class:`WarpRestClient` implements it over the Oz REST API
(https://app.warp.dev/api/v1).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from arena.circuit_breaker import CircuitBreaker
from arena.config import DEFAULT_WARP_API_URL
from arena.exceptions import ExecutionClientError
from arena.http_client import DEFAULT_TIMEOUT, BaseHttpClient, RetryConfig
from arena.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RunConfig:
    """Agent configuration sent along with a run request."""

    name: str
    model_id: str
    environment_id: str | None = None

    def to_payload(self) -> dict[str, str]:
        payload = {"name": self.name, "model_id": self.model_id}
        if self.environment_id:
            payload["environment_id"] = self.environment_id
        return payload


@dataclass(frozen=True)
class RunHandle:
    """Identifier and initial state returned when a run is requested."""

    run_id: str
    state: str


@dataclass(frozen=True)
class RunInfo:
    """Snapshot of a run as reported by the execution backend."""

    run_id: str
    state: str
    session_link: str | None = None
    status_message: str | None = None
    title: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RunInfo:
        status_message = data.get("status_message")
        if not isinstance(status_message, dict):
            status_message = {}
        return cls(
            run_id=str(data.get("run_id", "")),
            state=str(data.get("state", "")),
            session_link=data.get("session_link") or None,
            status_message=status_message.get("message") or None,
            title=data.get("title"),
        )


@dataclass(frozen=True)
class RunPage:
    """One page of :meth:`ExecutionClient.list_runs` results."""

    runs: list[RunInfo] = field(default_factory=list)
    next_cursor: str | None = None


class ExecutionClient(ABC):
    """Abstract interface to the remote agent execution backend."""

    @abstractmethod
    def run_agent(self, prompt: str, title: str, config: RunConfig) -> RunHandle:
        """Request a new agent run.

        Raises:
            ExecutionClientError: If the run could not be requested.
        """
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> RunInfo:
        """Fetch the current state of a run.

        Raises:
            ExecutionClientError: If the run could not be fetched.
        """
        pass

    @abstractmethod
    def list_runs(
        self,
        limit: int | None = None,
        cursor: str | None = None,
        states: list[str] | None = None,
        created_after: str | None = None,
    ) -> RunPage:
        """List runs visible to the configured API key.

        Raises:
            ExecutionClientError: If the listing fails.
        """
        pass

    def close(self) -> None:
        """Release any held resources."""


class WarpRestClient(BaseHttpClient, ExecutionClient):
    """Execution client that calls the Warp Oz agent REST API."""

    service_name = "warp"
    error_class = ExecutionClientError

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: httpx.Timeout | None = None,
        retry_config: RetryConfig | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the Warp REST client.

        Args:
            api_key: Warp API key.
            base_url: Optional API base URL. Defaults to the public Oz API.
            timeout: Optional custom timeout configuration.
            retry_config: Optional retry configuration.
            circuit_breaker: Breaker for the "warp" service.
            transport: Optional ``httpx`` transport for tests.

        Raises:
            ValueError: If ``api_key`` is empty.
        """
        if not api_key:
            raise ValueError("WARP_API_KEY is required")
        super().__init__(
            circuit_breaker=circuit_breaker, retry_config=retry_config, transport=transport
        )
        self.base_url = (base_url or DEFAULT_WARP_API_URL).rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def run_agent(self, prompt: str, title: str, config: RunConfig) -> RunHandle:
        body: dict[str, Any] = {"prompt": prompt, "config": config.to_payload()}
        if title:
            body["title"] = title
        logger.debug("Requesting run %r with config %s", title, body["config"])
        response = self._request("POST", "/agent/run", "Run agent", json=body)
        data = response.json()
        handle = RunHandle(run_id=str(data["run_id"]), state=str(data.get("state", "")))
        logger.info("Started run %s (state: %s)", handle.run_id, handle.state)
        return handle

    def get_run(self, run_id: str) -> RunInfo:
        response = self._request("GET", f"/agent/runs/{run_id}", f"Get run {run_id}")
        run = RunInfo.from_api(response.json())
        if run.state.upper() == "FAILED" and run.status_message:
            logger.info("Run %s failed: %s", run_id, run.status_message)
        return run

    def list_runs(
        self,
        limit: int | None = None,
        cursor: str | None = None,
        states: list[str] | None = None,
        created_after: str | None = None,
    ) -> RunPage:
        params: list[tuple[str, str | int]] = []
        if limit is not None:
            params.append(("limit", limit))
        if cursor:
            params.append(("cursor", cursor))
        for state in states or []:
            params.append(("state", state))
        if created_after:
            params.append(("created_after", created_after))

        response = self._request("GET", "/agent/runs", "List runs", params=params)
        data = response.json()
        page_info = data.get("page_info") or {}
        return RunPage(
            runs=[RunInfo.from_api(item) for item in data.get("runs", [])],
            next_cursor=page_info.get("next_cursor") if page_info.get("has_next_page") else None,
        )
