"""Resolve deployment dashboard links to directly browsable preview URLs.

The code host often only knows the deployment host's dashboard page
(``https://vercel.com/<team>/<project>/<deployment-id>``). Reviewers need the
deployed site itself, so the resolver asks the deployment host for the
deployment and returns its canonical address once it is ready.
"""

from __future__ import annotations

import re
import threading

import httpx
from cachetools import TTLCache

from arena.circuit_breaker import CircuitBreaker
from arena.config import DEFAULT_VERCEL_API_URL
from arena.exceptions import DeploymentHostError
from arena.http_client import DEFAULT_TIMEOUT, BaseHttpClient, RetryConfig
from arena.logging import get_logger

logger = get_logger(__name__)

# https://vercel.com/<team>/<project>/<deployment-id>[/...][?...]
_DASHBOARD_URL_PATTERN = re.compile(r"vercel\.com/[^/]+/[^/]+/([^/?#]+)")

READY_STATE = "READY"

PREVIEW_CACHE_MAXSIZE = 1024


def extract_deployment_id(ref: str) -> str | None:
    """Extract the deployment identifier from a dashboard URL or a bare id.

    Args:
        ref: A dashboard URL such as
            ``https://vercel.com/acme/shop/AfgmSYjErWAnru9XiXmEwFE76xYr``,
            or a raw deployment id such as ``dpl_123``.

    Returns:
        The deployment id, or None if ``ref`` is neither.
    """
    ref = ref.strip()
    if not ref:
        return None
    match = _DASHBOARD_URL_PATTERN.search(ref)
    if match:
        return match.group(1)
    if "/" in ref or ":" in ref:
        return None
    return ref


def _canonical_url(url: str) -> str:
    return url if url.startswith("http") else f"https://{url}"


class VercelRestClient(BaseHttpClient):
    """Minimal Vercel REST client for deployment lookups."""

    service_name = "vercel"
    error_class = DeploymentHostError

    def __init__(
        self,
        token: str,
        team_id: str = "",
        base_url: str | None = None,
        timeout: httpx.Timeout | None = None,
        retry_config: RetryConfig | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(
            circuit_breaker=circuit_breaker, retry_config=retry_config, transport=transport
        )
        self.base_url = (base_url or DEFAULT_VERCEL_API_URL).rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.team_id = team_id
        self._headers = {"Authorization": f"Bearer {token}"}

    def get_deployment(self, deployment_id: str) -> dict[str, object] | None:
        """Fetch a deployment by id.

        Returns:
            The deployment payload, or None if the deployment does not exist.

        Raises:
            DeploymentHostError: If the lookup fails.
        """
        params = {"teamId": self.team_id} if self.team_id else None
        response = self._request_optional(
            "GET",
            f"/v13/deployments/{deployment_id}",
            f"Get deployment {deployment_id}",
            params=params,
        )
        if response is None:
            return None
        try:
            data = response.json()
        except ValueError as e:
            raise DeploymentHostError(
                f"Get deployment {deployment_id} returned invalid JSON: {e}"
            ) from e
        if not isinstance(data, dict):
            raise DeploymentHostError(
                f"Get deployment {deployment_id} returned {type(data).__name__}, expected object"
            )
        return data


class PreviewResolver:
    """Resolve dashboard links to preview URLs, never raising.

    Successful resolutions are cached; a deployment's address does not change
    once it is ready. Failed or not-ready lookups are retried on the next call.
    """

    def __init__(self, client: VercelRestClient | None, cache_ttl: float = 600.0) -> None:
        """Initialize the resolver.

        Args:
            client: Deployment host client, or None when no token is configured
                (every resolution then yields None).
            cache_ttl: Seconds a resolved URL is reused.
        """
        self._client = client
        self._cache: TTLCache[str, str] = TTLCache(maxsize=PREVIEW_CACHE_MAXSIZE, ttl=cache_ttl)
        self._cache_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def resolve(self, ref: str) -> str | None:
        """Return the canonical preview URL for a dashboard link or deployment id.

        Args:
            ref: Dashboard URL or raw deployment id.

        Returns:
            An ``https://`` preview URL when the deployment is ready, otherwise
            None (including when the deployment host is unreachable or not
            configured).
        """
        if self._client is None:
            return None

        deployment_id = extract_deployment_id(ref)
        if deployment_id is None:
            logger.debug("No deployment id in %s", ref)
            return None

        with self._cache_lock:
            cached = self._cache.get(deployment_id)
        if cached is not None:
            return cached

        try:
            deployment = self._client.get_deployment(deployment_id)
        except DeploymentHostError as e:
            logger.warning("Could not resolve preview for deployment %s: %s", deployment_id, e)
            return None

        if not deployment:
            return None
        url = deployment.get("url")
        if deployment.get("readyState") != READY_STATE or not isinstance(url, str) or not url:
            logger.debug(
                "Deployment %s not ready (readyState=%s)",
                deployment_id,
                deployment.get("readyState"),
            )
            return None

        resolved = _canonical_url(url)
        with self._cache_lock:
            self._cache[deployment_id] = resolved
        logger.info("Resolved deployment %s to %s", deployment_id, resolved)
        return resolved

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
