"""Background uvicorn server for the job API.

The API runs in a daemon thread alongside the polling orchestrator, so the
main thread stays free to wait for shutdown signals.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import uvicorn
    from starlette.types import ASGIApp

from arena.logging import get_logger

logger = get_logger(__name__)

STARTUP_TIMEOUT = 5.0  # seconds
SHUTDOWN_TIMEOUT = 5.0  # seconds


class ApiServer:
    """Serve an ASGI application from a background thread.

    Example:
        server = ApiServer(host="127.0.0.1", port=3001)
        server.start(create_app(store, spawner))
        ...
        server.shutdown()
    """

    def __init__(self, host: str, port: int) -> None:
        self._host = host
        self._port = port
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._server is not None and self._server.started

    def start(self, app: ASGIApp) -> None:
        """Start serving ``app`` in a background thread.

        Blocks until uvicorn reports it has started, or for at most
        ``STARTUP_TIMEOUT`` seconds.
        """
        import uvicorn

        config = uvicorn.Config(
            app=app,
            host=self._host,
            port=self._port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        server = self._server

        self._thread = threading.Thread(target=server.run, name="arena-api", daemon=True)
        self._thread.start()

        start_wait = time.monotonic()
        while not server.started:
            if time.monotonic() - start_wait > STARTUP_TIMEOUT:
                logger.warning("API server startup timed out, continuing anyway")
                break
            if not self._thread.is_alive():
                logger.error("API server exited during startup")
                break
            time.sleep(0.05)

        if server.started:
            logger.info("API server listening on http://%s:%s", self._host, self._port)

    def shutdown(self) -> None:
        """Ask uvicorn to exit and wait up to ``SHUTDOWN_TIMEOUT`` seconds."""
        if self._server is None:
            return
        logger.info("Shutting down API server...")
        self._server.should_exit = True
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=SHUTDOWN_TIMEOUT)
            if self._thread.is_alive():
                logger.warning("API server thread did not terminate gracefully")
        self._server = None
        logger.info("API server shutdown complete")


__all__ = ["ApiServer"]
