"""
Health probe endpoints.

Serves ``/healthz`` (process is alive), ``/readyz`` (controller is
running) and ``/loops`` (TrelloConfigs with a registered loop) from a
FastAPI app run by uvicorn on a background thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import uvicorn
from fastapi import FastAPI, Response, status

from trellowatch import __version__
from trellowatch.core.supervisor.registry import LoopRegistry

logger = logging.getLogger(__name__)


def create_app(
    registry: LoopRegistry | None = None,
    ready_check: Callable[[], bool] | None = None,
) -> FastAPI:
    """
    Build the probe application.

    Args:
        registry: Registry reported by /loops
        ready_check: Returns True once the controller is running
    """
    app = FastAPI(title="trello-watch probes", version=__version__)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz(response: Response) -> dict[str, str]:
        if ready_check is not None and not ready_check():
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "not ready"}
        return {"status": "ok"}

    @app.get("/loops")
    async def loops() -> dict[str, list[str]]:
        keys = registry.keys() if registry is not None else []
        return {"loops": sorted(str(key) for key in keys)}

    return app


def parse_bind_address(address: str) -> tuple[str, int]:
    """
    Split ``host:port``; an empty host binds all interfaces.

    Example:
        >>> parse_bind_address(":8081")
        ('0.0.0.0', 8081)
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid bind address: {address!r}")
    return host or "0.0.0.0", int(port)


class ProbeServer:
    """Runs the probe app with uvicorn on a daemon thread."""

    def __init__(self, app: FastAPI, bind_address: str) -> None:
        host, port = parse_bind_address(bind_address)
        self.bind_address = bind_address
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=host, port=port, log_level="warning")
        )
        self._thread = threading.Thread(target=self._server.run, name="probes", daemon=True)

    def start(self) -> None:
        logger.info(f"Serving health probes on {self.bind_address}")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._server.should_exit = True
        self._thread.join(timeout)
