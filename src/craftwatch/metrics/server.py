"""Metrics server for exposing Prometheus and health endpoints."""

import json
import logging
import threading
from collections.abc import Callable
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, make_server

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

logger = logging.getLogger(__name__)

# Module-level state for idempotent server startup
_server_lock = threading.Lock()
_server_thread: threading.Thread | None = None

HealthCheck = Callable[[], tuple[bool, dict[str, Any]]]
StartResponse = Callable[[str, list[tuple[str, str]]], Any]


class _QuietHandler(WSGIRequestHandler):
    """WSGI handler that doesn't log every request."""

    def log_message(self, format: str, *args: object) -> None:
        pass


def make_app(health_check: HealthCheck | None = None) -> Callable[..., list[bytes]]:
    """Build the WSGI app.

    Args:
        health_check: Returns (healthy, details). Unhealthy answers 503 on /health.
    """

    def app(environ: dict[str, Any], start_response: StartResponse) -> list[bytes]:
        path = environ.get("PATH_INFO", "/")

        if path == "/metrics":
            output = generate_latest(REGISTRY)
            status = "200 OK"
            headers = [("Content-Type", CONTENT_TYPE_LATEST)]
        elif path in ("/health", "/"):
            healthy, details = health_check() if health_check else (True, {})
            output = json.dumps(
                {"status": "ok" if healthy else "degraded", "checks": details}
            ).encode()
            status = "200 OK" if healthy else "503 Service Unavailable"
            headers = [("Content-Type", "application/json")]
        else:
            output = b"Not Found"
            status = "404 Not Found"
            headers = [("Content-Type", "text/plain")]

        start_response(status, headers)
        return [output]

    return app


def start_metrics_server(
    port: int = 8000,
    host: str = "0.0.0.0",
    health_check: HealthCheck | None = None,
) -> threading.Thread:
    """Start a background thread serving /metrics and /health.

    This function is idempotent. If called multiple times, it returns
    the existing running thread.
    """
    global _server_thread
    with _server_lock:
        if _server_thread is not None and _server_thread.is_alive():
            logger.debug("Metrics server already running")
            return _server_thread

        server = make_server(host, port, make_app(health_check), handler_class=_QuietHandler)

        def serve_forever() -> None:
            try:
                logger.info(f"Metrics server listening on {host}:{port}")
                server.serve_forever()
            except Exception:
                logger.exception("Metrics server failed unexpectedly")

        thread = threading.Thread(target=serve_forever, daemon=True)
        thread.start()
        _server_thread = thread
        return thread
