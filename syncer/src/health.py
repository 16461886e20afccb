from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

StatusProvider = Callable[[], dict[str, Any]]


class _HealthHandler(BaseHTTPRequestHandler):
    """Serves liveness, readiness, sync status and Prometheus metrics.

    ``/readyz`` turns green once the initial reconciliation has run and red
    again when shutdown begins.  ``/status`` reports the outcome of the most
    recent pass and the namespace list it computed.
    """

    ready_event: threading.Event
    status_provider: StatusProvider | None = None

    def _respond(
        self, status: int, body: bytes = b"", content_type: str | None = None
    ) -> None:
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        self.end_headers()
        if body:
            self.wfile.write(body)

    def do_GET(self) -> None:
        if self.path == "/healthz":
            self._respond(200, b"ok")
        elif self.path == "/readyz":
            if self.ready_event.is_set():
                self._respond(200, b"ready=true")
            else:
                self._respond(503, b"ready=false")
        elif self.path == "/status" and self.status_provider is not None:
            snapshot = self.status_provider()
            code = 200 if snapshot.get("ready") else 503
            self._respond(code, json.dumps(snapshot).encode(), "application/json")
        elif self.path == "/metrics":
            from prometheus_client import generate_latest

            self._respond(200, generate_latest(), "text/plain; version=0.0.4; charset=utf-8")
        else:
            self._respond(404)

    def log_message(self, fmt: str, *args: Any) -> None:
        logging.getLogger("syncer.health").debug(fmt, *args)


def make_health_handler(
    ready: threading.Event, status: StatusProvider | None = None
) -> type[_HealthHandler]:
    """Return a handler class bound to the readiness event and status provider."""

    class _BoundHealthHandler(_HealthHandler):
        ready_event = ready
        status_provider = staticmethod(status) if status is not None else None

    return _BoundHealthHandler


def start_health_server(
    ready: threading.Event, port: int, status: StatusProvider | None = None
) -> ThreadingHTTPServer:
    """Start the health/status/metrics server in a daemon thread and return it."""
    server = ThreadingHTTPServer(("0.0.0.0", port), make_health_handler(ready, status))  # noqa: S104
    server.daemon_threads = True
    server.block_on_close = False
    threading.Thread(target=server.serve_forever, daemon=True).start()
    logging.getLogger(__name__).info("Health server listening on :%d", server.server_address[1])
    return server
