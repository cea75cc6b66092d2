"""
REST API

Architectural Intent:
- Lightweight web server built entirely on Python stdlib (http.server + asyncio)
- Thin presentation adapter over ProvisioningOrchestrator; no domain logic here
- Maps the domain error taxonomy onto HTTP status codes

API Surface:
    GET    /health                     -> liveness and in-flight workflow count
    GET    /api/v2ray/regions          -> [{"region", "name"}]
    POST   /api/v2ray/instances        -> {"uuid", "status": "pending"} (body {"region"})
    GET    /api/v2ray/instances        -> [instance]
    GET    /api/v2ray/instances/{uuid} -> instance, 404 if unknown
    DELETE /api/v2ray/instances/{uuid} -> {"status": "deleting"}

Threading Model:
    The stdlib HTTPServer is synchronous and runs in a daemon thread. Create and
    delete launch workflows that must live on the main event loop, so handlers
    submit those coroutines with asyncio.run_coroutine_threadsafe and wait for
    the result. Reads go straight to the thread-safe inventory store.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional

from anywhere.application.dtos.instance_dtos import (
    CreateInstanceRequest,
    CreateInstanceResponse,
)
from anywhere.application.use_cases.provisioning_orchestrator import (
    ProvisioningOrchestrator,
)
from anywhere.domain.errors import (
    AnywhereError,
    ConcurrencyViolationError,
    ConfigurationError,
    InstanceNotFoundError,
)
from anywhere.infrastructure.logging import bind_request_id

logger = logging.getLogger(__name__)

_INSTANCE_PATH_RE = re.compile(r"^/api/v2ray/instances/([0-9a-fA-F-]+)$")

REQUEST_TIMEOUT = 30.0


def _status_for(error: Exception) -> HTTPStatus:
    if isinstance(error, InstanceNotFoundError):
        return HTTPStatus.NOT_FOUND
    if isinstance(error, (ConfigurationError, ValueError)):
        return HTTPStatus.BAD_REQUEST
    if isinstance(error, ConcurrencyViolationError):
        return HTTPStatus.CONFLICT
    return HTTPStatus.INTERNAL_SERVER_ERROR


# ---------------------------------------------------------------------------
# Request handler
# ---------------------------------------------------------------------------

class ApiRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the instance API.

    Attributes on the *server* instance (set by AnywhereWebApp):
        orchestrator:  ProvisioningOrchestrator
        loop:          asyncio event loop owning the workflows
    """

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("web: %s", format % args)

    # ---- routing -----------------------------------------------------------

    def _dispatch(self, method: str) -> None:
        with bind_request_id(self.headers.get("X-Request-ID")) as request_id:
            self._request_id = request_id
            try:
                self._route(method)
            except AnywhereError as e:
                logger.warning("%s %s failed: %s", method, self.path, e)
                self._send_json({"error": str(e)}, _status_for(e))
            except ValueError as e:
                self._send_json({"error": str(e)}, HTTPStatus.BAD_REQUEST)
            except TimeoutError:
                logger.error("%s %s timed out waiting for the event loop", method, self.path)
                self._send_json({"error": "timed out"}, HTTPStatus.GATEWAY_TIMEOUT)

    def do_GET(self) -> None:  # noqa: N802
        self._dispatch("GET")

    def do_POST(self) -> None:  # noqa: N802
        self._dispatch("POST")

    def do_DELETE(self) -> None:  # noqa: N802
        self._dispatch("DELETE")

    def _route(self, method: str) -> None:
        path = self.path.split("?", 1)[0]
        if method == "GET" and path == "/health":
            self._serve_health()
        elif method == "GET" and path == "/api/v2ray/regions":
            self._serve_regions()
        elif path == "/api/v2ray/instances":
            if method == "GET":
                self._serve_instances()
            elif method == "POST":
                self._handle_create()
            else:
                self._send_json(
                    {"error": "method not allowed"}, HTTPStatus.METHOD_NOT_ALLOWED
                )
        else:
            match = _INSTANCE_PATH_RE.match(path)
            if match and method == "GET":
                self._serve_instance(match.group(1))
            elif match and method == "DELETE":
                self._handle_delete(match.group(1))
            else:
                self._send_json({"error": "not found"}, HTTPStatus.NOT_FOUND)

    # ---- endpoint implementations ------------------------------------------

    @property
    def _orchestrator(self) -> ProvisioningOrchestrator:
        return self.server.orchestrator  # type: ignore[attr-defined]

    def _call_on_loop(self, coro) -> Any:
        loop: asyncio.AbstractEventLoop = self.server.loop  # type: ignore[attr-defined]
        future = asyncio.run_coroutine_threadsafe(
            self._with_request_id(coro), loop
        )
        return future.result(timeout=REQUEST_TIMEOUT)

    async def _with_request_id(self, coro) -> Any:
        with bind_request_id(self._request_id):
            return await coro

    def _serve_health(self) -> None:
        self._send_json(
            {"status": "ok", "in_flight": self._orchestrator.in_flight}
        )

    def _serve_regions(self) -> None:
        self._send_json([r.to_dict() for r in self._orchestrator.list_regions()])

    def _serve_instances(self) -> None:
        self._send_json([v.to_dict() for v in self._orchestrator.list_instances()])

    def _serve_instance(self, uuid: str) -> None:
        self._send_json(self._orchestrator.get_instance(uuid).to_dict())

    def _handle_create(self) -> None:
        """Expected JSON body: {"region": "ap-east-1"}"""
        body = self._read_json()
        if body is None:
            return
        request = CreateInstanceRequest(region=str(body.get("region", "")))
        uuid = self._call_on_loop(self._orchestrator.request_create(request.region))
        self._send_json(CreateInstanceResponse(uuid=uuid).to_dict(), HTTPStatus.ACCEPTED)

    def _handle_delete(self, uuid: str) -> None:
        self._call_on_loop(self._orchestrator.request_delete(uuid))
        self._send_json({"status": "deleting"}, HTTPStatus.ACCEPTED)

    # ---- helpers -----------------------------------------------------------

    def _read_json(self) -> Optional[dict]:
        try:
            content_length = int(self.headers.get("Content-Length", 0))
            raw = self.rfile.read(content_length)
            body = json.loads(raw) if raw else {}
        except (json.JSONDecodeError, ValueError):
            self._send_json({"error": "invalid JSON body"}, HTTPStatus.BAD_REQUEST)
            return None
        if not isinstance(body, dict):
            self._send_json(
                {"error": "body must be a JSON object"}, HTTPStatus.BAD_REQUEST
            )
            return None
        return body

    def _send_json(self, data: Any, status: HTTPStatus = HTTPStatus.OK) -> None:
        """Serialize *data* as JSON and send it as the HTTP response."""
        body = json.dumps(data, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        request_id = getattr(self, "_request_id", "")
        if request_id:
            self.send_header("X-Request-ID", request_id)
        self.end_headers()
        self.wfile.write(body)


# ---------------------------------------------------------------------------
# Web application wrapper
# ---------------------------------------------------------------------------

class AnywhereWebApp:
    """Async-friendly REST server for the provisioning orchestrator.

    Usage::

        app = AnywhereWebApp(orchestrator)
        await app.start("0.0.0.0", 8080)
        # ... later ...
        app.stop()
    """

    def __init__(self, orchestrator: ProvisioningOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        assert self._server is not None
        return self._server.server_address[1]

    async def start(self, host: str = "127.0.0.1", port: int = 8080) -> None:
        """Start the server in a background thread bound to the running loop."""
        self._server = ThreadingHTTPServer((host, port), ApiRequestHandler)
        self._server.daemon_threads = True
        # Attach application state to the server so handlers can access it.
        self._server.orchestrator = self.orchestrator  # type: ignore[attr-defined]
        self._server.loop = asyncio.get_running_loop()  # type: ignore[attr-defined]

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="anywhere-web",
        )
        self._thread.start()
        logger.info("REST API listening on http://%s:%d", host, self.port)

    def stop(self) -> None:
        """Shut down the web server gracefully."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            logger.info("REST API stopped")
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
