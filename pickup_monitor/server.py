"""Lightweight JSON control server.

Single-purpose stdlib HTTP server exposing the `ControlSurface`:

  GET  /api/status             scheduler, availability and notification stats
  POST /api/check              run a check now (rejected while one is running)
  GET  /api/history            recent checks
  POST /api/config/interval    {"minutes": 1..60}
  POST /api/scheduler/pause
  POST /api/scheduler/resume
  POST /api/test-sms
  GET  /api/health
"""

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional
from urllib.parse import parse_qs, urlparse

from .config import ConfigValidationError
from .control import ControlSurface

logger = logging.getLogger(__name__)


class ControlHandler(BaseHTTPRequestHandler):
    """Route requests to the `ControlSurface` attached to the server."""

    @property
    def control(self) -> ControlSurface:
        return self.server.control

    def log_message(self, format, *args):
        """Override to use Python logging instead of stderr."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)
        try:
            if parsed.path == "/api/status":
                self._send_json(200, self.control.get_status())
            elif parsed.path == "/api/history":
                limit = params.get("limit", ["10"])[0]
                self._send_json(200, self.control.get_history(int(limit) if limit.isdigit() else 10))
            elif parsed.path in ("/api/health", "/health"):
                self._send_json(200, self.control.health())
            else:
                self._send_json(404, {"error": "Not found"})
        except Exception as e:
            logger.exception("Error handling GET %s", parsed.path)
            self._send_json(500, {"error": "Internal server error", "message": str(e)})

    def do_POST(self):
        parsed = urlparse(self.path)
        try:
            if parsed.path == "/api/check":
                self._send_json(200, self.control.check_now())
            elif parsed.path == "/api/config/interval":
                body = self._read_json()
                try:
                    result = self.control.update_interval(body.get("minutes"))
                except ConfigValidationError as e:
                    self._send_json(400, {"error": str(e)})
                    return
                self._send_json(200, result)
            elif parsed.path == "/api/scheduler/pause":
                self._send_json(200, self.control.pause())
            elif parsed.path == "/api/scheduler/resume":
                self._send_json(200, self.control.resume())
            elif parsed.path == "/api/test-sms":
                self._send_json(200, self.control.send_test_notification())
            else:
                self._send_json(404, {"error": "Not found"})
        except ValueError as e:
            self._send_json(400, {"error": str(e)})
        except Exception as e:
            logger.exception("Error handling POST %s", parsed.path)
            self._send_json(500, {"error": "Internal server error", "message": str(e)})

    def _read_json(self) -> dict:
        length = int(self.headers.get("Content-Length") or 0)
        if not length:
            return {}
        try:
            data = json.loads(self.rfile.read(length).decode("utf-8"))
        except json.JSONDecodeError:
            raise ValueError("Request body must be JSON") from None
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        return data

    def _send_json(self, status: int, payload: dict) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class ControlServer:
    """Serve the control API from a background thread."""

    def __init__(self, control: ControlSurface, host: str = "127.0.0.1", port: int = 3000):
        self.control = control
        self.host = host
        self.port = port
        self.server: Optional[ThreadingHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self.running = False

    def start(self) -> str:
        """Start the server and return the base URL ("" on failure)."""
        if self.running:
            return self.base_url

        try:
            self.server = ThreadingHTTPServer((self.host, self.port), ControlHandler)
        except OSError as e:
            logger.error("Failed to start control server: %s", e)
            return ""
        self.server.daemon_threads = True
        self.server.control = self.control
        # port 0 binds an ephemeral port
        self.port = self.server.server_address[1]
        self.server_thread = threading.Thread(
            target=self.server.serve_forever, name="control-server", daemon=True
        )
        self.server_thread.start()
        self.running = True
        logger.info("Server running at %s", self.base_url)
        return self.base_url

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def stop(self):
        if self.server and self.running:
            self.server.shutdown()
            self.server.server_close()
            self.running = False
            logger.info("Control server stopped")


__all__ = ["ControlHandler", "ControlServer"]
