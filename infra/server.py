"""HTTP front end: webhook intake, Prometheus scrape endpoint and health probe."""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional

from core.pipeline import AlertPipeline
from core.signature import SIGNATURE_HEADER
from infra.metrics import MetricsRecorder

logger = logging.getLogger(__name__)

HOOK_PATH = "/hook"
METRICS_PATH = "/metrics"
HEALTH_PATHS = ("/health", "/healthz")
MAX_BODY_BYTES = 1024 * 1024


class WebhookServer:
    """Threaded HTTP server routing alerts into an AlertPipeline."""

    def __init__(self, pipeline: AlertPipeline, port: int = 8080, host: str = "0.0.0.0"):
        self._pipeline = pipeline
        self._host = host
        self._port = int(port)
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.server_port

    def start(self) -> None:
        if self._thread:
            return

        handler_cls = self._build_handler(self._pipeline)
        self._server = ThreadingHTTPServer((self._host, self._port), handler_cls)
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, name="WebhookServer", daemon=True)
        self._thread.start()
        logger.info("Webhook server listening on %s:%s", self._host, self._server.server_port)

    def stop(self, timeout: float = 5.0) -> None:
        if not self._server:
            return
        logger.info("Shutting down webhook server")
        self._server.shutdown()
        self._server.server_close()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Webhook server thread did not exit within %.1fs", timeout)
        self._thread = None
        self._server = None

    @staticmethod
    def _build_handler(pipeline: AlertPipeline):

        class WebhookHandler(BaseHTTPRequestHandler):
            def do_GET(self):  # type: ignore[override]
                if self.path in HEALTH_PATHS:
                    self._send_json(200, {"ok": True})
                elif self.path == METRICS_PATH:
                    body, content_type = MetricsRecorder.render()
                    self._send(200, body, content_type)
                elif self.path == HOOK_PATH:
                    self._send_json(405, {"error": "Method not allowed"})
                else:
                    self._send_json(404, {"error": "Not found"})

            def do_POST(self):  # type: ignore[override]
                if self.path != HOOK_PATH:
                    self._send_json(404, {"error": "Not found"})
                    return

                body = self._read_body()
                if body is None:
                    return

                try:
                    result = pipeline.handle(body, self.headers.get(SIGNATURE_HEADER))
                except Exception:
                    logger.exception("Unhandled error while processing alert")
                    self._send_json(500, {"error": "Internal error", "outcome": "internal_error"})
                    return
                self._send_json(result.http_status, result.to_response())

            def _read_body(self) -> Optional[bytes]:
                try:
                    length = int(self.headers.get("Content-Length") or 0)
                except ValueError:
                    self._send_json(400, {"error": "Invalid request body"})
                    return None
                if length < 0 or length > MAX_BODY_BYTES:
                    self._send_json(413 if length > 0 else 400, {"error": "Invalid request body"})
                    return None
                try:
                    return self.rfile.read(length) if length else b""
                except OSError as exc:
                    logger.error("Failed to read request: %s", exc)
                    self._send_json(400, {"error": "Invalid request body"})
                    return None

            def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
                self._send(status, json.dumps(payload).encode("utf-8"), "application/json")

            def _send(self, status: int, body: bytes, content_type: str) -> None:
                self.send_response(status)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("%s - %s", self.address_string(), format % args)

        return WebhookHandler


__all__ = ["WebhookServer"]
