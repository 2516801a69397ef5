"""
Test helpers for pipeline and guard tests.

Collaborator stubs that honour the production contracts (create_order,
query_pnl, send_message), plus a tiny HTTP server for exercising the
requests/urllib clients against real sockets.
"""

import json
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.exceptions import OrderSubmissionError
from core.pipeline import OrderResult


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class RecordingSubmitter:
    """Order submitter that records calls and returns a fixed order id."""
    order_id: str = "order-1"
    error: Optional[Exception] = None
    calls: List[Tuple[str, str, str, str]] = field(default_factory=list)

    def create_order(self, bot: str, symbol: str, side: str, qty: str) -> OrderResult:
        self.calls.append((bot, symbol, side, qty))
        if self.error is not None:
            raise self.error
        return OrderResult(order_id=self.order_id, raw={"id": self.order_id, "symbol": symbol, "side": side, "qty": qty})

    @classmethod
    def failing(cls, message: str = "broker down") -> "RecordingSubmitter":
        return cls(error=OrderSubmissionError(message, status_code=503))


@dataclass
class RecordingNotifier:
    error: Optional[Exception] = None
    messages: List[str] = field(default_factory=list)

    def send_message(self, text: str) -> None:
        self.messages.append(text)
        if self.error is not None:
            raise self.error


@dataclass
class StaticPnLQuerier:
    """query_pnl returning a fixed value (or raising a fixed error)."""
    value: Optional[float] = None
    error: Optional[Exception] = None
    calls: List[str] = field(default_factory=list)

    def query_pnl(self, bot: str) -> Optional[float]:
        self.calls.append(bot)
        if self.error is not None:
            raise self.error
        return self.value


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: Dict[str, str]
    body: bytes

    def json(self) -> Any:
        return json.loads(self.body)


class StubHTTPServer:
    """
    Serve canned responses on an ephemeral localhost port.

    ``responder`` receives the RecordedRequest and returns
    ``(status, body)`` where body is bytes, str or a JSON-serialisable object.

    Usage:
        with StubHTTPServer(lambda req: (200, {"id": "abc"})) as stub:
            client = AlpacaClient("k", "s", stub.url)
    """

    def __init__(self, responder: Callable[[RecordedRequest], Tuple[int, Any]]):
        self.responder = responder
        self.requests: List[RecordedRequest] = []
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}"

    def __enter__(self) -> "StubHTTPServer":
        stub = self

        class Handler(BaseHTTPRequestHandler):
            def _handle(self):
                length = int(self.headers.get("Content-Length") or 0)
                body = self.rfile.read(length) if length else b""
                request = RecordedRequest(self.command, self.path, dict(self.headers), body)
                stub.requests.append(request)

                status, payload = stub.responder(request)
                if isinstance(payload, bytes):
                    data = payload
                elif isinstance(payload, str):
                    data = payload.encode("utf-8")
                else:
                    data = json.dumps(payload).encode("utf-8")

                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)

            do_GET = _handle
            do_POST = _handle

            def log_message(self, format, *args):
                return

        self._server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=3)


def prometheus_vector(value: Any) -> Dict[str, Any]:
    """Prometheus instant-query response with one sample."""
    return {
        "status": "success",
        "data": {"resultType": "vector", "result": [{"metric": {"bot": "bot"}, "value": [1700000000.0, value]}]},
    }


def prometheus_empty() -> Dict[str, Any]:
    return {"status": "success", "data": {"resultType": "vector", "result": []}}


ALERT_BODY = b'{"bot":"b","symbol":"AAPL","side":"buy","qty":"1"}'
