"""Test bootstrap for collection-runner."""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Iterator

import pytest
import structlog

APP_ROOT = Path(__file__).resolve().parents[1]
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from collection_runner.models import HttpRequest, HttpResponse  # noqa: E402


@dataclass
class Route:
    status: int = 200
    body: Any = None
    headers: dict[str, str] | list[tuple[str, str]] = field(default_factory=dict)
    delay: float = 0.0


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: dict[str, str]
    body: bytes


class MockBackend:
    """Threaded HTTP server answering from a ``(method, path) -> Route`` table."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[RecordedRequest] = []
        self._server = HTTPServer(("127.0.0.1", 0), self._handler_factory())
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self._server.server_address[1]}"

    def add(self, method: str, path: str, **kwargs: Any) -> None:
        self.routes[(method.upper(), path)] = Route(**kwargs)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=2)

    def _handler_factory(self) -> type[BaseHTTPRequestHandler]:
        backend = self

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: object) -> None:  # pragma: no cover - silence logs
                return

            def do_GET(self) -> None:  # noqa: N802 - HTTP handler requirement
                self._handle()

            def do_POST(self) -> None:  # noqa: N802
                self._handle()

            def do_PUT(self) -> None:  # noqa: N802
                self._handle()

            def do_DELETE(self) -> None:  # noqa: N802
                self._handle()

            def _handle(self) -> None:
                length = int(self.headers.get("Content-Length", 0) or 0)
                path = self.path.split("?", 1)[0]
                backend.requests.append(
                    RecordedRequest(
                        method=self.command,
                        path=path,
                        headers=dict(self.headers.items()),
                        body=self.rfile.read(length),
                    )
                )
                route = backend.routes.get((self.command, path))
                if route is None:
                    route = Route(status=404, body={"error": "not found"})
                if route.delay:
                    time.sleep(route.delay)
                payload = route.body if isinstance(route.body, str) else json.dumps(route.body or {})
                data = payload.encode("utf-8")
                self.send_response(route.status)
                self.send_header("Content-Type", "application/json")
                pairs = route.headers.items() if isinstance(route.headers, dict) else route.headers
                for name, value in pairs:
                    self.send_header(name, value)
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)

        return Handler


@pytest.fixture
def mock_backend() -> Iterator[MockBackend]:
    backend = MockBackend()
    backend.start()
    try:
        yield backend
    finally:
        backend.stop()


class ScriptedExecutor:
    """Executor double returning queued responses (or raising queued errors)."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[HttpRequest] = []

    def execute(self, http_request: HttpRequest) -> HttpResponse:
        self.requests.append(http_request)
        outcome = self.outcomes.pop(0) if self.outcomes else respond(200)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def respond(status: int, body: Any = None, headers: dict[str, str] | None = None, latency_ms: float = 5.0) -> HttpResponse:
    text = body if isinstance(body, str) else json.dumps(body if body is not None else {})
    return HttpResponse(status_code=status, headers=headers or {}, body=text, latency_ms=latency_ms)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """CLI invocations bind log handlers to captured streams; drop them afterwards."""

    yield
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    structlog.reset_defaults()
