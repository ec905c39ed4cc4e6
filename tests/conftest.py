"""Shared fixtures: a scripted Gamma transport, a sleep recorder and local HTTP endpoints."""

from __future__ import annotations

import pathlib
import socket
import threading
from collections.abc import Iterable, Iterator
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

import pytest

from lessondeck.core.config import ClientConfig, Settings
from lessondeck.services.gamma import GammaClient, GammaResponse


class FakeTransport:
    """Replays queued responses and records every request made."""

    def __init__(self, responses: Iterable[GammaResponse] = ()) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def queue(self, *responses: GammaResponse) -> None:
        self.responses.extend(responses)

    def __call__(self, method: str, url: str, *, headers, payload=None, timeout: float) -> GammaResponse:
        self.calls.append({"method": method, "url": url, "headers": dict(headers), "payload": payload})
        if not self.responses:
            raise AssertionError(f"Unexpected request {method} {url}")
        return self.responses.pop(0)

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call["method"] == method)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def response(status_code: int = 200, body: Any = None, headers: dict[str, str] | None = None) -> GammaResponse:
    return GammaResponse(status_code=status_code, body={} if body is None else body, headers=headers or {})


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def client(transport: FakeTransport, sleeper: SleepRecorder) -> GammaClient:
    return GammaClient(
        ClientConfig(api_key="test-key", api_base="https://gamma.test/v0.2"),
        transport=transport,
        sleep=sleeper,
        jitter=lambda _low, _high: 0.0,
        backoff_base_seconds=1.0,
        backoff_cap_seconds=8.0,
    )


def make_settings(tmp_path: pathlib.Path, **env: Any) -> Settings:
    values: dict[str, Any] = {
        "GAMMA_KEY": "test-key",
        "HOST": "https://learn.example.com/",
        "LESSONS_DIR": str(tmp_path / "lessons"),
        "OUTPUT_DIR": str(tmp_path / "site"),
        "POLL_INTERVAL_SECONDS": 5,
    }
    values.update(env)
    return Settings(_env_file=None, **values)


class _RouteHandler(BaseHTTPRequestHandler):
    """Answers from `server.routes`: path -> (status, headers, body, declared length or None)."""

    def do_GET(self) -> None:
        self._reply()

    def do_POST(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        self.server.requests.append(
            {"path": self.path, "headers": self.headers, "body": self.rfile.read(length)}
        )
        self._reply()

    def _reply(self) -> None:
        status, headers, body, declared_length = self.server.routes[self.path]
        self.send_response(status)
        for key, value in headers.items():
            self.send_header(key, value)
        self.send_header("Content-Length", str(len(body) if declared_length is None else declared_length))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        pass


class LocalServer:
    def __init__(self, server: ThreadingHTTPServer) -> None:
        self._server = server

    @property
    def requests(self) -> list[dict[str, Any]]:
        return self._server.requests

    def route(
        self,
        path: str,
        status: int = 200,
        body: bytes = b"",
        headers: dict[str, str] | None = None,
        declared_length: int | None = None,
    ) -> str:
        self._server.routes[path] = (status, headers or {}, body, declared_length)
        return self.url(path)

    def url(self, path: str = "") -> str:
        return f"http://127.0.0.1:{self._server.server_address[1]}{path}"


@pytest.fixture
def http_server() -> Iterator[LocalServer]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), _RouteHandler)
    server.daemon_threads = True
    server.routes = {}
    server.requests = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield LocalServer(server)
    server.shutdown()
    server.server_close()


@pytest.fixture
def silent_url() -> Iterator[str]:
    """Base URL of a socket that accepts connections but never answers."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen(8)
        yield f"http://127.0.0.1:{listener.getsockname()[1]}"
