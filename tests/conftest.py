"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Callable, Dict, Generator, List, Optional, Tuple

import pytest

from zenweb import Engine, EngineConfig
from zenweb.http import HTTPRequest


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build_request(
    method: str = "GET",
    path: str = "/",
    headers: Optional[Dict[str, str]] = None,
    query: Optional[Dict[str, List[str]]] = None,
    body: bytes = b"",
    client: Tuple[str, int] = ("10.0.0.1", 40000),
) -> HTTPRequest:
    return HTTPRequest(
        method=method,
        path=path,
        headers=dict(headers or {}),
        query_params=dict(query or {}),
        body=body,
        client_address=client,
    )


@pytest.fixture
def make_request() -> Callable[..., HTTPRequest]:
    """Factory for in-process requests."""
    return build_request


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> Engine:
    """Engine with default configuration and no middleware."""
    return Engine(EngineConfig(log_level="WARNING"))


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"name": "John", "email": "john@example.com"}'
    return (
        b"POST /api/users HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def running_engine(free_port: int) -> Generator[Tuple[Engine, int], None, None]:
    """An Engine serving on a free local port in a background thread."""
    app = Engine(EngineConfig(host="127.0.0.1", port=free_port, max_workers=4, log_level="WARNING"))

    @app.get("/ping")
    def ping(ctx):
        ctx.json(200, {"status": "ok"})

    @app.post("/echo")
    def echo(ctx):
        ok, payload = ctx.bind_json_with_error()
        if ok:
            ctx.json(200, {"received": payload})

    thread = threading.Thread(target=app.run, daemon=True)
    thread.start()
    for _ in range(50):
        if app.server is not None and app.server.wait_ready(timeout=0.1):
            break
        time.sleep(0.1)
    else:
        raise RuntimeError("server failed to start")

    yield app, free_port

    app.shutdown()
    thread.join(timeout=5.0)
