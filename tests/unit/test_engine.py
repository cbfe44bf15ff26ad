"""
Unit tests for Engine, EngineConfig, deadlines and the socket server.
"""

import http.client
import json
import threading
import time

import pytest

from zenweb import DEFAULT_TIMEOUT, DeadlineExceeded, Engine, EngineConfig, call_with_timeout
from zenweb.middleware import access_logger, recovery


class TestEngineConfig:
    def test_defaults_are_valid(self):
        config = EngineConfig()
        config.validate()

        assert config.port == 8080
        assert config.request_timeout is None

    @pytest.mark.parametrize(
        "kwargs",
        [{"port": 70000}, {"max_workers": 0}, {"request_timeout": 0}, {"log_format": "xml"}],
    )
    def test_invalid_values_fail_fast(self, kwargs):
        with pytest.raises(ValueError):
            Engine(EngineConfig(**kwargs))

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ZEN_PORT", "9090")
        monkeypatch.setenv("ZEN_WORKERS", "4")
        monkeypatch.setenv("ZEN_REQUEST_TIMEOUT", "2.5")
        monkeypatch.setenv("ZEN_VALIDATE_PARAMS", "true")
        monkeypatch.setenv("ZEN_LOG_FORMAT", "json")

        config = EngineConfig.from_env()

        assert config.port == 9090
        assert config.max_workers == 4
        assert config.request_timeout == 2.5
        assert config.validate_path_params is True
        assert config.log_format == "json"


class TestEngineHandle:
    def test_handle_returns_response(self, engine, make_request):
        engine.use(recovery(), access_logger())
        engine.get("/", lambda ctx: ctx.json(200, {"hello": "world"}))

        response = engine.handle(make_request())

        assert response.status == 200
        assert response.json == {"hello": "world"}
        assert response.get_header("X-Request-ID")

    def test_unwritten_response_defaults_to_200(self, engine, make_request):
        engine.get("/", lambda ctx: None)

        response = engine.handle(make_request())

        assert response.status == 200
        assert response.body == b""

    def test_request_timeout_sets_deadline(self, make_request):
        engine = Engine(EngineConfig(request_timeout=5.0))
        seen = {}

        @engine.get("/")
        def handler(ctx):
            seen["remaining"] = ctx.remaining()
            ctx.status(204)

        engine.handle(make_request())

        assert 0 < seen["remaining"] <= 5.0

    def test_no_deadline_by_default(self, engine, make_request):
        seen = {}
        engine.get("/", lambda ctx: seen.setdefault("deadline", ctx.deadline))

        engine.handle(make_request())

        assert seen["deadline"] is None


class TestCallWithTimeout:
    def test_returns_result(self):
        assert call_with_timeout(lambda a, b: a + b, 1, 2) == 3

    def test_raises_deadline_exceeded(self):
        release = threading.Event()

        with pytest.raises(DeadlineExceeded):
            call_with_timeout(release.wait, 5, timeout=0.05)
        release.set()

    def test_reraises_errors(self):
        def fail():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            call_with_timeout(fail)

    def test_default_timeout(self):
        assert DEFAULT_TIMEOUT == 10.0


class TestSocketServer:
    """End-to-end over a real TCP socket."""

    def test_get_and_post(self, running_engine):
        _, port = running_engine
        conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
        try:
            conn.request("GET", "/ping")
            response = conn.getresponse()
            assert response.status == 200
            assert json.loads(response.read()) == {"status": "ok"}
            assert response.getheader("Server") == "zenweb/1.0"

            # Same connection (keep-alive).
            body = json.dumps({"name": "zen"})
            conn.request("POST", "/echo", body=body, headers={"Content-Type": "application/json"})
            response = conn.getresponse()
            assert response.status == 200
            assert json.loads(response.read()) == {"received": {"name": "zen"}}
        finally:
            conn.close()

    def test_not_found_and_bad_json(self, running_engine):
        _, port = running_engine
        conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
        try:
            conn.request("GET", "/missing")
            response = conn.getresponse()
            assert response.status == 404
            assert response.read() == b"404 NOT FOUND"

            conn.request("POST", "/echo", body="{nope", headers={"Content-Type": "application/json"})
            response = conn.getresponse()
            assert response.status == 400
            response.read()
        finally:
            conn.close()

    def test_head_has_no_body(self, running_engine):
        app, port = running_engine
        conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
        try:
            conn.request("HEAD", "/ping")
            response = conn.getresponse()
            # No HEAD route is registered.
            assert response.status == 404
            assert response.read() == b""
        finally:
            conn.close()

    def test_shutdown_stops_server(self, running_engine):
        app, _ = running_engine
        app.shutdown()

        deadline = time.monotonic() + 5
        while app.server.is_running and time.monotonic() < deadline:
            time.sleep(0.05)

        assert not app.server.is_running
