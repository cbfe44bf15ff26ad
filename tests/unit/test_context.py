"""
Unit tests for Context and HandlerChain.
"""

import pytest

from zenweb import Context, HandlerChain
from zenweb.context import run_chain
from zenweb.errors import BadJSONError, DeadlineExceeded, EmptyBodyError


class TestHandlerChain:
    """Cursor semantics."""

    def test_state_transitions(self, make_request):
        ctx = Context(make_request())
        states = []

        def first(c):
            states.append(c.chain.state)
            c.next()

        def second(c):
            states.append(c.chain.state)

        chain = HandlerChain([first, second])
        assert chain.state == HandlerChain.PENDING
        ctx._chain = chain
        ctx.next()

        assert states == [HandlerChain.RUNNING, HandlerChain.RUNNING]
        assert chain.exhausted

    def test_not_calling_next_halts(self, make_request):
        ctx = Context(make_request())
        trace = []

        run_chain(ctx, [lambda c: trace.append("a"), lambda c: trace.append("b")])

        assert trace == ["a"]
        assert not ctx.chain.exhausted

    def test_next_runs_after_code_in_reverse(self, make_request):
        ctx = Context(make_request())
        trace = []

        def outer(c):
            trace.append("outer-before")
            c.next()
            trace.append("outer-after")

        def inner(c):
            trace.append("inner")

        run_chain(ctx, [outer, inner])

        assert trace == ["outer-before", "inner", "outer-after"]

    def test_quit_stops_later_next_calls(self, make_request):
        ctx = Context(make_request())
        trace = []

        def outer(c):
            c.next()
            c.next()

        def stopper(c):
            trace.append("stopper")
            c.quit()

        run_chain(ctx, [outer, stopper, lambda c: trace.append("never")])

        assert trace == ["stopper"]
        assert ctx.is_quit

    def test_next_past_end_is_noop(self, make_request):
        ctx = Context(make_request())
        run_chain(ctx, [lambda c: c.next()])

        ctx.next()

        assert ctx.chain.exhausted

    def test_quit_with_status(self, make_request):
        ctx = Context(make_request())
        trace = []

        run_chain(ctx, [lambda c: c.quit_with_status(403), lambda c: trace.append("never")])

        assert trace == []
        assert ctx.response_status == 403
        assert ctx.writer.get_header("X-Content-Type-Options") == "nosniff"


class TestContextResponse:
    """Response helpers and write-once behavior."""

    def test_json(self, make_request):
        ctx = Context(make_request())
        ctx.json(201, {"ok": True})

        response = ctx.writer.to_response()

        assert response.status == 201
        assert response.get_header("Content-Type") == "application/json"
        assert response.json == {"ok": True}

    def test_first_write_wins(self, make_request):
        ctx = Context(make_request())
        ctx.text(200, "first")
        ctx.json(500, {"error": "late"})
        ctx.status(404)

        assert ctx.response_status == 200
        assert ctx.writer.body == b"first"

    def test_set_cookie(self, make_request):
        ctx = Context(make_request())
        ctx.set_cookie("session", "abc", max_age=60, secure=True)
        ctx.set_cookie("theme", "dark", http_only=False)

        cookies = ctx.writer.headers["Set-Cookie"]

        assert len(cookies) == 2
        assert cookies[0].startswith("session=abc")
        assert "Max-Age=60" in cookies[0]
        assert "Secure" in cookies[0]
        assert "HttpOnly" in cookies[0]
        assert "HttpOnly" not in cookies[1]


class TestContextRequest:
    """Request accessors."""

    def test_client_ip_prefers_real_ip(self, make_request):
        ctx = Context(make_request(headers={"X-Real-IP": "1.1.1.1", "X-Forwarded-For": "2.2.2.2"}))
        assert ctx.client_ip() == "1.1.1.1"

    def test_client_ip_first_forwarded_hop(self, make_request):
        ctx = Context(make_request(headers={"X-Forwarded-For": "2.2.2.2, 3.3.3.3"}))
        assert ctx.client_ip() == "2.2.2.2"

    def test_client_ip_peer(self, make_request):
        assert Context(make_request(client=("9.9.9.9", 1))).client_ip() == "9.9.9.9"

    def test_query_and_cookie(self, make_request):
        ctx = Context(make_request(query={"page": ["2"]}, headers={"Cookie": "jwt=t"}))

        assert ctx.query("page") == "2"
        assert ctx.query("missing", "1") == "1"
        assert ctx.cookie("jwt") == "t"
        assert ctx.cookie("other") is None

    def test_bind_json(self, make_request):
        ctx = Context(make_request(body=b'{"name": "zen"}'))
        assert ctx.bind_json() == {"name": "zen"}

    def test_bind_json_empty_body(self, make_request):
        with pytest.raises(EmptyBodyError):
            Context(make_request()).bind_json()

    def test_bind_json_bad_json(self, make_request):
        with pytest.raises(BadJSONError):
            Context(make_request(body=b"{not json")).bind_json()

    def test_bind_json_with_error_writes_400(self, make_request):
        ctx = Context(make_request(body=b"{not json"))

        ok, payload = ctx.bind_json_with_error()

        assert ok is False
        assert payload is None
        assert ctx.response_status == 400
        assert "invalid JSON format" in ctx.writer.to_response().json["error"]


class TestContextStore:
    def test_set_get(self, make_request):
        ctx = Context(make_request())
        ctx.set("user", "zen")

        assert ctx.get("user") == "zen"
        assert ctx.get("missing", 1) == 1
        assert ctx.must_get("user") == "zen"

    def test_must_get_missing(self, make_request):
        with pytest.raises(KeyError):
            Context(make_request()).must_get("missing")


class TestDeadline:
    def test_no_deadline(self, make_request):
        ctx = Context(make_request())

        assert ctx.remaining() is None
        assert ctx.expired is False
        assert ctx.err() is None

    def test_deadline_expires(self, make_request, clock):
        ctx = Context(make_request(), deadline=clock() + 2.0, clock=clock)
        assert ctx.remaining() == pytest.approx(2.0)

        clock.advance(2.5)

        assert ctx.remaining() == 0.0
        assert ctx.expired is True
        assert isinstance(ctx.err(), DeadlineExceeded)
