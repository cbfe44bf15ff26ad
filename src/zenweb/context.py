"""
=============================================================================
REQUEST CONTEXT AND HANDLER CHAIN
=============================================================================

Every handler and every middleware in zenweb has the same shape:

    def handler(ctx: Context) -> None:
        ...

There is no separate "middleware" type. A middleware is just a handler
that decides whether the rest of the chain runs.

=============================================================================
THE CHAIN AS AN EXPLICIT CURSOR
=============================================================================

For a route registered as

    engine.use(recovery(), logger())          # global
    api = engine.group("/api"); api.use(auth_mw)
    api.get("/users/:id", get_user)

the router resolves "GET /api/users/7" to ONE flat list:

    index:    0            1          2          3
            ┌──────────┬──────────┬──────────┬──────────┐
    chain:  │ recovery │ logger   │ auth_mw  │ get_user │
            └──────────┴──────────┴──────────┴──────────┘
      ▲
      cursor = -1 (pending, before the first handler)

ctx.next() moves the cursor ONE step and runs that handler. A middleware
that wants the rest of the chain calls ctx.next() itself:

    def logger(ctx):
        start = time.monotonic()
        ctx.next()                      ← runs handler 2, which may run 3
        log(time.monotonic() - start)   ← "after" code runs on the way back

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        CHAIN STATES                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   PENDING ──next()──► RUNNING ──handler returns──► PENDING          │
    │      │                   │                           │              │
    │      │                quit()                  cursor at end         │
    │      │                   ▼                           ▼              │
    │      └───────────────► EXHAUSTED ◄───────────────────┘              │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Three ways a handler can end its part:

    1. call ctx.next()          → continue with the next handler
    2. return without next()    → chain stops here, silently
    3. call ctx.quit()          → cursor jumps to the end; nothing later
                                  runs even if an outer middleware calls
                                  ctx.next() afterwards

Rule 2 is what makes auth safe: a failed check that forgets to quit()
still cannot fall through to the protected handler.

Nesting depth is bounded by the chain length: each handler can at most
start the one after it.

=============================================================================
WRITE-ONCE RESPONSES
=============================================================================

ctx.json(), ctx.text() and ctx.status() go to a ResponseWriter where the
FIRST status write wins (see http/response.py). Layers that supply
defaults check ctx.written first.

=============================================================================
INTERVIEW QUESTIONS
=============================================================================

Q: "How is this different from a 'wrap the handler' (onion) pipeline?"
A: "An onion pipeline composes functions ahead of time:
   mw1(mw2(handler)). Here the chain is data plus a cursor, so the
   router can build one list per route (global ++ group ++ route) and
   any handler can short-circuit by simply not advancing."

Q: "Why is Context not shared between requests?"
A: "It holds the cursor, the response state and the per-request store.
   One Context is created per request and only the worker thread serving
   that request touches it, so none of it needs locking."

=============================================================================
"""

import json
import logging
import time
from http import HTTPStatus
from http.cookies import SimpleCookie
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import BadJSONError, BindError, DeadlineExceeded, EmptyBodyError
from .http.request import HTTPRequest
from .http.response import ResponseWriter


logger = logging.getLogger(__name__)

HandlerFunc = Callable[["Context"], None]


# =============================================================================
# HANDLER CHAIN
# =============================================================================

class HandlerChain:
    """
    Ordered handlers plus a cursor.

    Example:
        chain = HandlerChain([first, second])
        chain.advance(ctx)      # runs first; first decides about second
    """

    PENDING = "pending"
    RUNNING = "running"
    EXHAUSTED = "exhausted"

    def __init__(self, handlers: Sequence[HandlerFunc] = ()):
        self.handlers: tuple = tuple(handlers)
        self.cursor = -1
        self._depth = 0

    def __len__(self) -> int:
        return len(self.handlers)

    @property
    def state(self) -> str:
        if self.cursor >= len(self.handlers):
            return self.EXHAUSTED
        if self._depth > 0:
            return self.RUNNING
        # Last handler already ran and returned.
        if self.cursor == len(self.handlers) - 1:
            return self.EXHAUSTED
        return self.PENDING

    @property
    def exhausted(self) -> bool:
        return self.state == self.EXHAUSTED

    def advance(self, ctx: "Context") -> None:
        """
        Move the cursor one step and run the handler there.

        Does nothing once the chain is exhausted or quit.
        """
        if self.cursor >= len(self.handlers):
            return
        self.cursor += 1
        if self.cursor >= len(self.handlers):
            return
        handler = self.handlers[self.cursor]
        self._depth += 1
        try:
            handler(ctx)
        finally:
            self._depth -= 1

    def quit(self) -> None:
        """Move the cursor past the end; no further handler runs."""
        self.cursor = len(self.handlers)


# =============================================================================
# CONTEXT
# =============================================================================

class Context:
    """
    Per-request facade handed to every handler.

    Request side:  method, path, params, param(), query(), get_header(),
                   cookie(), client_ip(), bind_json()
    Response side: status(), json(), text(), data(), set_header(),
                   set_cookie(), written
    Chain control: next(), quit(), quit_with_status()
    Per-request:   set()/get()/must_get(), claims, deadline helpers
    """

    def __init__(
        self,
        request: HTTPRequest,
        writer: Optional[ResponseWriter] = None,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.request = request
        self.writer = writer or ResponseWriter()
        self.params: Dict[str, str] = {}
        self.keys: Dict[str, Any] = {}
        self.claims: Any = None
        self.deadline = deadline
        self._clock = clock
        self._chain = HandlerChain()

    # ─────────────────────────────────────────────────────────────────────
    # CHAIN CONTROL
    # ─────────────────────────────────────────────────────────────────────

    @property
    def chain(self) -> HandlerChain:
        return self._chain

    def install(self, handlers: Sequence[HandlerFunc], params: Optional[Dict[str, str]] = None) -> None:
        """Attach a resolved chain (and its bound params) to this request."""
        self._chain = HandlerChain(handlers)
        if params is not None:
            self.params = params

    def next(self) -> None:
        """Run the next handler in the chain."""
        self._chain.advance(self)

    def quit(self) -> None:
        """Stop the chain. Does not write a response."""
        self._chain.quit()

    def quit_with_status(self, status: int) -> None:
        """Write `status` (with nosniff) and stop the chain."""
        self.set_header("X-Content-Type-Options", "nosniff")
        self.status(status)
        self.quit()

    @property
    def is_quit(self) -> bool:
        return self._chain.cursor >= len(self._chain)

    # ─────────────────────────────────────────────────────────────────────
    # REQUEST ACCESSORS
    # ─────────────────────────────────────────────────────────────────────

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def path(self) -> str:
        return self.request.path

    def param(self, name: str, default: str = "") -> str:
        return self.params.get(name, default)

    def query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.request.get_query(name, default)

    def get_header(self, name: str, default: str = "") -> str:
        """Request header (case-insensitive)."""
        return self.request.get_header(name, default)

    def cookie(self, name: str) -> Optional[str]:
        return self.request.cookies.get(name)

    def client_ip(self) -> str:
        """
        Resolve the client address.

            1. X-Real-IP
            2. first hop of X-Forwarded-For
            3. TCP peer address
        """
        real_ip = self.get_header("X-Real-IP").strip()
        if real_ip:
            return real_ip
        forwarded = self.get_header("X-Forwarded-For")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        return self.request.client_address[0]

    def bind_json(self) -> Any:
        """
        Decode the request body as JSON.

        Raises:
            EmptyBodyError: no body was sent.
            BadJSONError: the body is not valid JSON.
        """
        if not self.request.body:
            raise EmptyBodyError()
        try:
            return json.loads(self.request.body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BadJSONError(f"invalid JSON format: {e}") from e

    def bind_json_with_error(self) -> Tuple[bool, Any]:
        """
        bind_json(), answering 400 {"error": ...} on failure.

        Example:
            ok, payload = ctx.bind_json_with_error()
            if not ok:
                return
        """
        try:
            return True, self.bind_json()
        except BindError as e:
            self.json(HTTPStatus.BAD_REQUEST, {"error": str(e)})
            return False, None

    # ─────────────────────────────────────────────────────────────────────
    # RESPONSE HELPERS
    # ─────────────────────────────────────────────────────────────────────

    @property
    def written(self) -> bool:
        return self.writer.written

    @property
    def response_status(self) -> int:
        return self.writer.status

    def set_header(self, name: str, value: str) -> None:
        """Response header."""
        self.writer.set_header(name, value)

    def status(self, status: int) -> None:
        self.writer.write_header(status)

    def data(self, status: int, content_type: str, body: bytes) -> None:
        self.writer.write(status, body, content_type)

    def text(self, status: int, body: str) -> None:
        self.writer.write(status, body, "text/plain; charset=utf-8")

    def html(self, status: int, body: str) -> None:
        self.writer.write(status, body, "text/html; charset=utf-8")

    def json(self, status: int, obj: Any) -> None:
        self.writer.write(status, json.dumps(obj), "application/json")

    def set_cookie(
        self,
        name: str,
        value: str,
        max_age: Optional[int] = None,
        path: str = "/",
        domain: Optional[str] = None,
        secure: bool = False,
        http_only: bool = True,
        same_site: Optional[str] = "Lax",
    ) -> None:
        jar = SimpleCookie()
        jar[name] = value
        morsel = jar[name]
        morsel["path"] = path
        if max_age is not None:
            morsel["max-age"] = max_age
        if domain:
            morsel["domain"] = domain
        if secure:
            morsel["secure"] = True
        if http_only:
            morsel["httponly"] = True
        if same_site:
            morsel["samesite"] = same_site
        self.writer.add_header("Set-Cookie", morsel.OutputString())

    # ─────────────────────────────────────────────────────────────────────
    # PER-REQUEST STORE
    # ─────────────────────────────────────────────────────────────────────

    def set(self, key: str, value: Any) -> None:
        self.keys[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.keys.get(key, default)

    def must_get(self, key: str) -> Any:
        """Like get(), but a missing key is a programming error."""
        if key not in self.keys:
            raise KeyError(f"key {key!r} does not exist in context")
        return self.keys[key]

    # ─────────────────────────────────────────────────────────────────────
    # DEADLINE
    # ─────────────────────────────────────────────────────────────────────

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (None if there is no deadline)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    def err(self) -> Optional[DeadlineExceeded]:
        """DeadlineExceeded once the deadline has passed, else None."""
        if self.expired:
            return DeadlineExceeded()
        return None

    def __repr__(self) -> str:
        return f"Context({self.method} {self.path}, status={self.writer.status})"


def run_chain(ctx: Context, handlers: List[HandlerFunc], params: Optional[Dict[str, str]] = None) -> None:
    """Install `handlers` on ctx and start it from the first handler."""
    ctx.install(handlers, params)
    ctx.next()
