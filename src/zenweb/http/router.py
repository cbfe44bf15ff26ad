"""
=============================================================================
URL ROUTER AND ROUTE GROUPS
=============================================================================

The Router owns two things:

    1. a registration table     method → pattern → Route (composed chain)
    2. a global middleware list applied to every route

RouteGroup is the user-facing registration API. It carries a URL prefix
and its own middleware list, and composes the final chain for each route
it registers.

=============================================================================
ROUTING FLOW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        ROUTING FLOW                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   GET /users/123                                                    │
    │        │                                                            │
    │        ▼                                                            │
    │   ┌──────────────────────────────────────────────────────────────┐  │
    │   │  ROUTER   table["GET"], most specific first                  │  │
    │   │                                                              │  │
    │   │   /users/me        → [G..., handler]     no                  │  │
    │   │   /users/:id       → [G..., P..., h]     MATCH {"id": "123"} │  │
    │   │   /users           → [G..., handler]                         │  │
    │   └──────────────────────────────────────────────────────────────┘  │
    │        │                                                            │
    │        ▼                                                            │
    │   ctx.params = {"id": "123"}; run the route's chain                 │
    │                                                                     │
    │   no match  → run global middleware, then 404 "404 NOT FOUND"       │
    │   OPTIONS   → matched chain, or globals then 204 (never 404)        │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CHAIN COMPOSITION
=============================================================================

Chains are composed ONCE, at registration time:

    engine.use(G)                       global:  [G]
    api = engine.group("/api")
    api.use(P)                          api:     [P]
    v1 = api.group("/v1")               v1:      [P]        ← snapshot copy
    v1.use(L)                           v1:      [P, L]
    v1.get("/users", h)

    GET /api/v1/users  →  [G, P, L, h]
                           ─  ────  ─
                       global group route

Consequences:

- A child group gets a COPY of its parent's middleware at creation. Later
  api.use(X) does not reach v1.
- Group middleware stays in the group. It is never promoted to global.
- Global middleware must be installed before routes are registered.
  Router.use() logs a warning when routes already exist, because those
  routes were composed without it.

=============================================================================
INTERVIEW QUESTIONS ABOUT ROUTING
=============================================================================

Q: "How do you handle route conflicts like /users/me vs /users/:id?"
A: "Deterministically. Candidates are sorted most specific first: at the
   first segment where two patterns differ in kind, the literal wins.
   Equal shapes fall back to registration order."

Q: "Why compose chains at registration time instead of per request?"
A: "Per-request work becomes a dictionary lookup and a linear match.
   Nothing is allocated to build the chain while serving."

Q: "Why does an unmatched OPTIONS request get 204 instead of 404?"
A: "Browsers send CORS preflights to any path. Global CORS middleware
   answers them; if nothing does, a 204 is still a valid, harmless
   preflight response."

=============================================================================
"""

import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from itertools import count
from typing import Dict, List, Optional, Tuple

from ..context import Context, HandlerFunc, run_chain
from .matcher import ParamValidator, match_segments, specificity, split_path


logger = logging.getLogger(__name__)

NOT_FOUND_BODY = "404 NOT FOUND"

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD")


def join_paths(prefix: str, path: str) -> str:
    """Join URL fragments into a normalized pattern ("/api" + "/v1/" → "/api/v1")."""
    segments = split_path(prefix) + split_path(path)
    return "/" + "/".join(segments)


@dataclass
class Route:
    """A registered (method, pattern) and its fully composed handler chain."""

    method: str
    pattern: str
    handlers: Tuple[HandlerFunc, ...]
    order: int = 0
    segments: List[str] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.segments:
            self.segments = split_path(self.pattern)


class Router:
    """
    Registration tables and request dispatch.

    Application code rarely touches the Router directly; it registers
    through an Engine or a RouteGroup.
    """

    def __init__(self, validator: Optional[ParamValidator] = None):
        self.validator = validator
        self.global_middleware: List[HandlerFunc] = []
        self._tables: Dict[str, Dict[str, Route]] = {}
        self._sorted: Dict[str, List[Route]] = {}
        self._order = count()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def use(self, *handlers: HandlerFunc) -> None:
        """Append handlers to the global middleware list, in order."""
        if self._tables:
            logger.warning(
                f"global middleware added after {len(self.routes())} route(s) were registered; "
                "existing routes will not run it"
            )
        self.global_middleware.extend(handlers)

    def add_route(self, method: str, pattern: str, handlers: List[HandlerFunc]) -> Route:
        """
        Store an already-composed chain under (method, pattern).

        Registering the same pair again replaces the earlier chain.
        """
        if not handlers:
            raise ValueError(f"no handlers given for {method} {pattern}")

        method = method.upper()
        pattern = join_paths("", pattern)
        route = Route(method=method, pattern=pattern, handlers=tuple(handlers), order=next(self._order))

        table = self._tables.setdefault(method, {})
        if pattern in table:
            logger.debug(f"replacing route {method} {pattern}")
        table[pattern] = route
        self._sorted.pop(method, None)
        return route

    def routes(self) -> List[Tuple[str, str]]:
        """Registered (method, pattern) pairs in registration order."""
        all_routes = [route for table in self._tables.values() for route in table.values()]
        all_routes.sort(key=lambda r: r.order)
        return [(r.method, r.pattern) for r in all_routes]

    # =========================================================================
    # MATCHING
    # =========================================================================

    def _candidates(self, method: str) -> List[Route]:
        candidates = self._sorted.get(method)
        if candidates is None:
            table = self._tables.get(method, {})
            candidates = sorted(table.values(), key=lambda r: (specificity(r.pattern), r.order))
            self._sorted[method] = candidates
        return candidates

    def match(self, method: str, path: str) -> Optional[Tuple[Route, Dict[str, str]]]:
        """First route (most specific first) matching method and path."""
        path_segments = split_path(path)
        for route in self._candidates(method.upper()):
            params = match_segments(route.segments, path_segments, self.validator)
            if params is not None:
                return route, params
        return None

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def handle(self, ctx: Context) -> None:
        """Resolve ctx's method and path and drive the matching chain."""
        if ctx.method == "OPTIONS":
            self._handle_options(ctx)
            return

        found = self.match(ctx.method, ctx.path)
        if found is not None:
            route, params = found
            run_chain(ctx, list(route.handlers), params)
            return

        self._run_fallback(ctx, HTTPStatus.NOT_FOUND, NOT_FOUND_BODY)

    def _handle_options(self, ctx: Context) -> None:
        found = self.match("OPTIONS", ctx.path)
        if found is not None:
            # The registered chain already starts with the global middleware.
            route, params = found
            run_chain(ctx, list(route.handlers), params)
            return

        self._run_fallback(ctx, HTTPStatus.NO_CONTENT, "")

    def _run_fallback(self, ctx: Context, status: int, body: str) -> None:
        """
        Run global middleware alone, then write the default response if
        nothing has been written.

        The default is also offered as a final chain entry so middleware
        wrapping ctx.next() (access logging) observes the real status.
        """
        def default_response(c: Context) -> None:
            if not c.written:
                c.text(status, body)

        if self.global_middleware:
            run_chain(ctx, [*self.global_middleware, default_response])
        if not ctx.written:
            ctx.text(status, body)


class RouteGroup:
    """
    A URL prefix plus group-scoped middleware.

    Example:
        api = engine.group("/api", auth_mw)

        @api.get("/users/:id")
        def get_user(ctx):
            ctx.json(200, {"id": ctx.param("id")})

        admin = api.group("/admin")     # inherits a copy of [auth_mw]
        admin.use(require_admin)        # local to admin and its children
    """

    def __init__(self, router: Router, prefix: str = "", middleware: Optional[List[HandlerFunc]] = None):
        self.router = router
        self.prefix = join_paths("", prefix) if prefix else ""
        self.middleware: List[HandlerFunc] = list(middleware or [])

    def group(self, prefix: str, *handlers: HandlerFunc) -> "RouteGroup":
        """Child group: prefix appended, middleware copied, then `handlers` added."""
        child = RouteGroup(self.router, join_paths(self.prefix, prefix), list(self.middleware))
        child.middleware.extend(handlers)
        return child

    def use(self, *handlers: HandlerFunc) -> "RouteGroup":
        """Append group-scoped middleware. Affects routes registered afterwards."""
        self.middleware.extend(handlers)
        return self

    def route(self, method: str, pattern: str, *handlers: HandlerFunc):
        """
        Register handlers for method + pattern under this group.

        Called without handlers it returns a decorator.
        """
        if not handlers:
            def decorator(fn: HandlerFunc) -> HandlerFunc:
                self.route(method, pattern, fn)
                return fn
            return decorator

        chain = [*self.router.global_middleware, *self.middleware, *handlers]
        return self.router.add_route(method, join_paths(self.prefix, pattern), chain)

    def get(self, pattern: str, *handlers: HandlerFunc):
        return self.route("GET", pattern, *handlers)

    def post(self, pattern: str, *handlers: HandlerFunc):
        return self.route("POST", pattern, *handlers)

    def put(self, pattern: str, *handlers: HandlerFunc):
        return self.route("PUT", pattern, *handlers)

    def delete(self, pattern: str, *handlers: HandlerFunc):
        return self.route("DELETE", pattern, *handlers)

    def patch(self, pattern: str, *handlers: HandlerFunc):
        return self.route("PATCH", pattern, *handlers)

    def options(self, pattern: str, *handlers: HandlerFunc):
        return self.route("OPTIONS", pattern, *handlers)

    def head(self, pattern: str, *handlers: HandlerFunc):
        return self.route("HEAD", pattern, *handlers)

    def any(self, pattern: str, *handlers: HandlerFunc) -> None:
        """Register the same handlers for every method in HTTP_METHODS."""
        if not handlers:
            raise ValueError("any() needs at least one handler")
        for method in HTTP_METHODS:
            self.route(method, pattern, *handlers)
