"""
=============================================================================
ENGINE
=============================================================================

The application object. An Engine IS the root RouteGroup (empty prefix),
so routes and groups are registered on it directly, and it owns the
Router plus the host server loop.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     REQUEST PROCESSING FLOW                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   SocketServer (worker thread)                                      │
    │        │  HTTPRequest                                               │
    │        ▼                                                            │
    │   Engine.handle(request)                                            │
    │        │  Context(request, ResponseWriter(), deadline)              │
    │        ▼                                                            │
    │   Router.handle(ctx) ──► chain: global ++ group ++ route            │
    │        │                                                            │
    │        ▼                                                            │
    │   ctx.writer.to_response() ──► HTTPResponse ──► socket              │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Engine.handle never raises. If a handler raises and no recovery()
middleware is installed, a last-resort guard logs the traceback and
answers 500 so the worker thread survives.

=============================================================================
USAGE
=============================================================================

    from zenweb import Engine
    from zenweb.middleware import recovery, access_logger

    app = Engine()
    app.use(recovery(), access_logger())

    @app.get("/users/:id")
    def get_user(ctx):
        ctx.json(200, {"id": ctx.param("id")})

    api = app.group("/api")
    api.use(auth("secret"))
    api.get("/me", lambda ctx: ctx.json(200, {"user": ctx.claims.user_id}))

    app.run("0.0.0.0", 8080)

=============================================================================
"""

import logging
import time
from http import HTTPStatus
from typing import List, Optional, Tuple

from .config import EngineConfig
from .context import Context, HandlerFunc
from .core.socket_server import SocketServer
from .http.matcher import ParamValidator
from .http.request import HTTPRequest
from .http.response import HTTPResponse
from .http.router import RouteGroup, Router
from .middleware.logging import JSONLogFormatter
from .timeout import shutdown_timeout_executor


logger = logging.getLogger(__name__)

INTERNAL_ERROR_BODY = {"error": "Internal Server Error"}


class Engine(RouteGroup):
    """
    zenweb application: root route group, router and server.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.config.validate()

        validator = ParamValidator() if self.config.validate_path_params else None
        super().__init__(Router(validator=validator))
        self._server: Optional[SocketServer] = None

    # =========================================================================
    # SETUP
    # =========================================================================

    def use(self, *handlers: HandlerFunc) -> "Engine":
        """
        Append GLOBAL middleware (runs for every route, 404 and OPTIONS).

        Install global middleware before registering routes.
        """
        self.router.use(*handlers)
        return self

    def routes(self) -> List[Tuple[str, str]]:
        """Registered (method, pattern) pairs."""
        return self.router.routes()

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def new_context(self, request: HTTPRequest) -> Context:
        deadline = None
        if self.config.request_timeout is not None:
            deadline = time.monotonic() + self.config.request_timeout
        return Context(request, deadline=deadline)

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """
        Dispatch one request in-process and return the finished response.

        This is what the host loop calls for every parsed request, and what
        tests call directly.
        """
        ctx = self.new_context(request)
        try:
            self.router.handle(ctx)
        except Exception:
            logger.exception(f"unhandled error in {request.method} {request.path} (no recovery middleware)")
            ctx.json(HTTPStatus.INTERNAL_SERVER_ERROR, INTERNAL_ERROR_BODY)
        return ctx.writer.to_response()

    # =========================================================================
    # SERVING
    # =========================================================================

    def run(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """
        Serve over TCP until shutdown() or Ctrl+C. Blocks.

        Args:
            host: Override EngineConfig.host.
            port: Override EngineConfig.port.
        """
        if host is not None:
            self.config.host = host
        if port is not None:
            self.config.port = port
        self.config.validate()
        self._setup_logging()

        self._server = SocketServer(self.config, self.handle)
        try:
            self._server.start()
        except KeyboardInterrupt:
            logger.info("received keyboard interrupt")
        finally:
            self._server.shutdown()
            shutdown_timeout_executor()

    def shutdown(self) -> None:
        """Stop a running server (callable from another thread)."""
        if self._server is not None:
            self._server.shutdown()

    @property
    def server(self) -> Optional[SocketServer]:
        return self._server

    def _setup_logging(self) -> None:
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        handler = logging.StreamHandler()
        if self.config.log_format == "json":
            handler.setFormatter(JSONLogFormatter())
        else:
            handler.setFormatter(logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))
        logging.basicConfig(level=level, handlers=[handler])
        logging.getLogger("zenweb").setLevel(level)
