"""
=============================================================================
ZENWEB - Gin/Express-style HTTP framework
=============================================================================

Route registration with :name parameters, a middleware chain with explicit
continuation (ctx.next()), route groups, and a set of cross-cutting
middleware (recovery, access logging, CORS, security headers, rate
limiting, JWT auth), served by a small HTTP/1.1 socket server.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    zenweb/
    ├── __init__.py          # This file - package exports
    ├── engine.py            # Engine: root route group + dispatch + run()
    ├── context.py           # Context and HandlerChain (the cursor)
    ├── config.py            # EngineConfig dataclass
    ├── errors.py            # ZenError hierarchy
    ├── timeout.py           # call_with_timeout helper
    ├── core/                # Networking
    │   ├── socket_server.py # accept loop + worker pool
    │   └── connection.py    # one client socket, keep-alive framing
    ├── http/                # Protocol and dispatch
    │   ├── request.py       # HTTPRequest + RequestParser
    │   ├── response.py      # HTTPResponse + write-once ResponseWriter
    │   ├── matcher.py       # :param path matching + ParamValidator
    │   └── router.py        # Router and RouteGroup
    └── middleware/
        ├── recovery.py      # exception → 500
        ├── logging.py       # access log
        ├── cors.py          # CORS / preflight
        ├── security.py      # security headers, size limit, IP rules
        ├── rate_limit.py    # four-strategy RateLimiter
        └── auth.py          # JWT auth (PyJWT)

=============================================================================
QUICK START
=============================================================================

    from zenweb import Engine
    from zenweb.middleware import recovery, access_logger

    app = Engine()
    app.use(recovery(), access_logger())

    @app.get("/")
    def index(ctx):
        ctx.json(200, {"message": "Hello, World!"})

    @app.get("/users/:id")
    def get_user(ctx):
        ctx.json(200, {"id": ctx.param("id")})

    app.run("127.0.0.1", 8080)

=============================================================================
"""

__version__ = "1.0.0"

from .config import EngineConfig
from .context import Context, HandlerChain, HandlerFunc
from .engine import Engine
from .errors import (
    BadJSONError,
    BindError,
    DeadlineExceeded,
    EmptyBodyError,
    HTTPParseError,
    ZenError,
)
from .http.request import HTTPRequest
from .http.response import HTTPResponse
from .http.router import RouteGroup, Router
from .timeout import DEFAULT_TIMEOUT, call_with_timeout

__all__ = [
    "Engine",
    "EngineConfig",
    "Context",
    "HandlerChain",
    "HandlerFunc",
    "Router",
    "RouteGroup",
    "HTTPRequest",
    "HTTPResponse",
    "ZenError",
    "HTTPParseError",
    "BindError",
    "EmptyBodyError",
    "BadJSONError",
    "DeadlineExceeded",
    "call_with_timeout",
    "DEFAULT_TIMEOUT",
    "__version__",
]
