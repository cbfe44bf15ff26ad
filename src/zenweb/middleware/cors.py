"""
=============================================================================
CORS (Cross-Origin Resource Sharing) MIDDLEWARE
=============================================================================

Browsers only let a page at https://app.example.com read responses from
another origin (scheme + host + port) when that server says so through
Access-Control-* response headers. This middleware says so.

    engine.use(cors(CORSConfig(allow_origins=["https://app.example.com"])))

=============================================================================
DECISION FLOW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                     │
    │   no Origin header ─────────────────────────────► ctx.next()        │
    │        │                                                            │
    │   Vary: Origin                                                      │
    │        │                                                            │
    │   origin not allowed ───────────────────────────► 403, halt         │
    │        │                                                            │
    │   Access-Control-Allow-Origin: <origin> or *                        │
    │   Access-Control-Allow-Credentials: true (if configured)            │
    │        │                                                            │
    │   OPTIONS (preflight) ──► Allow-Methods, Allow-Headers, Max-Age     │
    │        │                  204, halt                                 │
    │        │                                                            │
    │   Access-Control-Expose-Headers ────────────────► ctx.next()        │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Register cors() as GLOBAL middleware: unmatched OPTIONS requests only run
the global chain, so that is where preflights get answered.

=============================================================================
INTERVIEW QUESTIONS ABOUT CORS
=============================================================================

Q: "Why can't you use * with credentials?"
A: "Browsers reject Allow-Origin: * on credentialed requests. This
   middleware turns the combination into plain * without credentials
   rather than echoing every origin with credentials, which would hand
   cookies to any site."

Q: "What's the Vary header for in CORS?"
A: "The response depends on the Origin header. Without Vary: Origin a
   shared cache could replay origin A's response to origin B."

Q: "CORS is bypassed by curl. Is it still useful?"
A: "Yes. It protects users of a browser from other sites making calls
   with their cookies. Server-to-server calls never needed it."

=============================================================================
"""

import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import List, Optional

from ..context import Context, HandlerFunc


logger = logging.getLogger(__name__)


@dataclass
class CORSConfig:
    """
    CORS settings.

    DEVELOPMENT:
        CORSConfig()        # any origin, no credentials

    PRODUCTION:
        CORSConfig(
            allow_origins=["https://myapp.com"],
            allow_credentials=True,
            allow_headers=["Authorization", "Content-Type"],
        )

    An empty allow_headers list echoes whatever the preflight asks for.
    """

    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    allow_methods: List[str] = field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]
    )
    allow_headers: List[str] = field(default_factory=list)
    expose_headers: List[str] = field(default_factory=list)
    allow_credentials: bool = False
    max_age: int = 86400  # 24 hours

    def __post_init__(self):
        if self.allow_credentials and self.allow_all_origins:
            logger.warning("CORS: wildcard origin cannot be combined with credentials; credentials disabled")
            self.allow_credentials = False

    @property
    def allow_all_origins(self) -> bool:
        return "*" in self.allow_origins

    def is_origin_allowed(self, origin: str) -> bool:
        return self.allow_all_origins or origin in self.allow_origins


def default_cors_config() -> CORSConfig:
    return CORSConfig()


def _add_vary(ctx: Context, value: str) -> None:
    existing = ctx.writer.get_header("Vary")
    if not existing:
        ctx.set_header("Vary", value)
    elif value.lower() not in [v.strip().lower() for v in existing.split(",")]:
        ctx.set_header("Vary", f"{existing}, {value}")


def cors(config: Optional[CORSConfig] = None) -> HandlerFunc:
    """Build the CORS middleware."""
    cfg = config or default_cors_config()
    allow_methods = ", ".join(m.upper() for m in cfg.allow_methods)
    allow_headers = ", ".join(cfg.allow_headers)
    expose_headers = ", ".join(cfg.expose_headers)

    def handle_cors(ctx: Context) -> None:
        origin = ctx.get_header("Origin")
        if not origin:
            ctx.next()
            return

        _add_vary(ctx, "Origin")
        if not cfg.is_origin_allowed(origin):
            logger.debug(f"CORS: rejected origin {origin} for {ctx.method} {ctx.path}")
            ctx.quit_with_status(HTTPStatus.FORBIDDEN)
            return

        ctx.set_header("Access-Control-Allow-Origin", "*" if cfg.allow_all_origins else origin)
        if cfg.allow_credentials:
            ctx.set_header("Access-Control-Allow-Credentials", "true")

        if ctx.method == "OPTIONS":
            ctx.set_header("Access-Control-Allow-Methods", allow_methods)
            headers = allow_headers or ctx.get_header("Access-Control-Request-Headers")
            if headers:
                ctx.set_header("Access-Control-Allow-Headers", headers)
            if cfg.max_age > 0:
                ctx.set_header("Access-Control-Max-Age", str(cfg.max_age))
            ctx.status(HTTPStatus.NO_CONTENT)
            ctx.quit()
            return

        if expose_headers:
            ctx.set_header("Access-Control-Expose-Headers", expose_headers)
        ctx.next()

    return handle_cors


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# Preflights are answered with 204 and never reach route handlers.
# Actual requests get Allow-Origin / Expose-Headers and continue.
# Disallowed origins get 403.
#
# SECURITY NOTES:
# - In production, list exact origins instead of "*"
# - CORS is enforced by browsers, not servers
# =============================================================================
