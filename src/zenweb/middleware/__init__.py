"""
=============================================================================
BUILT-IN MIDDLEWARE
=============================================================================

Every middleware is a factory returning a plain handler. It runs its
"before" code, calls ctx.next() to continue (or doesn't, to stop), and
runs its "after" code when next() returns.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                 TYPICAL GLOBAL CHAIN                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   recovery()        catches exceptions from everything below        │
    │   access_logger()   one line per request, with final status         │
    │   cors()            answers preflights, may 403 unknown origins     │
    │   security()        response headers, size limit, IP rules          │
    │   rate_limiter()    may stop with 429                               │
    │        │                                                            │
    │   group middleware (e.g. auth() on /api)                            │
    │        │                                                            │
    │   route handler                                                     │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .auth import (
    AuthConfig,
    AuthError,
    BaseClaims,
    InvalidTokenError,
    MissingTokenError,
    auth,
    auth_with_config,
    generate_token,
    get_claims,
)
from .cors import CORSConfig, cors
from .logging import AccessLogFile, LoggerConfig, access_logger
from .rate_limit import RateLimitConfig, RateLimiter, Strategy, rate_limiter
from .recovery import recovery
from .security import CSPDirectives, SecurityConfig, SecurityStrategy, SecurityViolation, security

__all__ = [
    # Recovery and logging
    "recovery",
    "access_logger",
    "LoggerConfig",
    "AccessLogFile",

    # CORS and security
    "cors",
    "CORSConfig",
    "security",
    "SecurityConfig",
    "SecurityStrategy",
    "SecurityViolation",
    "CSPDirectives",

    # Rate limiting
    "rate_limiter",
    "RateLimiter",
    "RateLimitConfig",
    "Strategy",

    # Authentication
    "auth",
    "auth_with_config",
    "AuthConfig",
    "AuthError",
    "MissingTokenError",
    "InvalidTokenError",
    "BaseClaims",
    "generate_token",
    "get_claims",
]
