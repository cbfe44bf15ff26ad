"""
=============================================================================
ENGINE CONFIGURATION
=============================================================================

Centralized settings for a zenweb Engine and the host server loop.

Middleware do NOT read this object. Each middleware takes its own small
config dataclass (RateLimitConfig, AuthConfig, CORSConfig, ...) so that it
can be constructed and tested in isolation. EngineConfig only covers what
the engine itself owns: the listening socket, the worker pool, request
limits, deadlines and logging setup.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   Priority (highest to lowest):                                     │
    │                                                                     │
    │   1. Explicit keyword arguments                                     │
    │      └── EngineConfig(port=3000)                                    │
    │                                                                     │
    │   2. Environment variables (EngineConfig.from_env())                │
    │      └── ZEN_PORT=3000 python app.py                                │
    │                                                                     │
    │   3. Default values (in this dataclass)                             │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Validation happens once, when the Engine is constructed. A bad port or a
negative timeout fails at startup, not on the first request.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class EngineConfig:
    """
    Configuration for an Engine.

    Development:
        EngineConfig(host="127.0.0.1", port=8080, log_level="DEBUG")

    Production:
        EngineConfig(
            host="0.0.0.0",
            port=80,
            max_workers=32,
            request_timeout=15.0,
            validate_path_params=True,
        )
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """Address to bind. "0.0.0.0" listens on every interface."""

    port: int = 8080

    backlog: int = 128
    """Maximum number of queued, not-yet-accepted connections."""

    buffer_size: int = 8192
    """Bytes read from the socket per recv() call."""

    socket_timeout: Optional[float] = 30.0
    """Per-connection read timeout. None blocks forever."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True

    keep_alive_timeout: float = 5.0
    """Idle seconds before a keep-alive connection is closed."""

    max_keep_alive_requests: int = 100

    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    """Requests larger than this are answered with 413 by the parser."""

    server_name: str = "zenweb/1.0"
    """Value of the Server response header."""

    # ─────────────────────────────────────────────────────────────────────
    # DISPATCH SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    max_workers: int = 16
    """Worker threads serving connections (one request per worker)."""

    request_timeout: Optional[float] = None
    """
    Per-request deadline in seconds, exposed as ctx.deadline.
    The engine does not abort handlers; handlers check ctx.expired.
    """

    validate_path_params: bool = False
    """Reject suspicious :param values (treated as a routing miss)."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"

    log_format: str = "text"
    """'text' or 'json'. Applied by Engine.run() via logging.basicConfig."""

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        ZEN_HOST              Bind address (default: 127.0.0.1)
        ZEN_PORT              Port (default: 8080)
        ZEN_WORKERS           Worker threads (default: 16)
        ZEN_REQUEST_TIMEOUT   Per-request deadline in seconds (default: none)
        ZEN_MAX_REQUEST_SIZE  Maximum request size in bytes
        ZEN_VALIDATE_PARAMS   "1"/"true" enables path parameter validation
        ZEN_LOG_LEVEL         Logging level (default: INFO)
        ZEN_LOG_FORMAT        text or json (default: text)

        =====================================================================
        """
        timeout = os.getenv("ZEN_REQUEST_TIMEOUT")
        return cls(
            host=os.getenv("ZEN_HOST", "127.0.0.1"),
            port=int(os.getenv("ZEN_PORT", "8080")),
            max_workers=int(os.getenv("ZEN_WORKERS", "16")),
            request_timeout=float(timeout) if timeout else None,
            max_request_size=int(os.getenv("ZEN_MAX_REQUEST_SIZE", str(10 * 1024 * 1024))),
            validate_path_params=os.getenv("ZEN_VALIDATE_PARAMS", "").lower() in ("1", "true", "yes"),
            log_level=os.getenv("ZEN_LOG_LEVEL", "INFO"),
            log_format=os.getenv("ZEN_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: on the first invalid setting.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.socket_timeout is not None and self.socket_timeout <= 0:
            raise ValueError("socket_timeout must be > 0")

        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")

        if self.max_request_size < 1:
            raise ValueError("max_request_size must be >= 1")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. EngineConfig is a plain dataclass with defaults for development
# 2. from_env() reads ZEN_* variables for container deployments
# 3. validate() is called by Engine.__init__ (fail fast)
# 4. Middleware carry their own config types; this one is engine-only
# =============================================================================
