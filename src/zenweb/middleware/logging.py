"""
=============================================================================
ACCESS LOGGING MIDDLEWARE
=============================================================================

One log line per request, emitted AFTER the rest of the chain has run so
the line carries the final status code and the latency.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      ACCESS LOG FLOW                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   request ──► access_logger ──► ... ──► handler                     │
    │                    │  start = perf_counter()                        │
    │                    │  ctx.next()  ─────────────────────►            │
    │                    │  ◄─────────────────────────────── returns      │
    │                    │  latency = perf_counter() - start              │
    │                    ▼                                                │
    │   "200 | 1.42ms | 10.0.0.7 | GET /users/42"  → zenweb.access        │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHERE THE LINES GO
=============================================================================

Lines go to the standard `zenweb.access` logger. The application decides
what to do with them through ordinary logging configuration:

    logging.getLogger("zenweb.access").addHandler(my_handler)

For the common "also append to a file" case there is AccessLogFile, an
explicitly constructed sink the application owns and closes:

    sink = AccessLogFile("logs/access.log")
    engine.use(access_logger(LoggerConfig(log_file=sink)))
    try:
        engine.run()
    finally:
        sink.close()

This module keeps no global file handles and installs no signal handlers.

=============================================================================
INTERVIEW QUESTIONS ABOUT LOGGING
=============================================================================

Q: "Why put the access logger near the front of the chain?"
A: "So it wraps everything after it: requests rejected by auth or the
   rate limiter are logged with their 401/429, and the latency covers
   the full processing time."

Q: "Why add a request ID header?"
A: "A client can quote it in a bug report and you can grep every log
   line for that request across services."

=============================================================================
"""

import json
import logging
import os
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..context import Context, HandlerFunc


logger = logging.getLogger("zenweb.access")

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class RequestLog:
    """Structured access log entry."""

    request_id: str
    method: str
    path: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    latency_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["latency_ms"] = round(self.latency_ms, 3)
        return data

    def to_text(self) -> str:
        return (
            f"{self.status_code:3d} | {self.latency_ms:10.3f}ms | {self.client_ip:>15} | "
            f"{self.method:<7} {self.path}"
        )


class AccessLogFile:
    """
    File sink for access lines, owned by the application.

    Creates parent directories on construction. Safe to share between
    worker threads (logging.FileHandler serializes writes).
    """

    def __init__(self, path: str, encoding: str = "utf-8"):
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        self.path = path
        self._handler: Optional[logging.FileHandler] = logging.FileHandler(path, encoding=encoding)
        self._handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))

    @property
    def closed(self) -> bool:
        return self._handler is None

    def write(self, line: str) -> None:
        if self._handler is None:
            return
        record = logging.makeLogRecord({"name": logger.name, "levelno": logging.INFO,
                                        "levelname": "INFO", "msg": line})
        self._handler.handle(record)

    def close(self) -> None:
        if self._handler is not None:
            self._handler.close()
            self._handler = None

    def __enter__(self) -> "AccessLogFile":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


@dataclass
class LoggerConfig:
    """
    Access logger settings.

    formatter, when set, replaces the built-in text/json rendering:

        def short(ctx, latency_seconds):
            return f"{ctx.method} {ctx.path} {ctx.response_status}"
    """

    skip_paths: List[str] = field(default_factory=list)
    log_format: str = "text"
    formatter: Optional[Callable[[Context, float], str]] = None
    include_request_id: bool = True
    level: int = logging.INFO
    log_file: Optional[AccessLogFile] = None


def default_logger_config() -> LoggerConfig:
    return LoggerConfig()


def access_logger(config: Optional[LoggerConfig] = None) -> HandlerFunc:
    """
    Build the access logging middleware.

    Args:
        config: LoggerConfig; defaults to text lines at INFO level.
    """
    cfg = config or default_logger_config()
    skip = set(cfg.skip_paths)

    def log_requests(ctx: Context) -> None:
        request_id = ctx.get_header(REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        ctx.set("request_id", request_id)
        if cfg.include_request_id:
            ctx.set_header(REQUEST_ID_HEADER, request_id)

        if ctx.path in skip:
            ctx.next()
            return

        start = time.perf_counter()
        ctx.next()
        latency = time.perf_counter() - start

        if cfg.formatter is not None:
            line = cfg.formatter(ctx, latency)
        else:
            path = ctx.path
            raw_query = "&".join(
                f"{name}={value}" for name, values in ctx.request.query_params.items() for value in values
            )
            if raw_query:
                path = f"{path}?{raw_query}"
            entry = RequestLog(
                request_id=request_id,
                method=ctx.method,
                path=path,
                client_ip=ctx.client_ip(),
                user_agent=ctx.request.user_agent or "-",
                status_code=ctx.response_status,
                content_length=len(ctx.writer.body),
                latency_ms=latency * 1000,
                timestamp=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            )
            line = json.dumps(entry.to_dict()) if cfg.log_format == "json" else entry.to_text()

        logger.log(cfg.level, line)
        if cfg.log_file is not None:
            cfg.log_file.write(line)

    return log_requests


class JSONLogFormatter(logging.Formatter):
    """
    Formatter emitting one JSON object per record.

    Used by Engine.run() when EngineConfig.log_format == "json".
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)
