"""
=============================================================================
HTTP RESPONSE
=============================================================================

Two objects live here:

    ResponseWriter   mutable, per request, handed to the handler chain
                     through the Context. Status is WRITE-ONCE.

    HTTPResponse     plain data container produced from the writer when
                     the chain finishes; knows how to serialize itself.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      RESPONSE LIFECYCLE                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   handler chain          ResponseWriter         HTTPResponse        │
    │   ─────────────          ──────────────         ────────────        │
    │   ctx.json(200, ...) ──► status=200, body  ──►  to_bytes()   ──►    │
    │   ctx.text(500, ...) ──► (dropped: already        socket.sendall    │
    │                           written)                                  │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WRITE-ONCE STATUS
=============================================================================

Several layers may try to finalize the same response: the handler, the
recovery middleware, the router's 404 fallback. Only the FIRST status
write takes effect. Status 0 is the "nothing written yet" sentinel, so
any layer can ask `writer.written` before supplying a default.

    writer.status == 0        → nothing written, defaults may apply
    writer.write_header(404)  → status is now 404
    writer.write_header(500)  → ignored (debug log only)

Headers stay mutable until the response is serialized; middleware that
runs after the handler (CORS, logging) can still add headers.

=============================================================================
INTERVIEW QUESTIONS ABOUT HTTP RESPONSES
=============================================================================

Q: "How does the client know when the response body ends?"
A: "Content-Length gives the exact byte count. The alternative is
   Transfer-Encoding: chunked. This server always sends Content-Length."

Q: "What's the difference between 401 and 403?"
A: "401 means 'I don't know who you are, authenticate.' 403 means
   'I know who you are, and you may not do this.'"

=============================================================================
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Dict, List, Optional, Union


logger = logging.getLogger(__name__)

HeaderValue = Union[str, List[str]]


def reason_phrase(status: int) -> str:
    """Reason phrase for a status code ("" for unknown codes)."""
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


@dataclass
class HTTPResponse:
    """
    A finished HTTP response.

    Header values may be a list for headers that repeat on the wire
    (Set-Cookie).
    """

    status: int = HTTPStatus.OK
    headers: Dict[str, HeaderValue] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """Example: "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status)} {reason_phrase(self.status)}".rstrip()

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup (first value for list headers)."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value[0] if isinstance(value, list) else value
        return default

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    @property
    def json(self) -> Any:
        return json.loads(self.body)

    def to_bytes(self, server_name: str = "zenweb/1.0", include_body: bool = True) -> bytes:
        """
        Serialize the response for socket.sendall().

            HTTP/1.1 200 OK\\r\\n
            Content-Type: application/json\\r\\n
            Content-Length: 27\\r\\n       ← auto
            Date: Wed, 01 Jan 2026 ...\\r\\n  ← auto
            Server: zenweb/1.0\\r\\n       ← auto
            \\r\\n
            {"message": "Hello"}

        Args:
            server_name: Value of the Server header when none is set.
            include_body: False for HEAD requests (headers still describe
                the body that would have been sent).
        """
        response_headers = dict(self.headers)
        present = {name.lower() for name in response_headers}

        if "content-length" not in present:
            response_headers["Content-Length"] = str(len(self.body))
        if "date" not in present:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))
        if "server" not in present:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            values = value if isinstance(value, list) else [value]
            for item in values:
                lines.append(f"{name}: {item}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        return header_bytes + (self.body if include_body else b"")


class ResponseWriter:
    """
    Write-once response state for one request.

    Example:
        writer = ResponseWriter()
        writer.write(200, b"ok", "text/plain; charset=utf-8")
        writer.write(500, b"boom")      # dropped
        writer.status                   # 200
    """

    def __init__(self):
        self.status = 0
        self.headers: Dict[str, HeaderValue] = {}
        self.body = b""

    @property
    def written(self) -> bool:
        return self.status != 0

    # ─────────────────────────────────────────────────────────────────────
    # HEADERS
    # ─────────────────────────────────────────────────────────────────────

    def _find(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key in self.headers:
            if key.lower() == lowered:
                return key
        return None

    def set_header(self, name: str, value: str) -> None:
        """Set (replace) a header, keeping the first-seen spelling."""
        key = self._find(name) or name
        self.headers[key] = value

    def add_header(self, name: str, value: str) -> None:
        """Append a value to a repeatable header such as Set-Cookie."""
        key = self._find(name)
        if key is None:
            self.headers[name] = [value]
            return
        existing = self.headers[key]
        if isinstance(existing, list):
            existing.append(value)
        else:
            self.headers[key] = [existing, value]

    def get_header(self, name: str) -> Optional[str]:
        key = self._find(name)
        if key is None:
            return None
        value = self.headers[key]
        return value[0] if isinstance(value, list) else value

    def del_header(self, name: str) -> None:
        key = self._find(name)
        if key is not None:
            del self.headers[key]

    # ─────────────────────────────────────────────────────────────────────
    # STATUS AND BODY
    # ─────────────────────────────────────────────────────────────────────

    def write_header(self, status: int) -> bool:
        """
        Record the status code if none has been written.

        Returns:
            True if this call took effect, False if it was dropped.
        """
        if self.written:
            logger.debug(f"status {status} dropped, response already written with {self.status}")
            return False
        self.status = int(status)
        return True

    def write(self, status: int, body: Union[str, bytes] = b"", content_type: Optional[str] = None) -> bool:
        """
        Write status, body and content type in one step.

        Dropped entirely when a status was already written.
        """
        if not self.write_header(status):
            return False
        if content_type:
            self.set_header("Content-Type", content_type)
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        return True

    def to_response(self, default_status: int = HTTPStatus.OK) -> HTTPResponse:
        """Freeze into an HTTPResponse. Unwritten status becomes default_status."""
        headers = {k: (list(v) if isinstance(v, list) else v) for k, v in self.headers.items()}
        return HTTPResponse(
            status=self.status or default_status,
            headers=headers,
            body=self.body,
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231), always GMT.

    Example: Wed, 01 Jan 2026 12:00:00 GMT
    """
    return (
        f"{_DAYS[dt.weekday()]}, "
        f"{dt.day:02d} {_MONTHS[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def error_response(status: int, message: Optional[str] = None) -> HTTPResponse:
    """Plain-text response used by the host loop for wire-level errors."""
    body = message or reason_phrase(status) or "Error"
    return HTTPResponse(
        status=status,
        headers={"Content-Type": "text/plain; charset=utf-8", "Connection": "close"},
        body=body.encode("utf-8"),
    )
