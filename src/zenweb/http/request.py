"""
=============================================================================
HTTP REQUEST
=============================================================================

The request model every handler sees (through ctx.request), plus the
HTTP/1.1 parser the host loop uses to build it from raw socket bytes.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     HTTP REQUEST STRUCTURE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │    GET /api/users?page=1 HTTP/1.1\r\n       ← request line          │
    │    Host: example.com\r\n                    ┐                       │
    │    Authorization: Bearer eyJhbG...\r\n      │ headers               │
    │    Cookie: session=abc123\r\n               ┘                       │
    │    \r\n                                     ← separator             │
    │    {"username": "alice"}                    ← body (optional)       │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

The engine does not care where an HTTPRequest came from. Tests build one
directly and call Engine.handle(); the host loop builds one with
RequestParser.

=============================================================================
INTERVIEW QUESTIONS ABOUT HTTP REQUESTS
=============================================================================

Q: "Why normalize header names to lowercase at parse time?"
A: "Header names are case-insensitive (RFC 7230). Normalizing once means
   every lookup is a plain dict access."

Q: "How do you defend a parser against oversized requests?"
A: "Cap the total size and answer 413 before buffering more. Trust only
   Content-Length for the body size so two length indicators can't
   disagree (request smuggling)."

=============================================================================
"""

import re
from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlparse

from ..errors import HTTPParseError


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Attributes:
        method:         Upper-case HTTP method
        path:           Path without query string, URL-decoded
        version:        "HTTP/1.1" or "HTTP/1.0"
        headers:        LOWERCASE header name → value
        query_params:   "?a=1&a=2" → {"a": ["1", "2"]}
        body:           Raw body bytes (exactly Content-Length)
        client_address: (ip, port) of the TCP peer
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, List[str]] = field(default_factory=dict)
    body: bytes = b""
    client_address: Tuple[str, int] = ("", 0)

    _cookies: Optional[Dict[str, str]] = field(default=None, repr=False)

    def __post_init__(self):
        self.method = self.method.upper()
        # Callers building requests by hand may use any header case.
        self.headers = {name.lower(): value for name, value in self.headers.items()}

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters ("application/json")."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def cookies(self) -> Dict[str, str]:
        """
        Cookies from the Cookie header, parsed once.

        A malformed Cookie header yields an empty mapping rather than an
        error; a missing cookie and a garbled one look the same to auth.
        """
        if self._cookies is None:
            jar = SimpleCookie()
            try:
                jar.load(self.headers.get("cookie", ""))
            except CookieError:
                jar = SimpleCookie()
            self._cookies = {name: morsel.value for name, morsel in jar.items()}
        return self._cookies

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps the connection unless "Connection: close".
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name)
        return values[0] if values else default

    def get_query_list(self, name: str) -> List[str]:
        return self.query_params.get(name, [])


class RequestParser:
    """
    Parses raw HTTP/1.1 request bytes into HTTPRequest objects.

        1. Check size limit                       → 413
        2. Split header section from body at \\r\\n\\r\\n
        3. Parse request line                     → 400 / 501 / 505
        4. Parse headers (lowercase names, repeated headers joined)
        5. Slice exactly Content-Length body bytes
    """

    VALID_METHODS = {"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"}

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: Tuple[str, int] = ("", 0)) -> HTTPRequest:
        """
        Parse one complete request.

        Raises:
            HTTPParseError: malformed or oversized request (carries status).
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header") from None
        if content_length < 0:
            raise HTTPParseError("Invalid Content-Length header")
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, Dict[str, List[str]], str]:
        """
        "GET /users?page=1 HTTP/1.1" → ("GET", "/users", {"page": ["1"]}, "HTTP/1.1")
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, uri, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Unsupported method: {method}", status_code=501)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        parsed = urlparse(uri)
        path = unquote(parsed.path) or "/"
        query_params = parse_qs(parsed.query, keep_blank_values=True)

        return method, path, query_params, version

    def _parse_headers(self, lines: List[str]) -> Dict[str, str]:
        """
        Parse header lines. Names are lowercased, obsolete line folding is
        joined with a space, repeated headers are joined with ", ".
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers
