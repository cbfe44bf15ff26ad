"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every exception raised by the framework derives from ZenError, so callers
can catch "anything zenweb raised" with a single except clause.

    ZenError
    ├── HTTPParseError        malformed request on the wire (carries status)
    ├── BindError             request body could not be bound
    │   ├── EmptyBodyError    body missing or zero-length
    │   └── BadJSONError      body present but not valid JSON
    ├── AuthError             token missing or rejected (see middleware.auth)
    │   ├── MissingTokenError
    │   └── InvalidTokenError
    ├── SecurityViolation     request refused by middleware.security (carries status)
    └── DeadlineExceeded      a bounded sub-operation ran out of time

Most "failures" in a web framework are NOT exceptions. A routing miss is a
404 response, a rate-limited request is a 429 response. Exceptions are kept
for situations the handler has to decide about.

=============================================================================
"""

from typing import Optional


class ZenError(Exception):
    """Base class for all framework errors."""


class HTTPParseError(ZenError):
    """
    Raised when HTTP request parsing fails.

    Carries the HTTP status code that should be returned to the client:

        400 Bad Request                 - Malformed request syntax
        413 Payload Too Large           - Request exceeds size limit
        501 Not Implemented             - Unknown request method
        505 HTTP Version Not Supported  - Unknown HTTP version
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class BindError(ZenError):
    """Raised when a request body cannot be bound to a value."""


class EmptyBodyError(BindError):
    """The request carried no body to bind."""

    def __init__(self, message: str = "request body is empty"):
        super().__init__(message)


class BadJSONError(BindError):
    """The request body is not valid JSON."""

    def __init__(self, message: str = "invalid JSON format"):
        super().__init__(message)


class DeadlineExceeded(ZenError):
    """
    A bounded operation did not finish in time.

    Handlers usually translate this into 504 Gateway Timeout.
    """

    def __init__(self, timeout: Optional[float] = None):
        message = "deadline exceeded"
        if timeout is not None:
            message = f"deadline exceeded after {timeout:g}s"
        super().__init__(message)
        self.timeout = timeout
