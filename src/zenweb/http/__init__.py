"""
=============================================================================
HTTP LAYER
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │ request.py   HTTPRequest model + RequestParser (bytes → request)    │
    │ response.py  ResponseWriter (write-once) + HTTPResponse (→ bytes)   │
    │ matcher.py   match_path(), ParamValidator, specificity ordering     │
    │ router.py    Router (tables, dispatch) + RouteGroup (composition)   │
    └─────────────────────────────────────────────────────────────────────┘

router.py depends on zenweb.context, which depends on request/response,
so it is imported from its own module (or from the top-level package).

=============================================================================
"""

from .request import HTTPRequest, RequestParser
from .response import HTTPResponse, ResponseWriter
from .matcher import ParamValidator, match_path

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPResponse",
    "ResponseWriter",
    "ParamValidator",
    "match_path",
]
