"""
=============================================================================
PATH MATCHING
=============================================================================

Matches a concrete request path against a registered pattern made of
literal segments and `:name` parameter segments.

    Pattern:  /users/:id/posts/:post_id
    Path:     /users/123/posts/456
                │     │    │     │
                ▼     ▼    ▼     ▼
              users  123  posts 456
              ─────  ───  ───── ───
              equal  bind equal bind

    Result:   {"id": "123", "post_id": "456"}

=============================================================================
RULES
=============================================================================

1. Leading and trailing slashes are trimmed, then both sides are split
   on "/". "/users/" and "users" are the same thing.

2. Segment counts must be equal. There are no wildcard or optional
   segments, so "/users/:id" never matches "/users/1/extra".

3. ":name" matches exactly one non-empty segment and binds its literal
   text. No type coercion.

4. Every other segment must be byte-for-byte equal.

=============================================================================
AMBIGUITY: WHICH ROUTE WINS?
=============================================================================

Two patterns can match the same path:

    GET /users/me
    GET /users/:id        ← "/users/me" matches both

The router orders candidates MOST SPECIFIC FIRST. Specificity compares
segments from the left; a literal beats a parameter at the first position
where the two patterns differ in kind:

    /users/me       → (literal, literal)     ← tried first
    /users/:id      → (literal, param)
    /:kind/me       → (param, literal)

Patterns of identical shape fall back to registration order. The result
does not depend on dictionary iteration order.

=============================================================================
INTERVIEW QUESTIONS ABOUT PATH MATCHING
=============================================================================

Q: "Why split into segments instead of compiling a regex per route?"
A: "Segment matching makes the tie-break easy to express and the
   parameter validation hook easy to apply per value. For a handful of
   routes per method a linear scan is fast enough; large routers switch
   to a radix tree."

Q: "What does parameter validation protect against?"
A: "Values that flow into file paths, shell commands or SQL: '../',
   quotes, semicolons, CR/LF. A failing value makes the route not match,
   so the client sees a plain 404 and learns nothing about the check."

=============================================================================
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


PARAM_PREFIX = ":"


def split_path(path: str) -> List[str]:
    """Trim surrounding slashes and split into segments ("" -> [])."""
    trimmed = path.strip("/")
    if not trimmed:
        return []
    return trimmed.split("/")


# =============================================================================
# PARAMETER VALIDATION
# =============================================================================

DEFAULT_MAX_PARAM_LENGTH = 256

DEFAULT_DANGEROUS_PATTERNS: Tuple[str, ...] = (
    "../", "..\\",   # path traversal
    "<", ">",        # markup injection
    ";",             # command chaining
    "'", '"',        # quoting
    "\x00",          # NUL byte
    "\n", "\r",      # header splitting
)


@dataclass
class ParamValidator:
    """
    Hardening for bound path parameter values.

    A value is accepted only if it is non-empty, at most `max_length`
    characters, contains none of `dangerous_patterns`, and fully matches
    `allowed_pattern`.
    """

    max_length: int = DEFAULT_MAX_PARAM_LENGTH
    allowed_pattern: re.Pattern = field(
        default_factory=lambda: re.compile(r"^[a-zA-Z0-9\-_]+$")
    )
    dangerous_patterns: Tuple[str, ...] = DEFAULT_DANGEROUS_PATTERNS

    def is_valid(self, value: str) -> bool:
        if not value:
            return False
        if len(value) > self.max_length:
            return False
        for pattern in self.dangerous_patterns:
            if pattern in value:
                return False
        return self.allowed_pattern.match(value) is not None


# =============================================================================
# MATCHING
# =============================================================================

def match_segments(
    pattern_segments: List[str],
    path_segments: List[str],
    validator: Optional[ParamValidator] = None,
) -> Optional[Dict[str, str]]:
    """
    Match pre-split segments. Returns bound params, or None on mismatch.
    """
    if len(pattern_segments) != len(path_segments):
        return None

    params: Dict[str, str] = {}
    for expected, actual in zip(pattern_segments, path_segments):
        if expected.startswith(PARAM_PREFIX):
            if not actual:
                return None
            if validator is not None and not validator.is_valid(actual):
                return None
            params[expected[1:]] = actual
        elif expected != actual:
            return None
    return params


def match_path(
    pattern: str,
    path: str,
    validator: Optional[ParamValidator] = None,
) -> Optional[Dict[str, str]]:
    """
    Match a concrete path against a pattern.

    Args:
        pattern: Registered pattern, e.g. "/users/:id"
        path: Request path, e.g. "/users/42"
        validator: Optional ParamValidator applied to every bound value

    Returns:
        Dict of bound parameters ({} for a fully literal match), or None.

    Example:
        >>> match_path("/users/:id/posts/:postId", "/users/123/posts/456")
        {'id': '123', 'postId': '456'}
        >>> match_path("/users/:id", "/users/123/extra") is None
        True
    """
    return match_segments(split_path(pattern), split_path(path), validator)


def specificity(pattern: str) -> Tuple[int, ...]:
    """
    Sort key placing literal segments ahead of parameters.

    0 marks a literal segment, 1 a parameter, so an ascending sort puts
    the most specific pattern first.
    """
    return tuple(1 if seg.startswith(PARAM_PREFIX) else 0 for seg in split_path(pattern))
