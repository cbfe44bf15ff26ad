"""
=============================================================================
JWT AUTHENTICATION MIDDLEWARE
=============================================================================

    api = engine.group("/api")
    api.use(auth("my-secret"))

    @api.get("/me")
    def me(ctx):
        ctx.json(200, {"user": ctx.claims.user_id})

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        AUTH FLOW                                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   path in skip_paths? ──yes──► ctx.next()                           │
    │        │ no                                                         │
    │        ▼                                                            │
    │   extract token (header / query / cookie)                           │
    │        │ missing ──► MissingTokenError ──► unauthorized(ctx, err)   │
    │        ▼                                                            │
    │   jwt.decode (signature, exp, nbf, iss, aud)                        │
    │        │ invalid ──► InvalidTokenError ──► unauthorized(ctx, err)   │
    │        ▼                                                            │
    │   ctx.claims = claims_factory(payload) ──► ctx.next()               │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

A failed check never calls ctx.next(), so the protected handler cannot
run even if a custom unauthorized() forgets to quit().

=============================================================================
TOKEN LOOKUP
=============================================================================

    "header:Authorization"   Authorization: Bearer <token>
    "query:token"            /path?token=<token>
    "cookie:jwt"             Cookie: jwt=<token>

=============================================================================
INTERVIEW QUESTIONS
=============================================================================

Q: "Why is algorithms= passed explicitly to jwt.decode?"
A: "The token header names its own algorithm. Trusting it lets an
   attacker pick 'none' or confuse an HMAC secret with a public key.
   The server decides which algorithms it accepts."

Q: "Where should the token live: header or cookie?"
A: "A header is immune to CSRF but must be attached by client code.
   A cookie is sent automatically (httponly keeps it away from scripts)
   but then CSRF protection is needed."

=============================================================================
"""

import logging
import time
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

import jwt

from ..context import Context, HandlerFunc
from ..errors import ZenError


logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "HS256"
REGISTERED_CLAIMS = ("sub", "iss", "aud", "exp", "iat", "nbf")


class AuthError(ZenError):
    """Authentication failed."""


class MissingTokenError(AuthError):
    """No token was found where the config says to look."""


class InvalidTokenError(AuthError):
    """A token was found but did not verify."""


# =============================================================================
# CLAIMS
# =============================================================================

@dataclass
class BaseClaims:
    """
    Claims attached to ctx.claims after a successful check.

    Unrecognised payload fields are kept in `extra`.
    """

    user_id: str = ""
    role: str = ""
    sub: Optional[str] = None
    iss: Optional[str] = None
    aud: Any = None
    exp: Optional[int] = None
    iat: Optional[int] = None
    nbf: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BaseClaims":
        known = {"user_id", "role", *REGISTERED_CLAIMS}
        return cls(
            user_id=str(payload.get("user_id", "")),
            role=str(payload.get("role", "")),
            **{name: payload.get(name) for name in REGISTERED_CLAIMS},
            extra={k: v for k, v in payload.items() if k not in known},
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.extra)
        if self.user_id:
            payload["user_id"] = self.user_id
        if self.role:
            payload["role"] = self.role
        for name in REGISTERED_CLAIMS:
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload


ClaimsT = TypeVar("ClaimsT")


def get_claims(ctx: Context, cls: Type[ClaimsT] = BaseClaims) -> Optional[ClaimsT]:
    """ctx.claims if it is a `cls`, else None."""
    claims = ctx.claims
    if isinstance(claims, cls):
        return claims
    return None


def generate_token(
    claims: Any,
    secret_key: str,
    expires_in: Optional[float] = None,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """
    Sign claims (a BaseClaims or a plain dict) into a JWT.

    Example:
        token = generate_token(BaseClaims(user_id="42", role="admin"), "secret", expires_in=3600)
    """
    if not secret_key:
        raise ValueError("secret key must not be empty")
    payload = claims.to_payload() if hasattr(claims, "to_payload") else dict(claims)
    if expires_in is not None:
        now = int(time.time())
        payload.setdefault("iat", now)
        payload["exp"] = now + int(expires_in)
    return jwt.encode(payload, secret_key, algorithm=algorithm)


# =============================================================================
# CONFIGURATION
# =============================================================================

def default_unauthorized(ctx: Context, error: AuthError) -> None:
    ctx.json(HTTPStatus.UNAUTHORIZED, {"error": str(error)})


@dataclass
class AuthConfig:
    secret_key: str = ""
    token_lookup: str = "header:Authorization"
    auth_scheme: str = "Bearer"
    algorithms: List[str] = field(default_factory=lambda: [DEFAULT_ALGORITHM])
    issuer: Optional[str] = None
    audience: Optional[str] = None
    leeway: float = 0.0
    skip_paths: List[str] = field(default_factory=list)
    claims_factory: Callable[[Dict[str, Any]], Any] = BaseClaims.from_payload
    unauthorized: Callable[[Context, AuthError], None] = default_unauthorized


def default_auth_config(secret_key: str) -> AuthConfig:
    return AuthConfig(secret_key=secret_key)


def _parse_lookup(lookup: str):
    source, sep, name = lookup.partition(":")
    source = source.strip().lower()
    if not sep or not name.strip() or source not in ("header", "query", "cookie"):
        raise ValueError(f"invalid token lookup {lookup!r}; expected header:<name>, query:<name> or cookie:<name>")
    return source, name.strip()


def extract_token(ctx: Context, source: str, name: str, scheme: str) -> str:
    """Raises MissingTokenError when there is no usable token."""
    if source == "header":
        value = ctx.get_header(name).strip()
        if not value:
            raise MissingTokenError(f"missing {name} header")
        if scheme:
            prefix = scheme + " "
            if value[:len(prefix)].lower() != prefix.lower():
                raise MissingTokenError(f"{name} header must use the {scheme} scheme")
            value = value[len(prefix):].strip()
    elif source == "query":
        value = (ctx.query(name) or "").strip()
    else:
        value = (ctx.cookie(name) or "").strip()

    if not value:
        raise MissingTokenError("missing authentication token")
    return value


# =============================================================================
# MIDDLEWARE
# =============================================================================

def auth_with_config(config: AuthConfig) -> HandlerFunc:
    """Build the auth middleware. An empty secret key is rejected here."""
    if not config.secret_key:
        raise ValueError("auth middleware requires a non-empty secret key")
    source, name = _parse_lookup(config.token_lookup)
    skip = set(config.skip_paths)

    def authenticate(ctx: Context) -> None:
        if ctx.path in skip:
            ctx.next()
            return

        try:
            token = extract_token(ctx, source, name, config.auth_scheme)
            try:
                payload = jwt.decode(
                    token,
                    config.secret_key,
                    algorithms=config.algorithms,
                    issuer=config.issuer,
                    audience=config.audience,
                    leeway=config.leeway,
                )
            except jwt.ExpiredSignatureError as e:
                raise InvalidTokenError("token has expired") from e
            except jwt.InvalidTokenError as e:
                raise InvalidTokenError(f"invalid token: {e}") from e
        except AuthError as e:
            logger.debug(f"auth rejected {ctx.method} {ctx.path}: {e}")
            config.unauthorized(ctx, e)
            return

        ctx.claims = config.claims_factory(payload)
        ctx.next()

    return authenticate


def auth(secret_key: str) -> HandlerFunc:
    """Auth middleware with default settings (Bearer token, HS256)."""
    return auth_with_config(default_auth_config(secret_key))
