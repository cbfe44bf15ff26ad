"""
=============================================================================
SECURITY MIDDLEWARE
=============================================================================

Three independent strategies, combined as flags:

    SecurityStrategy.HEADERS        security response headers
    SecurityStrategy.SANITIZATION   request size limit (+ optional pattern checks)
    SecurityStrategy.IP             allow / block lists (addresses or CIDR)

    engine.use(security(SecurityConfig(
        strategies=SecurityStrategy.HEADERS | SecurityStrategy.IP,
        blocked_ips=["203.0.113.0/24"],
    )))

=============================================================================
THE HEADERS
=============================================================================

    ┌──────────────────────────────┬──────────────────────────────────────┐
    │ Header                       │ Protects against                     │
    ├──────────────────────────────┼──────────────────────────────────────┤
    │ Strict-Transport-Security    │ protocol downgrade, cookie hijacking │
    │ Content-Security-Policy      │ XSS, injected scripts                │
    │ X-Content-Type-Options       │ MIME sniffing                        │
    │ X-XSS-Protection             │ reflected XSS (legacy browsers)      │
    │ X-Frame-Options              │ clickjacking                         │
    │ Referrer-Policy              │ URL leakage to third parties         │
    └──────────────────────────────┴──────────────────────────────────────┘

They are RESPONSE headers. Setting them on the request has no effect on
the browser.

=============================================================================
VIOLATIONS
=============================================================================

A failed check produces a SecurityViolation carrying a status code:

    body larger than max_request_size   → 413
    SQL / XSS pattern (opt-in checks)   → 400
    blocked or not-allowed IP           → 403

error_handler(ctx, violation) replaces the default text response;
on_violation(ctx, message) is notified after the default response. The
chain stops either way.

=============================================================================
"""

import enum
import ipaddress
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Callable, Iterable, List, Optional, Union
from urllib.parse import parse_qs

from ..context import Context, HandlerFunc
from ..errors import ZenError


logger = logging.getLogger(__name__)

HSTS_MAX_AGE = 31536000  # one year

STRICT_TRANSPORT_SECURITY = "Strict-Transport-Security"
CONTENT_SECURITY_POLICY = "Content-Security-Policy"
X_CONTENT_TYPE_OPTIONS = "X-Content-Type-Options"
X_XSS_PROTECTION = "X-XSS-Protection"
X_FRAME_OPTIONS = "X-Frame-Options"
REFERRER_POLICY = "Referrer-Policy"

SQL_PATTERNS = ("union select", "drop table", "delete from", "insert into", "--", "/*", "*/", "@@")
XSS_PATTERNS = ("<script", "javascript:", "onerror=", "onload=", "onclick=", "alert(", "eval(")


class SecurityStrategy(enum.Flag):
    HEADERS = enum.auto()
    SANITIZATION = enum.auto()
    IP = enum.auto()


class SecurityViolation(ZenError):
    """A request failed a security check."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# =============================================================================
# IP SETS
# =============================================================================

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class IPSet:
    """
    Addresses and CIDR networks, checked by membership.

        ips = IPSet(["10.0.0.0/8", "192.168.1.10"])
        "10.2.3.4" in ips       # True
        "not-an-ip" in ips      # False
    """

    def __init__(self, entries: Iterable[str] = ()):
        self.networks: List[IPNetwork] = [ipaddress.ip_network(e.strip(), strict=False) for e in entries]

    def __bool__(self) -> bool:
        return bool(self.networks)

    def __contains__(self, address: str) -> bool:
        try:
            ip = ipaddress.ip_address(address.strip())
        except ValueError:
            return False
        return any(ip.version == net.version and ip in net for net in self.networks)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class CSPDirectives:
    """Content-Security-Policy directives. Empty lists are omitted."""

    default_src: List[str] = field(default_factory=list)
    script_src: List[str] = field(default_factory=list)
    style_src: List[str] = field(default_factory=list)
    img_src: List[str] = field(default_factory=list)
    connect_src: List[str] = field(default_factory=list)
    font_src: List[str] = field(default_factory=list)
    object_src: List[str] = field(default_factory=list)
    media_src: List[str] = field(default_factory=list)
    frame_src: List[str] = field(default_factory=list)
    report_uri: str = ""

    def build(self) -> str:
        """
        Render the header value.

            CSPDirectives(default_src=["'self'"], img_src=["'self'", "data:"]).build()
            → "default-src 'self'; img-src 'self' data:"
        """
        policies = []
        for name in ("default_src", "script_src", "style_src", "img_src", "connect_src",
                     "font_src", "object_src", "media_src", "frame_src"):
            sources = getattr(self, name)
            if sources:
                policies.append(f"{name.replace('_', '-')} {' '.join(sources)}")
        if self.report_uri:
            policies.append(f"report-uri {self.report_uri}")
        return "; ".join(policies)


@dataclass
class SecurityConfig:
    strategies: SecurityStrategy = SecurityStrategy.HEADERS | SecurityStrategy.SANITIZATION

    # ─────────────────────────────────────────────────────────────────────
    # HEADERS
    # ─────────────────────────────────────────────────────────────────────

    hsts: bool = True
    hsts_max_age: int = HSTS_MAX_AGE
    hsts_include_subdomains: bool = True
    hsts_preload: bool = False
    csp: Optional[CSPDirectives] = field(default_factory=lambda: CSPDirectives(
        default_src=["'self'"],
        script_src=["'self'", "'unsafe-inline'"],
        style_src=["'self'", "'unsafe-inline'"],
        img_src=["'self'", "data:", "https:"],
        connect_src=["'self'"],
    ))
    content_type_options: bool = True
    xss_protection: bool = True
    frame_options: str = "SAMEORIGIN"
    referrer_policy: str = "strict-origin-when-cross-origin"

    # ─────────────────────────────────────────────────────────────────────
    # REQUEST SANITIZATION
    # ─────────────────────────────────────────────────────────────────────

    max_request_size: int = 10 * 1024 * 1024
    sql_injection_check: bool = False
    xss_check: bool = False

    # ─────────────────────────────────────────────────────────────────────
    # IP SECURITY
    # ─────────────────────────────────────────────────────────────────────

    allowed_ips: List[str] = field(default_factory=list)
    blocked_ips: List[str] = field(default_factory=list)

    # ─────────────────────────────────────────────────────────────────────
    # HOOKS
    # ─────────────────────────────────────────────────────────────────────

    error_handler: Optional[Callable[[Context, SecurityViolation], None]] = None
    on_violation: Optional[Callable[[Context, str], None]] = None


def default_security_config() -> SecurityConfig:
    return SecurityConfig()


# =============================================================================
# CHECKS
# =============================================================================

def set_security_headers(ctx: Context, cfg: SecurityConfig) -> None:
    if cfg.hsts:
        value = f"max-age={cfg.hsts_max_age}"
        if cfg.hsts_include_subdomains:
            value += "; includeSubDomains"
        if cfg.hsts_preload:
            value += "; preload"
        ctx.set_header(STRICT_TRANSPORT_SECURITY, value)

    if cfg.csp is not None:
        policy = cfg.csp.build()
        if policy:
            ctx.set_header(CONTENT_SECURITY_POLICY, policy)

    if cfg.content_type_options:
        ctx.set_header(X_CONTENT_TYPE_OPTIONS, "nosniff")
    if cfg.xss_protection:
        ctx.set_header(X_XSS_PROTECTION, "1; mode=block")
    if cfg.frame_options:
        ctx.set_header(X_FRAME_OPTIONS, cfg.frame_options)
    if cfg.referrer_policy:
        ctx.set_header(REFERRER_POLICY, cfg.referrer_policy)


def _request_values(ctx: Context) -> List[str]:
    """Query values plus urlencoded form values, lowercased."""
    values = [v for vs in ctx.request.query_params.values() for v in vs]
    if ctx.request.content_type == "application/x-www-form-urlencoded" and ctx.request.body:
        form = parse_qs(ctx.request.body.decode("utf-8", errors="replace"), keep_blank_values=True)
        values.extend(v for vs in form.values() for v in vs)
    return [v.lower() for v in values]


def _contains_any(values: List[str], patterns: Iterable[str]) -> bool:
    return any(p in v for v in values for p in patterns)


def sanitize_request(ctx: Context, cfg: SecurityConfig) -> None:
    """Raises SecurityViolation for oversized or suspicious requests."""
    size = max(len(ctx.request.body), ctx.request.content_length)
    if size > cfg.max_request_size:
        raise SecurityViolation("Request exceeds maximum allowed size", HTTPStatus.REQUEST_ENTITY_TOO_LARGE)

    if cfg.sql_injection_check or cfg.xss_check:
        values = _request_values(ctx)
        if cfg.sql_injection_check and _contains_any(values, SQL_PATTERNS):
            raise SecurityViolation("Potential SQL injection detected", HTTPStatus.BAD_REQUEST)
        if cfg.xss_check and _contains_any(values, XSS_PATTERNS):
            raise SecurityViolation("Potential XSS attack detected", HTTPStatus.BAD_REQUEST)


def enforce_ip_security(ctx: Context, allowed: IPSet, blocked: IPSet) -> None:
    ip = ctx.client_ip()
    if blocked and ip in blocked:
        raise SecurityViolation("IP address is blocked", HTTPStatus.FORBIDDEN)
    if allowed and ip not in allowed:
        raise SecurityViolation("IP address not allowed", HTTPStatus.FORBIDDEN)


# =============================================================================
# MIDDLEWARE
# =============================================================================

def security(config: Optional[SecurityConfig] = None) -> HandlerFunc:
    """Build the security middleware."""
    cfg = config or default_security_config()
    allowed = IPSet(cfg.allowed_ips)
    blocked = IPSet(cfg.blocked_ips)

    def apply_security(ctx: Context) -> None:
        try:
            if SecurityStrategy.IP in cfg.strategies:
                enforce_ip_security(ctx, allowed, blocked)
            if SecurityStrategy.SANITIZATION in cfg.strategies:
                sanitize_request(ctx, cfg)
        except SecurityViolation as violation:
            logger.info(f"security violation from {ctx.client_ip()}: {violation.message}")
            if cfg.error_handler is not None:
                cfg.error_handler(ctx, violation)
            else:
                ctx.text(violation.status_code, violation.message)
                if cfg.on_violation is not None:
                    cfg.on_violation(ctx, violation.message)
            ctx.quit()
            return

        if SecurityStrategy.HEADERS in cfg.strategies:
            set_security_headers(ctx, cfg)
        ctx.next()

    return apply_security
