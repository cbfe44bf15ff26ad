"""
=============================================================================
RATE LIMITING MIDDLEWARE
=============================================================================

Per-client request limiting with four interchangeable strategies. The
limiter itself (RateLimiter) knows nothing about HTTP; the middleware
(rate_limiter) turns a request into a key and a denial into a 429.

    engine.use(rate_limiter(RateLimitConfig(limit=100, window=60)))

=============================================================================
STRATEGIES
=============================================================================

    ┌─────────────────┬───────────────────────────────────────────────────┐
    │ Strategy        │ Characteristics                                   │
    ├─────────────────┼───────────────────────────────────────────────────┤
    │ IP_BASED        │ Fixed window: count per window, reset on rollover │
    │ (default)       │ ✗ allows 2x burst at the window boundary          │
    ├─────────────────┼───────────────────────────────────────────────────┤
    │ SLIDING_WINDOW  │ Seeds the new window with the previous count      │
    │                 │ weighted by how much the windows still overlap    │
    │                 │ ✓ no boundary burst, O(1) memory per key          │
    ├─────────────────┼───────────────────────────────────────────────────┤
    │ TOKEN_BUCKET    │ Refills token_rate tokens/s up to bucket_size     │
    │                 │ ✓ allows bursts, optional block_duration penalty  │
    ├─────────────────┼───────────────────────────────────────────────────┤
    │ LEAKY_BUCKET    │ Queue drains leak_rate requests/s                 │
    │                 │ ✓ constant output rate, no bursts                 │
    └─────────────────┴───────────────────────────────────────────────────┘

    SLIDING WINDOW ROLLOVER

        previous window            new window
        ├──────────────────────┤├──────────────────────┤
                    ├──────────────────────┤
                    ▲ overlap  ▲           ▲ now
                    elapsed - window

        weight = overlap / window
        count  = floor(previous_count * weight) + 1

=============================================================================
LOCKING
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  _entries_lock (short)          entry.lock (per key)                │
    │  ─────────────────────          ────────────────────                │
    │  get-or-create                  the strategy arithmetic             │
    │  LRU bookkeeping                sweep idle test, then removal       │
    │  sweep / eviction               (entry.lock taken first)            │
    └─────────────────────────────────────────────────────────────────────┘

Two clients never wait on each other beyond the dictionary lookup.

=============================================================================
MEMORY
=============================================================================

Every distinct key creates an entry. Entries go away only through:

    sweep()         drops entries idle longer than entry_ttl (default: window),
                    but never a blocked key, a bucket still refilling or a
                    queue still draining
    max_entries     evicts the least recently used key on insert
    start_sweeper() runs sweep() every sweep_interval on a daemon thread,
                    stopped with close()

=============================================================================
INTERVIEW QUESTIONS ABOUT RATE LIMITING
=============================================================================

Q: "How would you implement rate limiting in a distributed system?"
A: "A local limiter only sees one process. Move the counters into a
   shared store (Redis INCR with expiry), or enforce the limit at the
   load balancer / API gateway."

Q: "What's the difference between Token Bucket and Leaky Bucket?"
A: "Token Bucket allows bursts up to the bucket size. Leaky Bucket drains
   at a constant rate, so it is better for traffic shaping."

Q: "How do you limit authenticated users differently from anonymous ones?"
A: "key_func: return the user ID when there are claims and the IP
   otherwise, and mount a second limiter on the authenticated group."

=============================================================================
"""

import enum
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Callable, List, Optional

from ..context import Context, HandlerFunc
from .security import IPSet


logger = logging.getLogger(__name__)


class Strategy(enum.Enum):
    IP_BASED = "ip_based"
    SLIDING_WINDOW = "sliding_window"
    TOKEN_BUCKET = "token_bucket"
    LEAKY_BUCKET = "leaky_bucket"


@dataclass
class RateLimitConfig:
    """
    Limiter and middleware settings.

    Times are in seconds. limit + burst is the per-window allowance for
    the window strategies; bucket_size / token_rate drive the token
    bucket; limit / leak_rate drive the leaky bucket.
    """

    strategy: Strategy = Strategy.IP_BASED
    limit: int = 100
    window: float = 60.0
    burst: int = 0

    bucket_size: float = 10.0
    token_rate: float = 1.0
    block_duration: float = 0.0

    leak_rate: float = 1.0

    entry_ttl: Optional[float] = None
    max_entries: Optional[int] = None
    sweep_interval: Optional[float] = None

    status_code: int = HTTPStatus.TOO_MANY_REQUESTS
    exclude_paths: List[str] = field(default_factory=list)
    allow_list: List[str] = field(default_factory=list)
    block_list: List[str] = field(default_factory=list)
    key_func: Optional[Callable[[Context], str]] = None
    on_limit: Optional[Callable[[Context, float], None]] = None


def default_rate_limit_config() -> RateLimitConfig:
    return RateLimitConfig()


@dataclass
class _Entry:
    """State for one key. Fields are used according to the strategy."""

    count: int = 0
    previous_count: int = 0
    window_start: float = 0.0
    tokens: float = 0.0
    last_refill: float = 0.0
    blocked_until: float = 0.0
    last_leak: float = 0.0
    last_seen: float = 0.0
    fresh: bool = True
    removed: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class RateLimiter:
    """
    Thread-safe per-key limiter.

    Example:
        limiter = RateLimiter(RateLimitConfig(limit=2, burst=1, window=1))
        limiter.allow("10.0.0.7")   # True, True, True, then False
    """

    def __init__(self, config: Optional[RateLimitConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or default_rate_limit_config()
        if self.config.window <= 0:
            raise ValueError("window must be positive")
        if self.config.max_entries is not None and self.config.max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self._clock = clock
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._entries_lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def __len__(self) -> int:
        with self._entries_lock:
            return len(self._entries)

    # =========================================================================
    # DECISION
    # =========================================================================

    def allow(self, key: str) -> bool:
        """Record one request for `key` and say whether it may proceed."""
        while True:
            entry = self._get_entry(key)
            with entry.lock:
                # Swept or reset after lookup; the map holds a newer entry.
                if entry.removed:
                    continue
                now = self._clock()
                entry.last_seen = now
                strategy = self.config.strategy
                if strategy is Strategy.SLIDING_WINDOW:
                    return self._sliding_window(entry, now)
                if strategy is Strategy.TOKEN_BUCKET:
                    return self._token_bucket(entry, now)
                if strategy is Strategy.LEAKY_BUCKET:
                    return self._leaky_bucket(entry, now)
                return self._fixed_window(entry, now)

    def _fixed_window(self, entry: _Entry, now: float) -> bool:
        cfg = self.config
        if entry.fresh or now - entry.window_start > cfg.window:
            entry.fresh = False
            entry.count = 1
            entry.window_start = now
            return True
        if entry.count < cfg.limit + cfg.burst:
            entry.count += 1
            return True
        return False

    def _sliding_window(self, entry: _Entry, now: float) -> bool:
        cfg = self.config
        if entry.fresh:
            entry.fresh = False
            entry.count = 1
            entry.window_start = now
            return True

        elapsed = now - entry.window_start
        if elapsed > cfg.window:
            overlap = max(0.0, cfg.window - (elapsed - cfg.window))
            weight = overlap / cfg.window
            entry.previous_count = entry.count
            # The seeded count is kept even when this request is denied.
            entry.count = math.floor(entry.previous_count * weight) + 1
            entry.window_start = now
            return entry.count < cfg.limit + cfg.burst

        if entry.count < cfg.limit + cfg.burst:
            entry.count += 1
            return True
        return False

    def _token_bucket(self, entry: _Entry, now: float) -> bool:
        cfg = self.config
        if entry.fresh:
            entry.fresh = False
            entry.tokens = cfg.bucket_size
            entry.last_refill = now
            return True

        if entry.blocked_until and now < entry.blocked_until:
            return False

        elapsed = now - entry.last_refill
        entry.tokens = min(cfg.bucket_size, entry.tokens + elapsed * cfg.token_rate)
        entry.last_refill = now

        if entry.tokens > 1:
            entry.tokens -= 1
            return True
        if cfg.block_duration > 0:
            entry.blocked_until = now + cfg.block_duration
        return False

    def _leaky_bucket(self, entry: _Entry, now: float) -> bool:
        cfg = self.config
        if entry.fresh:
            entry.fresh = False
            entry.count = 1
            entry.last_leak = now
            return True

        leaked = math.floor((now - entry.last_leak) * cfg.leak_rate)
        if leaked > 0:
            entry.count = max(0, entry.count - leaked)
            # Advance only by the time the whole leaked units took.
            entry.last_leak += leaked / cfg.leak_rate

        if entry.count < cfg.limit:
            entry.count += 1
            return True
        return False

    def retry_after(self, key: str) -> float:
        """Seconds until `key` is likely to be allowed again."""
        with self._entries_lock:
            entry = self._entries.get(key)
        if entry is None:
            return 0.0

        cfg = self.config
        with entry.lock:
            now = self._clock()
            if cfg.strategy is Strategy.TOKEN_BUCKET:
                if entry.blocked_until > now:
                    return entry.blocked_until - now
                if cfg.token_rate <= 0:
                    return cfg.window
                return max(0.0, (1.0 - entry.tokens) / cfg.token_rate) + 1.0 / cfg.token_rate
            if cfg.strategy is Strategy.LEAKY_BUCKET:
                return 1.0 / cfg.leak_rate if cfg.leak_rate > 0 else cfg.window
            return max(0.0, entry.window_start + cfg.window - now)

    # =========================================================================
    # ENTRY MANAGEMENT
    # =========================================================================

    def _get_entry(self, key: str) -> _Entry:
        with self._entries_lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
                return entry

            entry = _Entry()
            self._entries[key] = entry
            max_entries = self.config.max_entries
            while max_entries is not None and len(self._entries) > max_entries:
                evicted, stale = self._entries.popitem(last=False)
                stale.removed = True
                logger.debug(f"rate limiter evicted least recently used key {evicted}")
            return entry

    def _expendable(self, entry: _Entry, now: float, ttl: float) -> bool:
        """
        True when forgetting `entry` cannot loosen the limit: it has been
        idle longer than ttl, it is not blocked, and a fresh entry would
        start from the same state (bucket full, queue drained).
        """
        cfg = self.config
        if now - entry.last_seen <= ttl or now < entry.blocked_until:
            return False
        if cfg.strategy is Strategy.TOKEN_BUCKET and entry.tokens < cfg.bucket_size:
            if cfg.token_rate <= 0:
                return False
            return now >= entry.last_refill + (cfg.bucket_size - entry.tokens) / cfg.token_rate
        if cfg.strategy is Strategy.LEAKY_BUCKET and entry.count > 0:
            if cfg.leak_rate <= 0:
                return False
            return now >= entry.last_leak + entry.count / cfg.leak_rate
        return True

    def sweep(self) -> int:
        """Drop idle entries whose state a fresh entry would reproduce. Returns how many went."""
        ttl = self.config.entry_ttl if self.config.entry_ttl is not None else self.config.window
        with self._entries_lock:
            candidates = list(self._entries.items())

        swept = 0
        for key, entry in candidates:
            with entry.lock:
                if entry.removed or not self._expendable(entry, self._clock(), ttl):
                    continue
                with self._entries_lock:
                    if self._entries.get(key) is entry:
                        del self._entries[key]
                entry.removed = True
                swept += 1
        if swept:
            logger.debug(f"rate limiter swept {swept} idle entries")
        return swept

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one key, or every key."""
        with self._entries_lock:
            if key is None:
                dropped = list(self._entries.values())
                self._entries.clear()
            else:
                entry = self._entries.pop(key, None)
                dropped = [entry] if entry is not None else []
        for entry in dropped:
            entry.removed = True

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Run sweep() periodically on a daemon thread until close()."""
        interval = interval or self.config.sweep_interval or self.config.window
        if self._sweeper is not None:
            return
        self._stop.clear()

        def loop():
            while not self._stop.wait(interval):
                self.sweep()

        self._sweeper = threading.Thread(target=loop, name="zen-ratelimit-sweeper", daemon=True)
        self._sweeper.start()

    def close(self) -> None:
        """Stop the sweeper thread, if running."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None


# =============================================================================
# MIDDLEWARE
# =============================================================================

def rate_limiter(config: Optional[RateLimitConfig] = None, limiter: Optional[RateLimiter] = None) -> HandlerFunc:
    """
    Build the rate limiting middleware.

    Order of checks:
        1. excluded path      → continue (no key extracted)
        2. allow-listed IP    → continue
        3. block-listed IP    → 403
        4. limiter.allow(key) → continue, or 429 + Retry-After

    The limiter is exposed as `.limiter` on the returned handler so the
    application can sweep or close it. When a limiter is passed in, its
    config drives the middleware too.

    Raises:
        ValueError: both a limiter and a different config were given.
    """
    if limiter is None:
        cfg = config or default_rate_limit_config()
        limiter = RateLimiter(cfg)
    else:
        if config is not None and config is not limiter.config:
            raise ValueError("pass either config or limiter, not both")
        cfg = limiter.config
    if cfg.sweep_interval:
        limiter.start_sweeper(cfg.sweep_interval)

    excluded = set(cfg.exclude_paths)
    allowed = IPSet(cfg.allow_list)
    blocked = IPSet(cfg.block_list)
    key_func = cfg.key_func or (lambda ctx: ctx.client_ip())

    def limit_requests(ctx: Context) -> None:
        if ctx.path in excluded:
            ctx.next()
            return

        ip = ctx.client_ip()
        if allowed and ip in allowed:
            ctx.next()
            return
        if blocked and ip in blocked:
            logger.debug(f"rate limiter refused block-listed address {ip}")
            ctx.text(HTTPStatus.FORBIDDEN, "Forbidden")
            ctx.quit()
            return

        key = key_func(ctx)
        if limiter.allow(key):
            ctx.next()
            return

        logger.debug(f"rate limit exceeded for {key} on {ctx.method} {ctx.path}")
        if cfg.on_limit is not None:
            cfg.on_limit(ctx, cfg.window)
        else:
            ctx.set_header("Retry-After", str(max(1, math.ceil(limiter.retry_after(key)))))
            ctx.text(cfg.status_code, f"Rate limit exceeded. Try again in {cfg.window:g}s")
        ctx.quit()

    limit_requests.limiter = limiter
    return limit_requests


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# RateLimiter: four strategies behind one allow(key), per-key locks,
#              TTL sweep and LRU bound for memory.
# rate_limiter: HTTP integration (exclusions, allow/block lists, 429 with
#               Retry-After, or a custom on_limit callback).
#
# =============================================================================
