"""
Unit tests for the RateLimiter strategies and middleware.
"""

import threading

import pytest

from zenweb.middleware.rate_limit import RateLimitConfig, RateLimiter, Strategy, _Entry, rate_limiter


def limiter_for(clock, **kwargs) -> RateLimiter:
    return RateLimiter(RateLimitConfig(**kwargs), clock=clock)


class TestFixedWindow:
    def test_limit_plus_burst_then_deny_then_reset(self, clock):
        limiter = limiter_for(clock, limit=2, burst=1, window=1.0)

        assert [limiter.allow("k") for _ in range(4)] == [True, True, True, False]

        clock.advance(1.01)
        assert limiter.allow("k") is True

    def test_boundary_is_still_inside_window(self, clock):
        limiter = limiter_for(clock, limit=1, window=1.0)
        limiter.allow("k")

        clock.advance(1.0)

        assert limiter.allow("k") is False

    def test_keys_are_isolated(self, clock):
        limiter = limiter_for(clock, limit=1, window=60.0)

        assert limiter.allow("a") is True
        assert limiter.allow("a") is False
        assert limiter.allow("b") is True


class TestSlidingWindow:
    def test_rollover_seeds_weighted_count(self, clock):
        limiter = limiter_for(clock, strategy=Strategy.SLIDING_WINDOW, limit=4, window=10.0)
        for _ in range(4):
            assert limiter.allow("k")
        assert limiter.allow("k") is False

        # elapsed 15s: overlap 5s, weight 0.5, count = floor(4 * 0.5) + 1 = 3
        clock.advance(15.0)
        assert [limiter.allow("k") for _ in range(3)] == [True, True, False]

    def test_no_overlap_after_two_windows(self, clock):
        limiter = limiter_for(clock, strategy=Strategy.SLIDING_WINDOW, limit=2, window=1.0)
        limiter.allow("k")
        limiter.allow("k")

        clock.advance(2.5)

        assert [limiter.allow("k") for _ in range(3)] == [True, True, False]


class TestTokenBucket:
    def test_first_request_and_drain(self, clock):
        limiter = limiter_for(clock, strategy=Strategy.TOKEN_BUCKET, bucket_size=3, token_rate=0)

        # Full bucket of 3; allowed while tokens > 1.
        assert [limiter.allow("k") for _ in range(4)] == [True, True, True, False]

    def test_zero_rate_never_refills(self, clock):
        limiter = limiter_for(clock, strategy=Strategy.TOKEN_BUCKET, bucket_size=2, token_rate=0)
        limiter.allow("k")
        limiter.allow("k")

        clock.advance(3600)

        assert limiter.allow("k") is False

    def test_refill(self, clock):
        limiter = limiter_for(clock, strategy=Strategy.TOKEN_BUCKET, bucket_size=2, token_rate=1.0)
        limiter.allow("k")
        limiter.allow("k")
        assert limiter.allow("k") is False

        clock.advance(1.5)

        assert limiter.allow("k") is True

    def test_block_duration(self, clock):
        limiter = limiter_for(
            clock, strategy=Strategy.TOKEN_BUCKET, bucket_size=2, token_rate=10.0, block_duration=5.0
        )
        limiter.allow("k")
        limiter.allow("k")
        assert limiter.allow("k") is False

        clock.advance(1.0)
        assert limiter.allow("k") is False
        assert limiter.retry_after("k") == pytest.approx(4.0)

        clock.advance(4.5)
        assert limiter.allow("k") is True


class TestLeakyBucket:
    def test_leaks_over_time(self, clock):
        limiter = limiter_for(clock, strategy=Strategy.LEAKY_BUCKET, limit=2, leak_rate=1.0)

        assert [limiter.allow("k") for _ in range(3)] == [True, True, False]

        clock.advance(1.0)
        assert limiter.allow("k") is True
        assert limiter.allow("k") is False

    def test_fractional_leak_carries_over(self, clock):
        limiter = limiter_for(clock, strategy=Strategy.LEAKY_BUCKET, limit=1, leak_rate=1.0)
        limiter.allow("k")

        clock.advance(0.6)
        assert limiter.allow("k") is False
        clock.advance(0.6)

        assert limiter.allow("k") is True


class TestEviction:
    def test_sweep_drops_idle_entries(self, clock):
        limiter = limiter_for(clock, limit=5, window=10.0, entry_ttl=30.0)
        limiter.allow("idle")
        clock.advance(20)
        limiter.allow("active")

        clock.advance(15)

        assert limiter.sweep() == 1
        assert len(limiter) == 1

    def test_sweep_keeps_drained_bucket_that_never_refills(self, clock):
        limiter = limiter_for(clock, strategy=Strategy.TOKEN_BUCKET, bucket_size=2, token_rate=0, entry_ttl=1.0)
        limiter.allow("k")
        limiter.allow("k")
        assert limiter.allow("k") is False

        clock.advance(5)

        assert limiter.sweep() == 0
        assert limiter.allow("k") is False

    def test_sweep_keeps_blocked_key_until_block_ends(self, clock):
        limiter = limiter_for(
            clock, strategy=Strategy.TOKEN_BUCKET, bucket_size=2, token_rate=1.0, block_duration=300.0, window=60.0
        )
        limiter.allow("k")
        limiter.allow("k")
        assert limiter.allow("k") is False

        clock.advance(61)
        assert limiter.sweep() == 0
        assert limiter.allow("k") is False

        clock.advance(300)
        assert limiter.sweep() == 1
        assert limiter.allow("k") is True

    def test_sweep_waits_for_leaky_bucket_to_drain(self, clock):
        limiter = limiter_for(clock, strategy=Strategy.LEAKY_BUCKET, limit=10, leak_rate=0.1, entry_ttl=5.0)
        for _ in range(10):
            limiter.allow("k")

        clock.advance(50)
        assert limiter.sweep() == 0
        assert limiter.allow("k") is True

        clock.advance(200)
        assert limiter.sweep() == 1

    def test_request_on_removed_entry_looks_key_up_again(self, clock, monkeypatch):
        limiter = limiter_for(clock, limit=1, window=60.0)
        stale = _Entry(removed=True)
        lookups = []
        original = limiter._get_entry

        def get_entry(key):
            lookups.append(key)
            return stale if len(lookups) == 1 else original(key)

        monkeypatch.setattr(limiter, "_get_entry", get_entry)

        assert limiter.allow("k") is True
        assert lookups == ["k", "k"]
        assert stale.count == 0
        assert len(limiter) == 1

    def test_removed_entries_are_marked(self, clock):
        limiter = limiter_for(clock, limit=5, window=10.0)
        limiter.allow("a")
        limiter.allow("b")
        first = limiter._entries["a"]

        limiter.reset("a")
        clock.advance(20)
        second = limiter._entries["b"]
        limiter.sweep()

        assert first.removed and second.removed

    def test_max_entries_evicts_least_recently_used(self, clock):
        limiter = limiter_for(clock, limit=1, window=60.0, max_entries=2)
        limiter.allow("a")
        limiter.allow("b")
        limiter.allow("a")
        limiter.allow("c")

        assert len(limiter) == 2
        # "a" is still tracked; "b" was evicted and starts fresh.
        assert limiter.allow("a") is False
        assert limiter.allow("b") is True

    def test_reset(self, clock):
        limiter = limiter_for(clock, limit=1, window=60.0)
        limiter.allow("a")
        limiter.reset("a")

        assert limiter.allow("a") is True

    def test_sweeper_thread_stops_on_close(self, clock):
        limiter = limiter_for(clock, window=60.0)
        limiter.start_sweeper(interval=0.01)

        limiter.close()

        assert limiter._sweeper is None

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            RateLimiter(RateLimitConfig(window=0))

    def test_concurrent_allow_respects_limit(self):
        limiter = RateLimiter(RateLimitConfig(limit=50, window=60.0))
        results = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                allowed = limiter.allow("shared")
                with lock:
                    results.append(allowed)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 50


class TestRateLimiterMiddleware:
    def test_denies_with_429_and_retry_after(self, engine, make_request, clock):
        limiter = limiter_for(clock, limit=2, burst=1, window=1.0)
        engine.use(rate_limiter(limiter=limiter))
        engine.get("/", lambda ctx: ctx.text(200, "ok"))

        statuses = [engine.handle(make_request()).status for _ in range(4)]
        denied = engine.handle(make_request())

        assert statuses == [200, 200, 200, 429]
        assert denied.text == "Rate limit exceeded. Try again in 1s"
        assert denied.get_header("Retry-After") == "1"

        clock.advance(1.5)
        assert engine.handle(make_request()).status == 200

    def test_uses_the_given_limiter(self, clock):
        limiter = limiter_for(clock, limit=1, window=1.0)

        handler = rate_limiter(limiter=limiter)

        assert handler.limiter is limiter

    def test_config_and_limiter_together_are_rejected(self, clock):
        limiter = limiter_for(clock, limit=1, window=1.0)

        with pytest.raises(ValueError):
            rate_limiter(RateLimitConfig(limit=5), limiter=limiter)
        assert rate_limiter(limiter.config, limiter=limiter).limiter is limiter

    def test_keys_by_client_ip(self, engine, make_request):
        engine.use(rate_limiter(RateLimitConfig(limit=1, window=60.0)))
        engine.get("/", lambda ctx: ctx.text(200, "ok"))

        assert engine.handle(make_request(client=("1.1.1.1", 1))).status == 200
        assert engine.handle(make_request(client=("1.1.1.1", 1))).status == 429
        assert engine.handle(make_request(client=("2.2.2.2", 1))).status == 200

    def test_excluded_paths_bypass(self, engine, make_request):
        keys = []
        cfg = RateLimitConfig(limit=1, window=60.0, exclude_paths=["/health"],
                              key_func=lambda ctx: keys.append(ctx.path) or "k")
        engine.use(rate_limiter(cfg))
        engine.get("/health", lambda ctx: ctx.text(200, "ok"))

        for _ in range(3):
            assert engine.handle(make_request(path="/health")).status == 200
        assert keys == []

    def test_allow_and_block_lists(self, engine, make_request):
        cfg = RateLimitConfig(limit=1, window=60.0, allow_list=["10.0.0.0/8"], block_list=["203.0.113.7"])
        engine.use(rate_limiter(cfg))
        engine.get("/", lambda ctx: ctx.text(200, "ok"))

        for _ in range(3):
            assert engine.handle(make_request(client=("10.1.2.3", 1))).status == 200
        assert engine.handle(make_request(client=("203.0.113.7", 1))).status == 403

    def test_on_limit_callback(self, engine, make_request):
        seen = []

        def on_limit(ctx, window):
            seen.append(window)
            ctx.json(503, {"error": "slow down"})

        engine.use(rate_limiter(RateLimitConfig(limit=1, window=30.0, on_limit=on_limit)))
        engine.get("/", lambda ctx: ctx.text(200, "ok"))
        engine.handle(make_request())

        response = engine.handle(make_request())

        assert response.status == 503
        assert seen == [30.0]

    def test_limiter_is_exposed(self):
        handler = rate_limiter()
        assert isinstance(handler.limiter, RateLimiter)
