"""
Input validation and rate limiting for the ChantierPro compliance core.

Components:
- InputValidator: SQL injection / XSS detection, HTML sanitization, rule-based
  object validation
- FixedWindowRateLimiter: per-identifier fixed-window request counter
- InMemoryCounterStore: process-local buckets (single instance deployments)
- RedisCounterStore: shared buckets for multi-instance deployments

Pattern matching is defense-in-depth only. Persistence code must still use
parameterized queries.

Usage:
    from src.lib.security import FixedWindowRateLimiter, InputValidator, ValidationRule

    # Input validation
    result = InputValidator.validate_object(
        payload,
        {"nom": ValidationRule(required=True, max_length=100)},
    )
    if not result.valid:
        ...

    # Rate limiting
    limiter = FixedWindowRateLimiter(event_logger=event_logger)
    if not limiter.allow(client_ip):
        ...
"""

from __future__ import annotations

import hashlib
import re
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from src.infra.monitoring import record_rate_limit_rejection
from src.lib.audit import RiskLevel, SecurityEvent, SecurityEventLogger

logger = structlog.get_logger()

DEFAULT_MAX_REQUESTS = 100
DEFAULT_WINDOW_MS = 15 * 60 * 1000


def hash_uid(user_id: str | int) -> str:
    """Return a 12-char SHA-256 prefix for log-safe user identification."""
    return hashlib.sha256(str(user_id).encode()).hexdigest()[:12]


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


# ============================================
# Input Validator
# ============================================

@dataclass
class ValidationRule:
    """Constraints applied to one key of a validated object."""

    required: bool = False
    max_length: int | None = None
    pattern: re.Pattern[str] | str | None = None


@dataclass
class ValidationResult:
    """Outcome of ``InputValidator.validate_object``."""

    valid: bool
    errors: list[str] = field(default_factory=list)


class InputValidator:
    """
    Pattern-based injection detection and sanitization.

    All methods are pure: no logging, no state.
    """

    SQL_INJECTION_PATTERNS = [
        re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|UNION|ALTER|CREATE)\b", re.IGNORECASE),
        re.compile(r"\b(OR|AND)\s+\d+\s*=\s*\d+", re.IGNORECASE),
        re.compile(r"('|\")\s*(OR|AND)", re.IGNORECASE),
        re.compile(r"(--|#|/\*|\*/)"),  # SQL comments
    ]

    XSS_PATTERNS = [
        re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"on\w+\s*=", re.IGNORECASE),  # inline event handlers
        re.compile(r"<iframe\b", re.IGNORECASE),
        re.compile(r"<embed\b", re.IGNORECASE),
        re.compile(r"<object\b", re.IGNORECASE),
    ]

    HTML_TAG_PATTERN = re.compile(r"<[^>]*>")

    HTML_ENTITIES = {
        "&": "&amp;",
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&#x27;",
    }

    # An "&" that already opens one of the entities above is left alone,
    # so sanitize() is idempotent.
    HTML_ESCAPE_PATTERN = re.compile(r"&(?!(?:amp|lt|gt|quot|#x27);)|[<>\"']")

    @classmethod
    def has_sql_injection(cls, value: str) -> bool:
        """True if ``value`` matches any SQL keyword/operator/comment pattern."""
        return any(p.search(value) for p in cls.SQL_INJECTION_PATTERNS)

    @classmethod
    def has_xss(cls, value: str) -> bool:
        """True if ``value`` contains script blocks, JS URIs, event handlers or embeds."""
        return any(p.search(value) for p in cls.XSS_PATTERNS)

    @classmethod
    def sanitize(cls, value: str) -> str:
        """
        Strip HTML tags, then entity-escape ``& < > " '``.

        Args:
            value: Raw user input

        Returns:
            Text safe for HTML display
        """
        if not value:
            return ""
        stripped = cls.HTML_TAG_PATTERN.sub("", value)
        return cls.HTML_ESCAPE_PATTERN.sub(lambda m: cls.HTML_ENTITIES[m.group(0)], stripped)

    @classmethod
    def validate_object(
        cls,
        obj: Mapping[str, Any],
        rules: Mapping[str, ValidationRule],
    ) -> ValidationResult:
        """
        Validate ``obj`` against per-key rules.

        Absent (None or "") values fail only when required. String values are
        checked for SQL injection, XSS, ``max_length`` and ``pattern`` in that
        order; every failing check adds one message.
        """
        errors: list[str] = []

        for key, rule in rules.items():
            value = obj.get(key)

            if value is None or value == "":
                if rule.required:
                    errors.append(f"{key} is required")
                continue

            if not isinstance(value, str):
                continue

            if cls.has_sql_injection(value):
                errors.append(f"{key} contains potential SQL injection")
            if cls.has_xss(value):
                errors.append(f"{key} contains potential XSS")
            if rule.max_length is not None and len(value) > rule.max_length:
                errors.append(f"{key} exceeds maximum length of {rule.max_length}")
            if rule.pattern is not None:
                pattern = re.compile(rule.pattern) if isinstance(rule.pattern, str) else rule.pattern
                if not pattern.search(value):
                    errors.append(f"{key} does not match required pattern")

        return ValidationResult(valid=not errors, errors=errors)


# ============================================
# Rate Limit Counter Stores
# ============================================

@dataclass
class RateLimitBucket:
    """Counter state for one identifier in its current window."""

    key: str
    count: int
    reset_time: int  # epoch ms


class CounterStore(Protocol):
    """Storage for fixed-window counters."""

    def hit(self, key: str, window_ms: int, now_ms: int) -> RateLimitBucket:
        """Atomically count one request and return the updated bucket."""
        ...

    def get(self, key: str) -> RateLimitBucket | None: ...

    def delete(self, key: str) -> None: ...


class KeyedLocks:
    """
    Lazily created per-key locks.

    The registry lock is held only to look up or create a key's lock, so
    operations on different keys never wait on each other. A key's lock may
    be discarded while held; ``hold`` retries until it owns the lock that is
    currently registered, so a key is never guarded by two locks at once.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def __call__(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[threading.Lock]:
        """Acquire the key's current lock."""
        while True:
            lock = self(key)
            lock.acquire()
            with self._registry_lock:
                if self._locks.get(key) is lock:
                    break
            # Discarded while we waited
            lock.release()
        try:
            yield lock
        finally:
            lock.release()

    def discard(self, key: str) -> None:
        """Forget the key's lock. Call only while holding it."""
        with self._registry_lock:
            self._locks.pop(key, None)


class InMemoryCounterStore:
    """
    Process-local counter store.

    Buckets are lost on restart and not shared between instances. Use
    RedisCounterStore when running more than one process.

    Expired buckets (and their locks) are swept from ``hit`` at most once per
    ``sweep_interval_ms``, so memory stays proportional to the identifiers
    seen in active windows.
    """

    def __init__(self, sweep_interval_ms: int = 60_000) -> None:
        self._buckets: dict[str, RateLimitBucket] = {}
        self._locks = KeyedLocks()
        self._sweep_interval_ms = sweep_interval_ms
        self._sweep_lock = threading.Lock()
        self._last_sweep_ms: int | None = None

    def __len__(self) -> int:
        return len(self._buckets)

    def hit(self, key: str, window_ms: int, now_ms: int) -> RateLimitBucket:
        with self._locks.hold(key):
            bucket = self._buckets.get(key)
            if bucket is None or now_ms > bucket.reset_time:
                bucket = RateLimitBucket(key=key, count=1, reset_time=now_ms + window_ms)
                self._buckets[key] = bucket
            else:
                bucket.count += 1
            result = RateLimitBucket(key=bucket.key, count=bucket.count, reset_time=bucket.reset_time)
        self._maybe_sweep(now_ms)
        return result

    def get(self, key: str) -> RateLimitBucket | None:
        bucket = self._buckets.get(key)
        if bucket is None:
            return None
        with self._locks.hold(key):
            bucket = self._buckets.get(key)
            if bucket is None:
                return None
            return RateLimitBucket(key=bucket.key, count=bucket.count, reset_time=bucket.reset_time)

    def delete(self, key: str) -> None:
        with self._locks.hold(key):
            self._buckets.pop(key, None)
            self._locks.discard(key)

    def _maybe_sweep(self, now_ms: int) -> None:
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            if self._last_sweep_ms is not None and now_ms - self._last_sweep_ms < self._sweep_interval_ms:
                return
            self._last_sweep_ms = now_ms
        finally:
            self._sweep_lock.release()
        self.cleanup_expired(now_ms)

    def cleanup_expired(self, now_ms: int) -> int:
        """Drop buckets whose window has ended. Returns the number removed."""
        removed = 0
        for key in [k for k, b in list(self._buckets.items()) if now_ms > b.reset_time]:
            with self._locks.hold(key):
                bucket = self._buckets.get(key)
                if bucket is not None and now_ms > bucket.reset_time:
                    del self._buckets[key]
                    self._locks.discard(key)
                    removed += 1
        return removed


class RedisCounterStore:
    """
    Shared counter store backed by Redis.

    ``SET key 0 PX window NX``, ``INCR`` and ``PTTL`` run in one MULTI/EXEC
    pipeline: the first hit of a window creates the key with a TTL equal to
    the window, later hits only increment. Redis expiry performs the window
    reset. Works on any Redis server version (no ``PEXPIRE NX``).
    """

    def __init__(self, client: Any, prefix: str = "chantierpro:ratelimit:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, prefix: str = "chantierpro:ratelimit:") -> RedisCounterStore:
        import redis

        return cls(redis.from_url(redis_url, decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def hit(self, key: str, window_ms: int, now_ms: int) -> RateLimitBucket:
        redis_key = self._key(key)
        pipe = self._client.pipeline(transaction=True)
        pipe.set(redis_key, 0, px=window_ms, nx=True)
        pipe.incr(redis_key)
        pipe.pttl(redis_key)
        _, count, ttl_ms = pipe.execute()

        ttl = int(ttl_ms) if ttl_ms is not None else -2
        if ttl == -1:
            # Key expired between SET and INCR and was recreated without a TTL
            self._client.pexpire(redis_key, window_ms)
        if ttl <= 0:
            ttl = window_ms
        return RateLimitBucket(key=key, count=int(count), reset_time=now_ms + ttl)

    def get(self, key: str) -> RateLimitBucket | None:
        redis_key = self._key(key)
        pipe = self._client.pipeline(transaction=True)
        pipe.get(redis_key)
        pipe.pttl(redis_key)
        raw_count, ttl_ms = pipe.execute()
        if raw_count is None:
            return None
        ttl = max(int(ttl_ms or 0), 0)
        return RateLimitBucket(key=key, count=int(raw_count), reset_time=_wall_clock_ms() + ttl)

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))


# ============================================
# Fixed Window Rate Limiter
# ============================================

class FixedWindowRateLimiter:
    """
    Fixed-window request counter keyed by client identifier.

    The first request of a window sets the count to 1 and the reset time to
    ``now + window_ms``. Requests past ``max_requests`` are refused and
    reported as a MEDIUM ``RATE_LIMIT_EXCEEDED`` security event.

    Args:
        store: Counter storage (InMemoryCounterStore by default).
        event_logger: Receives RATE_LIMIT_EXCEEDED events.
        clock: Zero-arg callable returning epoch milliseconds.
    """

    def __init__(
        self,
        store: CounterStore | None = None,
        event_logger: SecurityEventLogger | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._store: CounterStore = store if store is not None else InMemoryCounterStore()
        self._event_logger = event_logger
        self._clock = clock or _wall_clock_ms

    @property
    def store(self) -> CounterStore:
        return self._store

    def allow(
        self,
        identifier: str,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_ms: int = DEFAULT_WINDOW_MS,
    ) -> bool:
        """
        Count one request for ``identifier``.

        Returns:
            True if the request fits in the current window, False otherwise.
        """
        bucket = self._store.hit(identifier, window_ms, self._clock())
        if bucket.count <= max_requests:
            return True

        logger.warning(
            "rate_limit_exceeded",
            identifier=identifier,
            count=bucket.count,
            max_requests=max_requests,
        )
        record_rate_limit_rejection()
        if self._event_logger is not None:
            self._event_logger.log_security_event(SecurityEvent(
                action="RATE_LIMIT_EXCEEDED",
                resource="API",
                ip_address=identifier,
                user_agent="unknown",
                success=False,
                risk_level=RiskLevel.MEDIUM,
                details={
                    "maxRequests": max_requests,
                    "windowMs": window_ms,
                    "currentCount": bucket.count,
                },
            ))
        return False

    def remaining(self, identifier: str, max_requests: int = DEFAULT_MAX_REQUESTS) -> int:
        """Requests left in the current window (does not count a request)."""
        bucket = self._store.get(identifier)
        if bucket is None or self._clock() > bucket.reset_time:
            return max_requests
        return max(0, max_requests - bucket.count)

    def reset(self, identifier: str) -> None:
        """Forget the identifier's window (admin unblock)."""
        self._store.delete(identifier)
        logger.info("rate_limit_reset", identifier=identifier)
