"""Process-local rate, quota and abuse limiting."""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from eatlock.errors import RateLimitedError

DAY_SECONDS = 24 * 60 * 60
MINUTE_SECONDS = 60


class RateLimiter(Protocol):
    """Counter store keyed by ``{operation}:{scope}:{id}``."""

    def allow(self, key: str, limit: int, window_seconds: float) -> bool:
        """Record a hit in a sliding window; return false when over the limit."""

    def consume(self, key: str, limit: int, window_seconds: float) -> "QuotaResult":
        """Count a hit against a fixed window quota."""


@dataclass(frozen=True)
class QuotaResult:
    """Outcome of a fixed window quota check."""

    allowed: bool
    remaining: int
    reset_at: float


@dataclass
class _FixedWindow:
    count: int
    reset_at: float


@dataclass
class InMemoryRateLimiter(RateLimiter):
    """Rate limiter backed by dictionaries; state is lost on restart."""

    clock: Callable[[], float] = time.time
    _windows: dict[str, _FixedWindow] = field(default_factory=dict)
    _hits: dict[str, list[float]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def allow(self, key: str, limit: int, window_seconds: float) -> bool:
        """Sliding window check; only accepted hits are recorded."""
        with self._lock:
            now = self.clock()
            recent = [ts for ts in self._hits.get(key, []) if now - ts < window_seconds]
            if len(recent) >= limit:
                self._hits[key] = recent
                return False
            recent.append(now)
            self._hits[key] = recent
            return True

    def consume(self, key: str, limit: int, window_seconds: float) -> QuotaResult:
        """Fixed window check that resets to one hit once the window expires."""
        with self._lock:
            now = self.clock()
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                window = _FixedWindow(count=1, reset_at=now + window_seconds)
                self._windows[key] = window
                return QuotaResult(True, max(limit - 1, 0), window.reset_at)
            if window.count >= limit:
                return QuotaResult(False, 0, window.reset_at)
            window.count += 1
            return QuotaResult(True, limit - window.count, window.reset_at)


@dataclass
class FailedScanTracker:
    """Tracks rejected-verdict scans and the cooldown they trigger."""

    threshold: int = 10
    window_seconds: float = 10 * MINUTE_SECONDS
    cooldown_seconds: float = 5 * MINUTE_SECONDS
    clock: Callable[[], float] = time.time
    _failures: dict[str, list[float]] = field(default_factory=dict)
    _cooldowns: dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def record(self, user_id: str) -> None:
        """Record one rejected scan, starting a cooldown at the threshold."""
        with self._lock:
            now = self.clock()
            recent = [
                ts
                for ts in self._failures.get(user_id, [])
                if now - ts < self.window_seconds
            ]
            recent.append(now)
            self._failures[user_id] = recent
            if len(recent) >= self.threshold:
                self._cooldowns[user_id] = now + self.cooldown_seconds

    def cooldown_until(self, user_id: str) -> float | None:
        """Return the cooldown end when the user is cooling down."""
        with self._lock:
            until = self._cooldowns.get(user_id)
            if until is None:
                return None
            if self.clock() > until:
                self._cooldowns.pop(user_id, None)
                return None
            return until


@dataclass(frozen=True)
class LimitPolicy:
    """Limiter layers that apply to one operation."""

    operation: str
    burst_limit: int
    burst_message: str
    burst_window_seconds: float = MINUTE_SECONDS
    ip_multiplier: int = 2
    ip_burst_limit: int | None = None
    daily_limit: int | None = None
    daily_message: str = "Rate limit exceeded"
    daily_window_seconds: float = DAY_SECONDS
    concurrency_group: str | None = None
    concurrency_limit: int = 3
    concurrency_window_seconds: float = MINUTE_SECONDS
    check_cooldown: bool = False

    @property
    def ip_limit(self) -> int:
        """Burst limit applied per client address."""
        return self.ip_burst_limit or self.burst_limit * self.ip_multiplier


@dataclass
class AbuseGuard:
    """Applies quota, burst, concurrency and cooldown layers to a request."""

    limiter: RateLimiter
    failed_scans: FailedScanTracker
    enforce: bool = True
    daily_limits_enabled: bool = True

    def check(self, policy: LimitPolicy, user_id: str, ip: str) -> None:
        """Raise ``RateLimitedError`` when any layer rejects the request."""
        if not self.enforce:
            return
        if policy.check_cooldown:
            until = self.failed_scans.cooldown_until(user_id)
            if until is not None:
                raise RateLimitedError(
                    "Too many failed scans, try again in 5 minutes.", reset_at=until
                )
        if policy.concurrency_group and not self.limiter.allow(
            f"{policy.concurrency_group}-active:user:{user_id}",
            policy.concurrency_limit,
            policy.concurrency_window_seconds,
        ):
            raise RateLimitedError(
                "Too many active scan requests. Please wait a moment."
            )
        user_ok = self.limiter.allow(
            f"{policy.operation}:user:{user_id}",
            policy.burst_limit,
            policy.burst_window_seconds,
        )
        ip_ok = self.limiter.allow(
            f"{policy.operation}:ip:{ip}",
            policy.ip_limit,
            policy.burst_window_seconds,
        )
        if not user_ok or not ip_ok:
            raise RateLimitedError(policy.burst_message)
        if policy.daily_limit is not None and self.daily_limits_enabled:
            quota = self.limiter.consume(
                f"{policy.operation}-daily:user:{user_id}",
                policy.daily_limit,
                policy.daily_window_seconds,
            )
            if not quota.allowed:
                raise RateLimitedError(
                    policy.daily_message, remaining=0, reset_at=quota.reset_at
                )

    def record_failed_scan(self, user_id: str) -> None:
        """Feed a rejected verdict into the cooldown tracker."""
        if self.enforce:
            self.failed_scans.record(user_id)
