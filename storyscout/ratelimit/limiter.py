"""Fixed-window rate and quota limiting on top of `limits`.

Windows are anchored at the first request a caller makes after the previous
window ran out, not at wall-clock boundaries. Counters live in a `limits`
storage (process memory unless another storage is passed in); each process
enforces its own limits with the default one.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

from storyscout.config import DAY_MS


logger = logging.getLogger(__name__)


def window_seconds(window_ms: int) -> int:
    """`limits` counts windows in whole seconds; partial seconds round up."""
    return max(1, math.ceil(int(window_ms) / 1000))


def limit_string(max_requests: int, window_ms: int) -> str:
    """Render a limit in the notation flask_limiter parses, e.g. "5 per 60 second"."""
    return f"{int(max_requests)} per {window_seconds(window_ms)} second"


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_ms: int = 0
    reason: Optional[str] = None

    @property
    def retry_after_seconds(self) -> int:
        if self.allowed:
            return 0
        return max(1, math.ceil(self.retry_after_ms / 1000))


class FixedWindowLimiter:
    """Allow at most `max_requests` per caller key in each `window_ms` window.

    A refused request still counts toward the window, so a caller hammering a
    closed window does not reopen it early.
    """

    def __init__(
        self,
        namespace: str,
        *,
        window_ms: int,
        max_requests: int,
        storage: Optional[Storage] = None,
        exempt_keys: Iterable[str] = (),
        bypass_exempt: bool = False,
        message: str = "Too many requests, please try again later.",
    ):
        self.namespace = namespace
        self.max_requests = int(max_requests)
        self.item = RateLimitItemPerSecond(self.max_requests, window_seconds(window_ms), namespace=namespace)
        self.storage = storage if storage is not None else MemoryStorage()
        self.strategy = FixedWindowRateLimiter(self.storage)
        self.exempt_keys = frozenset(exempt_keys)
        self.bypass_exempt = bypass_exempt
        self.message = message

    @classmethod
    def for_settings(cls, namespace: str, settings, *, window_ms: int, max_requests: int, storage=None, message=None):
        kwargs = {}
        if message:
            kwargs["message"] = message
        return cls(
            namespace,
            window_ms=window_ms,
            max_requests=max_requests,
            storage=storage,
            exempt_keys=settings.rate_limit_exempt_ips,
            bypass_exempt=not settings.is_production,
            **kwargs,
        )

    @property
    def window_ms(self) -> int:
        return self.item.get_expiry() * 1000

    def is_exempt(self, caller_key: str) -> bool:
        return self.bypass_exempt and caller_key in self.exempt_keys

    def _retry_after_ms(self, caller_key: str) -> int:
        stats = self.strategy.get_window_stats(self.item, caller_key)
        return max(0, int(round((stats.reset_time - time.time()) * 1000)))

    def check(self, caller_key: str) -> RateDecision:
        """Count one request for `caller_key` and decide whether it may proceed."""
        if self.is_exempt(caller_key):
            return RateDecision(allowed=True, limit=self.max_requests, remaining=self.max_requests)

        if self.strategy.hit(self.item, caller_key):
            remaining = self.strategy.get_window_stats(self.item, caller_key).remaining
            return RateDecision(allowed=True, limit=self.max_requests, remaining=remaining)

        logger.info(f"[RateLimit] {self.namespace} refused {caller_key} (max {self.max_requests})")
        return RateDecision(
            allowed=False,
            limit=self.max_requests,
            remaining=0,
            retry_after_ms=self._retry_after_ms(caller_key),
            reason=self.message,
        )

    def peek(self, caller_key: str) -> RateDecision:
        """Report the caller's standing without counting a request."""
        if self.strategy.test(self.item, caller_key):
            remaining = self.strategy.get_window_stats(self.item, caller_key).remaining
            return RateDecision(allowed=True, limit=self.max_requests, remaining=remaining)
        return RateDecision(
            allowed=False,
            limit=self.max_requests,
            remaining=0,
            retry_after_ms=self._retry_after_ms(caller_key),
            reason=self.message,
        )

    def reset(self, caller_key: str) -> None:
        self.storage.clear(self.item.key_for(caller_key))


class SendQuota:
    """Daily outbound-message quota shared by the whole process."""

    KEY = "global"

    def __init__(self, max_per_window: int = 20, *, window_ms: int = DAY_MS, storage: Optional[Storage] = None):
        self.limiter = FixedWindowLimiter(
            "send-quota",
            window_ms=window_ms,
            max_requests=max_per_window,
            storage=storage,
            message="Daily message quota exhausted.",
        )

    @classmethod
    def from_settings(cls, settings, *, storage: Optional[Storage] = None) -> "SendQuota":
        return cls(settings.send_quota_max, window_ms=settings.send_quota_window_ms, storage=storage)

    def try_consume(self) -> RateDecision:
        return self.limiter.check(self.KEY)

    def usage(self) -> Dict[str, int]:
        decision = self.limiter.peek(self.KEY)
        return {
            "limit": decision.limit,
            "used": decision.limit - decision.remaining,
            "remaining": decision.remaining,
            "retry_after_seconds": decision.retry_after_seconds,
        }
