# accounting/services/rate_limiter.py

"""
RATE LIMITING FOR THE CLASSIFICATION ORACLE

TokenBucket is a constructed object with its own state and clock, so every
resolver/oracle (and every test) can own an isolated instance.

ClassifierQuota combines a per-minute and a per-day bucket: a call is allowed
only if BOTH have a token, and tokens are only taken when both do.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from django.conf import settings


class TokenBucket:
    def __init__(
        self,
        capacity: int,
        refill_per_second: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be > 0")

        self.capacity = float(capacity)
        self.refill_per_second = float(refill_per_second)
        self._clock = clock
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._updated_at, 0.0)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
        self._updated_at = now

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def retry_after(self, tokens: float = 1.0) -> float:
        with self._lock:
            self._refill()
            missing = tokens - self._tokens
            return 0.0 if missing <= 0 else missing / self.refill_per_second

    def try_acquire(self, tokens: float = 1.0) -> bool:
        with self._lock:
            self._refill()
            if self._tokens < tokens:
                return False
            self._tokens -= tokens
            return True


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    limit: str = ""
    retry_after: float = 0.0


class ClassifierQuota:
    def __init__(
        self,
        per_minute: int,
        per_day: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.minute = TokenBucket(per_minute, per_minute / 60.0, clock=clock)
        self.day = TokenBucket(per_day, per_day / 86400.0, clock=clock)
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls) -> "ClassifierQuota":
        cfg = settings.LEDGER["CLASSIFIER"]
        return cls(cfg["PER_MINUTE"], cfg["PER_DAY"])

    def acquire(self) -> QuotaDecision:
        with self._lock:
            if self.minute.available < 1:
                return QuotaDecision(False, "minute", self.minute.retry_after())
            if self.day.available < 1:
                return QuotaDecision(False, "day", self.day.retry_after())

            self.minute.try_acquire()
            self.day.try_acquire()
            return QuotaDecision(True)
