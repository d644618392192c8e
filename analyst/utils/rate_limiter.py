from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from analyst.config import get_settings
from analyst.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_at: float


class RateLimiter:
    """Fixed-window request counter per user.

    A window opens on a user's first request and lasts ``window_sec``. Expired
    entries are swept opportunistically, at most once per ``sweep_interval_sec``.
    """

    def __init__(
        self,
        max_requests: int = 50,
        window_sec: float = 3600,
        sweep_interval_sec: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_sec = window_sec
        self.sweep_interval_sec = sweep_interval_sec
        self._clock = clock
        self._limits: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def check(self, user_id: str) -> RateLimitStatus:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.sweep_interval_sec:
                self._sweep_locked(now)
            entry = self._limits.get(user_id)
            if entry is None or now > entry.reset_at:
                entry = RateLimitEntry(count=1, reset_at=now + self.window_sec)
                self._limits[user_id] = entry
                return RateLimitStatus(True, self.max_requests - 1, entry.reset_at)
            entry.count += 1
            if entry.count > self.max_requests:
                return RateLimitStatus(False, 0, entry.reset_at)
            return RateLimitStatus(True, self.max_requests - entry.count, entry.reset_at)

    def enforce(self, user_id: str) -> RateLimitStatus:
        status = self.check(user_id)
        if not status.allowed:
            logger.warning("Rate limit exceeded for user %s", user_id)
            raise RateLimitExceeded(user_id, status.reset_at)
        return status

    def _sweep_locked(self, now: float) -> int:
        expired = [uid for uid, e in self._limits.items() if now > e.reset_at]
        for uid in expired:
            del self._limits[uid]
        self._last_sweep = now
        return len(expired)

    def sweep(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    def reset(self, user_id: str) -> None:
        with self._lock:
            self._limits.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._limits)

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        with self._lock:
            active = sum(1 for e in self._limits.values() if now <= e.reset_at)
            return {"total_users": len(self._limits), "active_users": active}


rate_limiter = RateLimiter(
    max_requests=get_settings().rate_limit_max_requests,
    window_sec=get_settings().rate_limit_window_sec,
)
