"""
Admission Rate Limiter — the one shared counter in the admission path.

Sliding hour and day windows. ``acquire`` checks and records in a single
locked step, so concurrent admissions can never overshoot a limit.
"""

import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Optional

from autopilot_kernel.core.exceptions import ResourceExhaustedError

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


class AdmissionRateLimiter:
    def __init__(self, max_per_hour: int = 10, max_per_day: int = 50):
        self.max_per_hour = max_per_hour
        self.max_per_day = max_per_day
        self._admissions: Deque[datetime] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: datetime) -> None:
        while self._admissions and self._admissions[0] <= now - DAY:
            self._admissions.popleft()

    def _count_since(self, since: datetime) -> int:
        return sum(1 for t in self._admissions if t > since)

    def acquire(self, now: Optional[datetime] = None) -> None:
        """Record one admission or raise ResourceExhaustedError without recording it."""
        now = now or datetime.utcnow()
        with self._lock:
            self._prune(now)
            if len(self._admissions) >= self.max_per_day:
                raise ResourceExhaustedError("day", self.max_per_day)
            if self._count_since(now - HOUR) >= self.max_per_hour:
                raise ResourceExhaustedError("hour", self.max_per_hour)
            self._admissions.append(now)

    def next_available(self, now: Optional[datetime] = None) -> datetime:
        """Earliest time at which ``acquire`` could succeed again."""
        now = now or datetime.utcnow()
        with self._lock:
            self._prune(now)
            available = now
            if len(self._admissions) >= self.max_per_day:
                available = max(available, self._admissions[-self.max_per_day] + DAY)
            recent = [t for t in self._admissions if t > now - HOUR]
            if len(recent) >= self.max_per_hour:
                available = max(available, recent[-self.max_per_hour] + HOUR)
            return available

    def update_limits(self, max_per_hour: int, max_per_day: int) -> None:
        with self._lock:
            self.max_per_hour = max_per_hour
            self.max_per_day = max_per_day

    def usage(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        with self._lock:
            self._prune(now)
            return {
                "last_hour": self._count_since(now - HOUR),
                "last_day": len(self._admissions),
                "max_per_hour": self.max_per_hour,
                "max_per_day": self.max_per_day,
            }
