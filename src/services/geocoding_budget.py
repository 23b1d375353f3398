"""
Daily budget for the premium (place search + details) geocoding backend.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable

from src.services.location_language import COMPLEXITY_COMPLEX, classify_complexity

LOGGER = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 1000
# One place search plus one place details request.
PREMIUM_CALLS_PER_LOOKUP = 2


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class BudgetUsage:
    used: int
    limit: int
    remaining: int
    date: str

    def to_serializable(self) -> dict[str, object]:
        return {
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "date": self.date,
        }


class BudgetTracker:
    """In-memory counter of premium API calls made today.

    The counter is reset lazily the first time it is touched on a new date and is
    lost on restart. All reads and writes go through one lock so the limit check and
    the increment cannot interleave across threads.
    """

    def __init__(
        self,
        limit_per_day: int = DEFAULT_DAILY_LIMIT,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.limit_per_day = limit_per_day
        self._today = today
        self._lock = threading.Lock()
        self._as_of = today()
        self._used = 0

    def reset_if_new_day(self) -> None:
        with self._lock:
            self._reset_locked()

    def _reset_locked(self) -> None:
        current = self._today()
        if current != self._as_of:
            LOGGER.info(
                "Resetting premium geocoding budget for %s (used %s on %s)",
                current.isoformat(),
                self._used,
                self._as_of.isoformat(),
            )
            self._as_of = current
            self._used = 0

    @property
    def calls_used_today(self) -> int:
        return self.usage().used

    def usage(self) -> BudgetUsage:
        with self._lock:
            self._reset_locked()
            return BudgetUsage(
                used=self._used,
                limit=self.limit_per_day,
                remaining=max(0, self.limit_per_day - self._used),
                date=self._as_of.isoformat(),
            )

    def is_exhausted(self) -> bool:
        with self._lock:
            self._reset_locked()
            return self._used >= self.limit_per_day

    def should_use_premium(
        self,
        place_name: str | None,
        admin_division: str | None = None,
        language: str | None = None,
    ) -> bool:
        usage = self.usage()
        if usage.used >= usage.limit:
            LOGGER.warning(
                "Premium geocoding budget exhausted (%s/%s); using bulk backend.",
                usage.used,
                usage.limit,
            )
            return False
        return classify_complexity(place_name, admin_division, language) == COMPLEXITY_COMPLEX

    def increment(self, calls: int = PREMIUM_CALLS_PER_LOOKUP) -> int:
        with self._lock:
            self._reset_locked()
            self._used += calls
            return self._used

    def try_reserve(self, calls: int = PREMIUM_CALLS_PER_LOOKUP) -> bool:
        """Check the limit and take ``calls`` units in one step."""
        with self._lock:
            self._reset_locked()
            if self._used + calls > self.limit_per_day:
                return False
            self._used += calls
            LOGGER.debug("Reserved %s premium calls (%s/%s used)", calls, self._used, self.limit_per_day)
            return True
