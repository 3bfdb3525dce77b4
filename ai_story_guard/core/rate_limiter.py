"""
Per-user daily rate limiting.

Counts are kept per (user, UTC day). There is no reset job: a day with
no record simply starts from zero.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Union

from ai_story_guard.storage.repository import UsageRepository


@dataclass(frozen=True)
class Allowed:
    """The call was counted. count is the user's total for the day."""
    count: int


@dataclass(frozen=True)
class Denied:
    """Quota exhausted. Nothing was counted."""
    count: int
    retry_after: int


RateDecision = Union[Allowed, Denied]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until_next_day(now: datetime) -> int:
    """Whole seconds from now to the next UTC midnight, at least 1."""
    now = now.astimezone(timezone.utc)
    tomorrow = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return max(1, int((tomorrow - now).total_seconds()))


class RateLimiter:
    """Gates expensive operations with a per-user daily call counter."""

    def __init__(self, repository: UsageRepository, clock: Callable[[], datetime] = _utc_now):
        self.repository = repository
        self.clock = clock

    def today(self) -> date:
        return self.clock().astimezone(timezone.utc).date()

    def check_and_increment(self, user_id: str, limit_per_day: int) -> RateDecision:
        """Count a call unless the user already reached today's limit.

        Denials do not touch stored state, so repeated denied calls cause
        no drift. A storage failure propagates: a call that cannot be
        counted must not proceed.

        Args:
            user_id: Calling user
            limit_per_day: Maximum calls allowed per day

        Returns:
            Allowed or Denied
        """
        if limit_per_day <= 0:
            return Denied(count=self.usage_today(user_id), retry_after=seconds_until_next_day(self.clock()))

        now = self.clock()
        allowed, count = self.repository.increment_if_below(
            user_id, now.astimezone(timezone.utc).date(), limit_per_day
        )
        if allowed:
            return Allowed(count=count)
        return Denied(count=count, retry_after=seconds_until_next_day(now))

    def usage_today(self, user_id: str) -> int:
        return self.repository.get(user_id, self.today()).call_count
