"""
Clock abstraction.

Every component reads the current time through a Clock so that expiry,
cooldown and review scheduling can be driven deterministically in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Iterable


class Clock(ABC):
    """Source of the current time (always timezone-aware UTC)."""

    @abstractmethod
    def now(self) -> datetime:
        pass

    def timestamp(self) -> float:
        """Current time as a Unix timestamp in seconds."""
        return self.now().timestamp()


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by a timedelta built from ``kwargs``."""
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._now = moment


def utc_day(moment: datetime):
    """Calendar day of ``moment`` in UTC."""
    return moment.astimezone(timezone.utc).date()


def start_of_utc_day(moment: datetime) -> datetime:
    day = utc_day(moment)
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def consecutive_active_days(event_times: Iterable[datetime], now: datetime) -> int:
    """
    Count consecutive UTC days with at least one event, walking back from today.

    The walk stops at the first day without an event, so no event today
    means a streak of 0.

    Args:
        event_times: Moments at which events happened
        now: Current time

    Returns:
        Length of the streak in days
    """
    active_days = {utc_day(moment) for moment in event_times if moment is not None}
    day = utc_day(now)
    streak = 0
    while day in active_days:
        streak += 1
        day -= timedelta(days=1)
    return streak
