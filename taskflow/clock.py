"""
Clock Module

Source of "now" for all deadline math. Components receive a clock instead of
calling datetime.now() so that tests can move time forward explicitly.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone, timedelta
from typing import Optional


class Clock(ABC):
    """Abstract time source"""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime"""
        pass


class SystemClock(Clock):
    """Wall clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """Clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        if start is None:
            start = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
        elif start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        """Jump to an absolute moment"""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        self._now = moment

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword arguments (hours=, minutes=, ...)"""
        self._now = self._now + timedelta(**kwargs)
        return self._now
