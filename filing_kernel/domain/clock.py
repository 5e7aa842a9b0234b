"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock interface so that domain, service and batch
    code never call ``datetime.now()`` or ``date.today()`` directly.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).

Business dates:
    Filing deadlines are calendar dates in the firm's local timezone
    (Europe/London by default).  ``Clock.today()`` converts an aware
    ``now()`` into that timezone before taking the date.  ``local_date`` and
    ``local_wall_time`` take naive datetimes as already local; ``as_utc``
    takes them as UTC, the frame every stored instant is in.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Europe/London"


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def local_date(moment: datetime, tz_name: str = DEFAULT_TIMEZONE) -> date:
    """Business date of ``moment`` in ``tz_name``; naive values are taken as local."""
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(_zone(tz_name)).date()


def as_utc(moment: datetime) -> datetime:
    """Aware UTC view of ``moment``; naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def local_wall_time(moment: datetime, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """Naive wall-clock time of ``moment`` in ``tz_name``."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(_zone(tz_name)).replace(tzinfo=None)


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        All services that need current time must receive a Clock instance
        via constructor injection.

    Guarantees:
        - ``now()`` returns a ``datetime`` (aware in production).
        - ``now_utc()`` is always aware UTC; stored instants use it.
        - ``today()`` returns the local business date.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def now_utc(self) -> datetime:
        """Get the current time as an aware UTC instant."""
        return as_utc(self.now())

    def today(self, tz_name: str = DEFAULT_TIMEZONE) -> date:
        """Get the current business date in ``tz_name``."""
        return local_date(self.now(), tz_name)


class SystemClock(Clock):
    """
    Production clock that returns actual system time.

    Guarantees:
        Returns timezone-aware UTC ``datetime`` instances.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()`` or ``set_time()`` is called.
        - ``tick()`` advances by exactly 1 second and returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._advance_seconds += seconds

    def advance_days(self, days: int) -> None:
        self.advance(days * 86400)

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()
