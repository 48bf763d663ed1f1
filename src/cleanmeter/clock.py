"""Clock collaborators used for counter resets and plan expiry."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Supplies the current instant and calendar day."""

    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...


class SystemClock:
    """Wall clock in UTC. Calendar days roll over at UTC midnight."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class FixedClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, current: Optional[datetime] = None):
        current = current or datetime(2024, 1, 1, tzinfo=timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()

    def advance(self, delta: timedelta) -> datetime:
        self.current = self.current + delta
        return self.current

    def set(self, current: datetime) -> None:
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self.current = current
