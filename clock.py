from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in naive UTC, matching how hold instants are stored."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)
