from datetime import date, datetime, timezone


class SystemClock:
    """Naive UTC wall clock; every persisted timestamp goes through it."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        return self.now().date()


system_clock = SystemClock()
