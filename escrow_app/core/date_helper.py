from datetime import date, datetime

from dateutil.relativedelta import relativedelta


def add_months(start: date, months: int) -> date:
    return start + relativedelta(months=months)


def days_until(target: date | None, today: date) -> int:
    if target is None:
        return 0
    return max(0, (target - today).days)


def seconds_until(target: datetime | None, now: datetime) -> int:
    if target is None:
        return 0
    return max(0, int((target - now).total_seconds()))
