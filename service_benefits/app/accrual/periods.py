"""
Period calendar: budget period kind + instant -> (label, expiry).
"""

from datetime import datetime, timezone
from typing import Tuple

from ..budget import BudgetPeriod


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _month_start(year: int, month: int) -> datetime:
    # month may run one past December
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return datetime(year, month, 1, tzinfo=timezone.utc)


def compute_period_info(period: BudgetPeriod, now: datetime) -> Tuple[str, datetime]:
    """Return the period label containing ``now`` and the instant it expires.

    Labels are ``2026-M03`` (monthly), ``2026-Q1`` (quarterly) and ``2026``
    (yearly). Expiry is the first instant of the following period, in UTC.
    """
    now = _as_utc(now)
    period = BudgetPeriod(period)

    if period == BudgetPeriod.MONTHLY:
        return f"{now.year}-M{now.month:02d}", _month_start(now.year, now.month + 1)

    if period == BudgetPeriod.YEARLY:
        return f"{now.year}", _month_start(now.year + 1, 1)

    quarter = (now.month - 1) // 3 + 1
    return f"{now.year}-Q{quarter}", _month_start(now.year, quarter * 3 + 1)
