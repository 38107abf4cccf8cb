from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo

LOW_REGIME_BASE = 10
HIGH_REGIME_BASE = 50
REGIME_SPREAD = 400


class DailyPriceSource(Protocol):
    """Produces the price a user is offered on a given day."""

    def draw(self, user_id: int, day: date) -> int: ...


def draw_price(low_regime: bool, u: float) -> int:
    """Map a uniform draw ``u`` in [0, 1) to a price in one of the two regimes."""
    spread = math.sqrt(u * REGIME_SPREAD)
    if low_regime:
        return math.floor(LOW_REGIME_BASE + spread)
    return math.floor(HIGH_REGIME_BASE - spread)


def market_day(now: datetime, tz: ZoneInfo) -> date:
    return now.astimezone(tz).date()


def start_of_next_day(day: date, tz: ZoneInfo) -> datetime:
    """First instant after ``day`` in ``tz``, returned in UTC. Exclusive expiry bound for the day."""
    return datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)
