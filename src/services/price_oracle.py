from __future__ import annotations

import logging
from datetime import date, datetime
from zoneinfo import ZoneInfo

from db.repositories import DailyPriceRepository
from domain.errors import LedgerInvariantError
from domain.market import DailyPrice, UserId
from domain.pricing import DailyPriceSource, market_day, start_of_next_day

logger = logging.getLogger(__name__)


class PriceOracle:
    def __init__(
        self,
        source: DailyPriceSource,
        store: DailyPriceRepository,
        *,
        tz: ZoneInfo,
    ) -> None:
        self.source = source
        self.store = store
        self.tz = tz

    def day_of(self, now: datetime) -> date:
        return market_day(now, self.tz)

    def price_today(self, user_id: int, now: datetime) -> DailyPrice:
        day = self.day_of(now)
        existing = self.store.get(user_id, day, now)
        if existing is not None:
            return existing

        drawn = DailyPrice(
            user_id=UserId(user_id),
            day=day,
            price=self.source.draw(user_id, day),
            purchased_today=0,
            expires_at=start_of_next_day(day, self.tz),
        )
        logger.debug("Drew daily price user=%s day=%s price=%d", user_id, day, drawn.price)
        # A concurrent writer may have won the insert; its row is the one that counts.
        self.store.create_if_absent(drawn, now)
        stored = self.store.get(user_id, day, now)
        if stored is None:
            raise LedgerInvariantError(f"Daily price for user={user_id} day={day} missing right after insert")
        return stored

    def record_purchase(self, user_id: int, day: date, amount: int) -> None:
        self.store.add_purchase(user_id, day, amount)


__all__ = ["PriceOracle"]
