from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session, sessionmaker

from config import LedgerSettings
from db.repositories import DailyPriceRepository, StockBatchRepository
from domain.fees import buy_cost, max_affordable, sell_gain
from domain.market import (
    BuyResult,
    LedgerRejection,
    QueryResult,
    RejectionReason,
    SellResult,
    StockBatch,
    UserId,
)
from domain.pricing import DailyPriceSource

from .price_oracle import PriceOracle
from .price_sources import RandomDailyPriceSource
from .user_locks import UserLocks

logger = logging.getLogger(__name__)

BalanceCallback = Callable[[int], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_amount(raw: int | float) -> int | None:
    """Return ``raw`` as a positive int, or None when it is not one."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None
    if isinstance(raw, float) and raw.is_integer() and raw > 0:
        return int(raw)
    return None


@dataclass
class _UnitOfWork:
    now: datetime
    oracle: PriceOracle
    batches: StockBatchRepository


class LedgerEngine:
    """Buy, sell and inspect a user's turnip stock.

    Each operation holds the user's lock and runs in one database transaction,
    so the price lookup, the batch writes and the ``apply_balance`` callback
    either all take effect or none do. Business-rule violations are returned
    as ``LedgerRejection``; anything else (database errors, a failing
    callback, broken invariants) propagates after rollback.

    The coin balance belongs to the caller. Results carry the new balance and,
    when ``apply_balance`` is given, it receives the signed delta before commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: LedgerSettings,
        *,
        price_source: DailyPriceSource | None = None,
        clock: Callable[[], datetime] | None = None,
        locks: UserLocks | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._price_source = price_source or RandomDailyPriceSource()
        self._clock = clock or _utc_now
        self._locks = locks or UserLocks(timeout=settings.lock_timeout_seconds)
        self._tz = ZoneInfo(settings.market_timezone)

    def query(self, user_id: int, coin_balance: int | None = None) -> QueryResult:
        balance = coin_balance or 0
        with self._unit_of_work(user_id) as uow:
            batches = uow.batches.list_by_expiry(user_id, uow.now, limit=self._settings.query_page_size)
            batch_count, total_quantity = uow.batches.summarize(user_id, uow.now)
            daily = uow.oracle.price_today(user_id, uow.now)

        return QueryResult(
            batches=batches,
            batch_count=batch_count,
            total_quantity=total_quantity,
            hidden_count=batch_count - len(batches),
            price=daily.price,
            purchased_today=daily.purchased_today,
            daily_remaining=self._daily_remaining(daily.purchased_today),
            coin_balance=balance,
        )

    def buy(
        self,
        user_id: int,
        coin_balance: int | None,
        amount: int | float | None = None,
        *,
        apply_balance: BalanceCallback | None = None,
    ) -> BuyResult | LedgerRejection:
        """Buy ``amount`` turnips at today's price, or as many as allowed when omitted."""
        requested = None if amount is None else _coerce_amount(amount)
        if amount is not None and requested is None:
            return self._reject(user_id, RejectionReason.INVALID_AMOUNT, "Amount to buy must be a positive integer.")

        balance = coin_balance or 0
        fee_rate = self._settings.service_fee
        with self._unit_of_work(user_id) as uow:
            daily = uow.oracle.price_today(user_id, uow.now)
            affordable = max_affordable(balance, daily.price, fee_rate)
            daily_remaining = self._daily_remaining(daily.purchased_today)
            limit = affordable if daily_remaining is None else min(daily_remaining, affordable)
            quantity = limit if requested is None else requested

            if daily_remaining is not None and (daily_remaining == 0 or quantity > daily_remaining):
                return self._reject(
                    user_id,
                    RejectionReason.DAILY_LIMIT_EXCEEDED,
                    f"Only {daily_remaining} more turnips can be bought today.",
                    limit=limit,
                )
            if affordable == 0 or quantity > affordable:
                return self._reject(
                    user_id,
                    RejectionReason.INSUFFICIENT_FUNDS,
                    f"Amount to buy must be between 1 and {limit}.",
                    limit=limit,
                )

            cost, fee = buy_cost(daily.price, quantity, fee_rate)
            batch = uow.batches.insert(
                StockBatch(
                    user_id=UserId(user_id),
                    quantity=quantity,
                    unit_price=daily.price,
                    expires_at=uow.now + timedelta(days=self._settings.expire_days),
                )
            )
            uow.oracle.record_purchase(user_id, daily.day, quantity)
            if apply_balance is not None:
                apply_balance(-cost)

        logger.info(
            "User %s bought %d turnips at %d (cost=%d fee=%d) batch=%s",
            user_id,
            quantity,
            daily.price,
            cost,
            fee,
            batch.id,
        )
        return BuyResult(
            amount=quantity,
            price=daily.price,
            cost=cost,
            fee=fee,
            new_coin_balance=balance - cost,
            purchased_today=daily.purchased_today + quantity,
            batch=batch,
        )

    def sell(
        self,
        user_id: int,
        coin_balance: int | None,
        amount: int | float | None = None,
        *,
        apply_balance: BalanceCallback | None = None,
    ) -> SellResult | LedgerRejection:
        """Sell the oldest turnips first; everything when ``amount`` is omitted.

        The whole sale uses one price snapshot taken inside the transaction.
        """
        requested = None if amount is None else _coerce_amount(amount)
        if amount is not None and requested is None:
            return self._reject(user_id, RejectionReason.INVALID_AMOUNT, "Amount to sell must be a positive integer.")

        balance = coin_balance or 0
        with self._unit_of_work(user_id) as uow:
            plan = uow.batches.consume_fifo(user_id, requested, uow.now)
            if plan.consumed == 0 or (requested is not None and plan.consumed < requested):
                return self._reject(
                    user_id,
                    RejectionReason.INSUFFICIENT_STOCK,
                    f"Not enough turnips to sell, {plan.consumed} available.",
                    limit=plan.consumed,
                )

            daily = uow.oracle.price_today(user_id, uow.now)
            gain, fee = sell_gain(daily.price, plan.consumed, self._settings.service_fee)
            uow.batches.apply_consumption(plan)
            if apply_balance is not None:
                apply_balance(gain)

        logger.info(
            "User %s sold %d turnips at %d (gain=%d fee=%d) from %d batches",
            user_id,
            plan.consumed,
            daily.price,
            gain,
            fee,
            len(plan.deleted_ids) + (plan.partial is not None),
        )
        return SellResult(
            amount=plan.consumed,
            price=daily.price,
            gain=gain,
            fee=fee,
            new_coin_balance=balance + gain,
            deleted_batch_ids=plan.deleted_ids,
            updated_batch_id=plan.partial.batch_id if plan.partial is not None else None,
        )

    @contextmanager
    def _unit_of_work(self, user_id: int) -> Iterator[_UnitOfWork]:
        with self._locks.hold(user_id), self._session_factory.begin() as session:
            yield _UnitOfWork(
                now=self._clock().astimezone(timezone.utc),
                oracle=PriceOracle(self._price_source, DailyPriceRepository(session), tz=self._tz),
                batches=StockBatchRepository(session),
            )

    def _daily_remaining(self, purchased_today: int) -> int | None:
        if self._settings.max_buy_per_day is None:
            return None
        return max(self._settings.max_buy_per_day - purchased_today, 0)

    @staticmethod
    def _reject(user_id: int, reason: RejectionReason, message: str, *, limit: int | None = None) -> LedgerRejection:
        logger.debug("Rejected request of user=%s: %s (%s)", user_id, reason, message)
        return LedgerRejection(reason=reason, message=message, limit=limit)


__all__ = ["BalanceCallback", "LedgerEngine"]
