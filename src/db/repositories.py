from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db import models
from domain.errors import LedgerInvariantError
from domain.fifo import FifoConsumption, plan_fifo_consumption
from domain.market import BatchId, DailyPrice, StockBatch, UserId


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DailyPriceRepository:
    """Daily price rows. Writes are flushed, committing is left to the caller."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, user_id: int, day: date, now: datetime) -> DailyPrice | None:
        stmt = (
            select(models.DailyPriceOrm)
            .where(
                models.DailyPriceOrm.user_id == user_id,
                models.DailyPriceOrm.day == day,
                models.DailyPriceOrm.expires_at > now,
            )
            .execution_options(populate_existing=True)
        )
        orm_price = self._session.scalar(stmt)
        if orm_price is None:
            return None
        return self._to_domain(orm_price)

    def create_if_absent(self, price: DailyPrice, now: datetime) -> None:
        """Insert ``price`` unless a live row exists for its day. An expired, unreaped row is replaced."""
        stmt = sqlite_insert(models.DailyPriceOrm).values(
            user_id=price.user_id,
            day=price.day,
            price=price.price,
            purchased_today=price.purchased_today,
            expires_at=price.expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "day"],
            set_={
                "price": stmt.excluded.price,
                "purchased_today": stmt.excluded.purchased_today,
                "expires_at": stmt.excluded.expires_at,
            },
            where=models.DailyPriceOrm.expires_at <= now,
        )
        self._session.execute(stmt)

    def add_purchase(self, user_id: int, day: date, amount: int) -> None:
        stmt = (
            update(models.DailyPriceOrm)
            .where(models.DailyPriceOrm.user_id == user_id, models.DailyPriceOrm.day == day)
            .values(purchased_today=models.DailyPriceOrm.purchased_today + amount)
        )
        result = self._session.execute(stmt, execution_options={"synchronize_session": False})
        if result.rowcount != 1:
            raise LedgerInvariantError(f"No daily price row for user={user_id} day={day} to record a purchase")

    def delete_expired(self, now: datetime) -> int:
        stmt = delete(models.DailyPriceOrm).where(models.DailyPriceOrm.expires_at <= now)
        result = self._session.execute(stmt, execution_options={"synchronize_session": False})
        return result.rowcount

    @staticmethod
    def _to_domain(orm_price: models.DailyPriceOrm) -> DailyPrice:
        return DailyPrice(
            user_id=UserId(orm_price.user_id),
            day=orm_price.day,
            price=orm_price.price,
            purchased_today=orm_price.purchased_today,
            expires_at=_as_utc(orm_price.expires_at),
        )


class StockBatchRepository:
    """Stock batches of every user, read in FIFO (ascending expiry) order."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def insert(self, batch: StockBatch) -> StockBatch:
        orm_batch = models.StockBatchOrm(
            id=batch.id,
            user_id=batch.user_id,
            quantity=batch.quantity,
            unit_price=batch.unit_price,
            expires_at=batch.expires_at,
        )
        self._session.add(orm_batch)
        self._session.flush()
        return self._to_domain(orm_batch)

    def list_by_expiry(self, user_id: int, now: datetime, limit: int | None = None) -> list[StockBatch]:
        stmt = (
            select(models.StockBatchOrm)
            .where(models.StockBatchOrm.user_id == user_id, models.StockBatchOrm.expires_at > now)
            .order_by(models.StockBatchOrm.expires_at.asc(), models.StockBatchOrm.id.asc())
            .execution_options(populate_existing=True)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [self._to_domain(batch) for batch in self._session.scalars(stmt)]

    def count(self, user_id: int, now: datetime) -> int:
        batch_count, _ = self.summarize(user_id, now)
        return batch_count

    def summarize(self, user_id: int, now: datetime) -> tuple[int, int]:
        """Return ``(batch_count, total_quantity)`` over the user's live batches."""
        stmt = select(
            func.count(models.StockBatchOrm.id),
            func.coalesce(func.sum(models.StockBatchOrm.quantity), 0),
        ).where(models.StockBatchOrm.user_id == user_id, models.StockBatchOrm.expires_at > now)
        batch_count, total_quantity = self._session.execute(stmt).one()
        return int(batch_count), int(total_quantity)

    def consume_fifo(self, user_id: int, amount: int | None, now: datetime) -> FifoConsumption:
        """Plan a FIFO sale without writing anything; see ``apply_consumption``."""
        return plan_fifo_consumption(self.list_by_expiry(user_id, now), amount)

    def apply_consumption(self, plan: FifoConsumption) -> None:
        if plan.deleted_ids:
            stmt = delete(models.StockBatchOrm).where(models.StockBatchOrm.id.in_(plan.deleted_ids))
            result = self._session.execute(stmt, execution_options={"synchronize_session": False})
            if result.rowcount != len(plan.deleted_ids):
                raise LedgerInvariantError(
                    f"Deleted {result.rowcount} batches, expected {len(plan.deleted_ids)}"
                )

        if plan.partial is not None:
            stmt = (
                update(models.StockBatchOrm)
                .where(
                    models.StockBatchOrm.id == plan.partial.batch_id,
                    models.StockBatchOrm.quantity > plan.partial.new_quantity,
                )
                .values(quantity=plan.partial.new_quantity)
            )
            result = self._session.execute(stmt, execution_options={"synchronize_session": False})
            if result.rowcount != 1:
                raise LedgerInvariantError(f"Partial update of batch={plan.partial.batch_id} matched no row")

    def delete_expired(self, now: datetime) -> int:
        stmt = delete(models.StockBatchOrm).where(models.StockBatchOrm.expires_at <= now)
        result = self._session.execute(stmt, execution_options={"synchronize_session": False})
        return result.rowcount

    @staticmethod
    def _to_domain(orm_batch: models.StockBatchOrm) -> StockBatch:
        return StockBatch(
            id=BatchId(orm_batch.id),
            user_id=UserId(orm_batch.user_id),
            quantity=orm_batch.quantity,
            unit_price=orm_batch.unit_price,
            expires_at=_as_utc(orm_batch.expires_at),
        )
