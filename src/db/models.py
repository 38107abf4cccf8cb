from __future__ import annotations

from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, DateTime, Index, Integer, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class DailyPriceOrm(Base):
    __tablename__ = "daily_prices"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    purchased_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_daily_prices_price_positive"),
        CheckConstraint("purchased_today >= 0", name="ck_daily_prices_purchased_non_negative"),
        Index("ix_daily_prices_expires_at", "expires_at"),
    )


class StockBatchOrm(Base):
    __tablename__ = "stock_batches"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_batches_quantity_positive"),
        Index("ix_stock_batches_user_expiry", "user_id", "expires_at"),
        Index("ix_stock_batches_expires_at", "expires_at"),
    )
