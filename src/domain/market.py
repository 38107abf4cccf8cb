from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import NewType
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

UserId = NewType("UserId", int)
BatchId = NewType("BatchId", UUID)


class DailyPrice(BaseModel):
    """Price offered to one user for one calendar day."""

    user_id: UserId
    day: date
    price: int
    purchased_today: int = 0
    expires_at: datetime

    @model_validator(mode="after")
    def _validate_fields(self) -> DailyPrice:
        if self.price <= 0:
            raise ValueError("DailyPrice.price must be > 0")
        if self.purchased_today < 0:
            raise ValueError("DailyPrice.purchased_today must be >= 0")
        return self


class StockBatch(BaseModel):
    """Turnips bought in a single purchase.

    ``quantity`` is what is left of the batch; it only ever decreases and a
    batch that reaches zero is deleted rather than kept.
    """

    id: BatchId = BatchId(Field(default_factory=uuid4))
    user_id: UserId
    quantity: int
    unit_price: int
    expires_at: datetime

    @model_validator(mode="after")
    def _validate_fields(self) -> StockBatch:
        if self.quantity <= 0:
            raise ValueError("StockBatch.quantity must be > 0")
        if self.unit_price <= 0:
            raise ValueError("StockBatch.unit_price must be > 0")
        return self


class RejectionReason(StrEnum):
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"


class LedgerRejection(BaseModel):
    """A request refused by a business rule. Nothing was written."""

    reason: RejectionReason
    message: str
    limit: int | None = None


class QueryResult(BaseModel):
    batches: list[StockBatch]
    batch_count: int
    total_quantity: int
    hidden_count: int
    price: int
    purchased_today: int
    daily_remaining: int | None
    coin_balance: int


class BuyResult(BaseModel):
    amount: int
    price: int
    cost: int
    fee: int
    new_coin_balance: int
    purchased_today: int
    batch: StockBatch


class SellResult(BaseModel):
    amount: int
    price: int
    gain: int
    fee: int
    new_coin_balance: int
    deleted_batch_ids: list[BatchId]
    updated_batch_id: BatchId | None = None
