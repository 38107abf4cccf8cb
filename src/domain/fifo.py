from __future__ import annotations

from typing import Iterable

from pydantic import BaseModel, Field

from .errors import LedgerInvariantError
from .market import BatchId, StockBatch


class BatchUpdate(BaseModel):
    batch_id: BatchId
    new_quantity: int


class FifoConsumption(BaseModel):
    """Write plan for selling from the oldest batches first.

    ``consumed`` may be lower than requested when stock runs out; the caller
    decides whether that is acceptable before applying the plan.
    """

    requested: int | None
    consumed: int = 0
    deleted_ids: list[BatchId] = Field(default_factory=list)
    partial: BatchUpdate | None = None


def plan_fifo_consumption(batches: Iterable[StockBatch], amount: int | None) -> FifoConsumption:
    """Caller must provide batches in ascending expiry order.

    ``amount=None`` consumes everything.
    """
    plan = FifoConsumption(requested=amount)
    for batch in batches:
        remaining = None if amount is None else amount - plan.consumed
        if remaining is not None and remaining <= 0:
            break
        if remaining is None or batch.quantity <= remaining:
            plan.deleted_ids.append(batch.id)
            plan.consumed += batch.quantity
        else:
            plan.partial = BatchUpdate(batch_id=batch.id, new_quantity=batch.quantity - remaining)
            plan.consumed += remaining
            break

    _check_plan(plan)
    return plan


def _check_plan(plan: FifoConsumption) -> None:
    if plan.requested is not None and plan.consumed > plan.requested:
        raise LedgerInvariantError(f"FIFO plan consumed {plan.consumed} of requested {plan.requested}")
    if plan.partial is not None and plan.partial.new_quantity <= 0:
        raise LedgerInvariantError(
            f"FIFO plan leaves batch={plan.partial.batch_id} with quantity={plan.partial.new_quantity}"
        )
