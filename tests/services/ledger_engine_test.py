from __future__ import annotations

from datetime import timedelta
from typing import Callable

import pytest

from domain.market import BuyResult, LedgerRejection, RejectionReason, SellResult
from services.ledger_engine import LedgerEngine
from tests.helpers.clock import ManualClock
from tests.helpers.price_sources import ScriptedPriceSource

MakeLedger = Callable[..., LedgerEngine]


def _bought(result: BuyResult | LedgerRejection) -> BuyResult:
    assert isinstance(result, BuyResult), result
    return result


def _sold(result: SellResult | LedgerRejection) -> SellResult:
    assert isinstance(result, SellResult), result
    return result


def _rejected(result: BuyResult | SellResult | LedgerRejection, reason: RejectionReason) -> LedgerRejection:
    assert isinstance(result, LedgerRejection), result
    assert result.reason == reason
    return result


def test_query_without_stock(ledger: LedgerEngine) -> None:
    result = ledger.query(1, 500)

    assert result.batches == []
    assert result.batch_count == 0
    assert result.total_quantity == 0
    assert result.hidden_count == 0
    assert result.price == 20
    assert result.purchased_today == 0
    assert result.daily_remaining == 10
    assert result.coin_balance == 500


def test_query_treats_missing_balance_as_zero(ledger: LedgerEngine) -> None:
    assert ledger.query(1, None).coin_balance == 0


def test_price_is_stable_within_a_day(ledger: LedgerEngine, price_source: ScriptedPriceSource) -> None:
    ledger.query(1, 0)
    ledger.buy(1, 1000, 1)
    ledger.query(1, 0)

    assert len(price_source.draws) == 1


def test_buy(ledger: LedgerEngine, clock: ManualClock) -> None:
    result = _bought(ledger.buy(1, 1000, 5))

    assert result.amount == 5
    assert result.price == 20
    assert result.cost == 103
    assert result.fee == 3
    assert result.new_coin_balance == 897
    assert result.purchased_today == 5
    assert result.batch.quantity == 5
    assert result.batch.unit_price == 20
    assert result.batch.expires_at == clock() + timedelta(days=7)

    query = ledger.query(1, result.new_coin_balance)
    assert [batch.id for batch in query.batches] == [result.batch.id]
    assert query.total_quantity == 5
    assert query.purchased_today == 5
    assert query.daily_remaining == 5


def test_buy_without_amount_spends_what_is_affordable(ledger: LedgerEngine) -> None:
    result = _bought(ledger.buy(1, 103))

    assert result.amount == 5
    assert result.new_coin_balance == 0


def test_buy_without_amount_stops_at_daily_cap(ledger: LedgerEngine) -> None:
    assert _bought(ledger.buy(1, 10_000)).amount == 10

    rejection = _rejected(ledger.buy(1, 10_000), RejectionReason.DAILY_LIMIT_EXCEEDED)
    assert rejection.limit == 0


def test_buy_over_daily_remaining_changes_nothing(ledger: LedgerEngine) -> None:
    _bought(ledger.buy(1, 10_000, 8))

    rejection = _rejected(ledger.buy(1, 10_000, 3), RejectionReason.DAILY_LIMIT_EXCEEDED)

    assert rejection.limit == 2
    query = ledger.query(1, 0)
    assert query.purchased_today == 8
    assert query.batch_count == 1
    assert query.total_quantity == 8


def test_daily_cap_resets_next_day(ledger: LedgerEngine, clock: ManualClock) -> None:
    _bought(ledger.buy(1, 10_000, 10))
    clock.advance(days=1)

    assert _bought(ledger.buy(1, 10_000, 10)).purchased_today == 10


def test_buy_more_than_affordable(ledger: LedgerEngine) -> None:
    rejection = _rejected(ledger.buy(1, 50, 3), RejectionReason.INSUFFICIENT_FUNDS)

    assert rejection.limit == 2
    query = ledger.query(1, 50)
    assert query.batch_count == 0
    assert query.purchased_today == 0


def test_buy_without_coins(ledger: LedgerEngine) -> None:
    rejection = _rejected(ledger.buy(1, None), RejectionReason.INSUFFICIENT_FUNDS)

    assert rejection.limit == 0


@pytest.mark.parametrize("amount", [0, -1, 2.5, True, float("nan"), float("inf")])
def test_buy_rejects_invalid_amount(
    ledger: LedgerEngine, price_source: ScriptedPriceSource, amount: int | float
) -> None:
    _rejected(ledger.buy(1, 1000, amount), RejectionReason.INVALID_AMOUNT)

    assert price_source.draws == []


def test_buy_accepts_integral_float(ledger: LedgerEngine) -> None:
    assert _bought(ledger.buy(1, 1000, 5.0)).amount == 5


def test_buy_without_daily_cap(make_ledger: MakeLedger) -> None:
    ledger = make_ledger(max_buy_per_day=None)

    assert _bought(ledger.buy(1, 100_000, 50)).amount == 50
    assert ledger.query(1, 0).daily_remaining is None


def test_sell_uses_todays_price(make_ledger: MakeLedger, clock: ManualClock) -> None:
    ledger = make_ledger(source=ScriptedPriceSource(20, 25))
    bought = _bought(ledger.buy(1, 1000, 5))
    clock.advance(days=1)

    sold = _sold(ledger.sell(1, bought.new_coin_balance, 5))

    assert sold.amount == 5
    assert sold.price == 25
    assert sold.gain == 121
    assert sold.fee == 4
    assert sold.new_coin_balance == 897 + 121
    assert sold.deleted_batch_ids == [bought.batch.id]
    assert sold.updated_batch_id is None
    assert ledger.query(1, 0).total_quantity == 0


def test_sell_defaults_to_everything(make_ledger: MakeLedger, clock: ManualClock) -> None:
    ledger = make_ledger(max_buy_per_day=None)
    for amount in (3, 5, 2):
        _bought(ledger.buy(1, 10_000, amount))
        clock.advance(hours=1)

    sold = _sold(ledger.sell(1, 0))

    assert sold.amount == 10
    assert sold.gain == 194
    assert len(sold.deleted_batch_ids) == 3
    assert ledger.query(1, 0).batch_count == 0


def test_sell_consumes_oldest_batches_first(make_ledger: MakeLedger, clock: ManualClock) -> None:
    ledger = make_ledger(max_buy_per_day=None)
    batches = []
    for amount in (3, 5, 2):
        batches.append(_bought(ledger.buy(1, 10_000, amount)).batch)
        clock.advance(hours=1)

    sold = _sold(ledger.sell(1, 0, 4))

    assert sold.deleted_batch_ids == [batches[0].id]
    assert sold.updated_batch_id == batches[1].id
    remaining = ledger.query(1, 0).batches
    assert [(batch.id, batch.quantity) for batch in remaining] == [(batches[1].id, 4), (batches[2].id, 2)]


def test_sell_more_than_held_changes_nothing(make_ledger: MakeLedger, clock: ManualClock) -> None:
    ledger = make_ledger(max_buy_per_day=None)
    for amount in (10, 20, 20):
        _bought(ledger.buy(1, 10_000, amount))
        clock.advance(hours=1)
    before = ledger.query(1, 0)

    rejection = _rejected(ledger.sell(1, 0, 100), RejectionReason.INSUFFICIENT_STOCK)

    assert rejection.limit == 50
    after = ledger.query(1, 0)
    assert after.batches == before.batches
    assert after.total_quantity == 50


def test_sell_without_stock(ledger: LedgerEngine) -> None:
    rejection = _rejected(ledger.sell(1, 100), RejectionReason.INSUFFICIENT_STOCK)

    assert rejection.limit == 0


@pytest.mark.parametrize("amount", [0, -4, 1.5, False])
def test_sell_rejects_invalid_amount(ledger: LedgerEngine, amount: int | float) -> None:
    _bought(ledger.buy(1, 1000, 5))

    _rejected(ledger.sell(1, 0, amount), RejectionReason.INVALID_AMOUNT)

    assert ledger.query(1, 0).total_quantity == 5


def test_rotten_batches_cannot_be_sold(ledger: LedgerEngine, clock: ManualClock) -> None:
    _bought(ledger.buy(1, 1000, 5))

    clock.advance(days=6, hours=23)
    assert ledger.query(1, 0).total_quantity == 5

    clock.advance(hours=1)
    _rejected(ledger.sell(1, 0), RejectionReason.INSUFFICIENT_STOCK)
    assert ledger.query(1, 0).total_quantity == 0


def test_query_hides_batches_beyond_page(make_ledger: MakeLedger, clock: ManualClock) -> None:
    ledger = make_ledger(max_buy_per_day=None)
    for _ in range(12):
        _bought(ledger.buy(1, 10_000, 1))
        clock.advance(minutes=30)

    result = ledger.query(1, 0)

    assert len(result.batches) == 10
    assert result.batch_count == 12
    assert result.hidden_count == 2
    assert result.total_quantity == 12
    expiries = [batch.expires_at for batch in result.batches]
    assert expiries == sorted(expiries)


def test_balance_callback_gets_signed_deltas(ledger: LedgerEngine) -> None:
    deltas: list[int] = []

    _bought(ledger.buy(1, 1000, 5, apply_balance=deltas.append))
    _sold(ledger.sell(1, 897, 5, apply_balance=deltas.append))

    assert deltas == [-103, 97]


def test_failing_balance_callback_rolls_back_buy(ledger: LedgerEngine) -> None:
    def _unavailable(delta: int) -> None:
        raise RuntimeError("wallet unavailable")

    with pytest.raises(RuntimeError):
        ledger.buy(1, 1000, 5, apply_balance=_unavailable)

    query = ledger.query(1, 1000)
    assert query.batch_count == 0
    assert query.purchased_today == 0


def test_failing_balance_callback_rolls_back_sell(ledger: LedgerEngine) -> None:
    def _unavailable(delta: int) -> None:
        raise RuntimeError("wallet unavailable")

    bought = _bought(ledger.buy(1, 1000, 5))

    with pytest.raises(RuntimeError):
        ledger.sell(1, 0, 3, apply_balance=_unavailable)

    batches = ledger.query(1, 0).batches
    assert [(batch.id, batch.quantity) for batch in batches] == [(bought.batch.id, 5)]


def test_coins_are_conserved_over_a_week(make_ledger: MakeLedger, clock: ManualClock) -> None:
    ledger = make_ledger(source=ScriptedPriceSource(20, 31, 14, 45, 27, 12, 38))
    wallet = {"coins": 1000}

    def _apply(delta: int) -> None:
        wallet["coins"] += delta

    balance = 1000
    spent = earned = 0
    operations = [("buy", 5), ("sell", 2), ("buy", None), ("sell", None), ("buy", 3), ("sell", 5), ("sell", 3)]
    for name, amount in operations:
        result = getattr(ledger, name)(1, balance, amount, apply_balance=_apply)
        clock.advance(days=1)
        if isinstance(result, LedgerRejection):
            continue
        balance = result.new_coin_balance
        if isinstance(result, BuyResult):
            spent += result.cost
        else:
            earned += result.gain

    assert spent > 0
    assert earned > 0
    assert balance == 1000 - spent + earned
    assert wallet["coins"] == balance


def test_query_in_last_microsecond_of_day(ledger: LedgerEngine, clock: ManualClock) -> None:
    _bought(ledger.buy(1, 1000, 4))
    clock.advance(hours=11, minutes=59, seconds=59, microseconds=999999)

    result = ledger.query(1, 0)

    assert result.price == 20
    assert result.purchased_today == 4


def test_market_timezone_change_with_unreaped_prices(make_ledger: MakeLedger, clock: ManualClock) -> None:
    _bought(make_ledger().buy(1, 1000, 4))
    clock.advance(hours=15)

    result = make_ledger(source=ScriptedPriceSource(31), market_timezone="America/Los_Angeles").query(1, 0)

    assert result.price == 31
    assert result.purchased_today == 0
    assert result.total_quantity == 4
