from __future__ import annotations

import math
from decimal import Decimal


def max_affordable(coin_balance: int, price: int, service_fee: Decimal) -> int:
    """Largest whole amount whose fee-inclusive cost fits in ``coin_balance``."""
    if coin_balance <= 0:
        return 0
    return math.floor(Decimal(coin_balance) / (Decimal(price) * (1 + service_fee)))


def buy_cost(price: int, amount: int, service_fee: Decimal) -> tuple[int, int]:
    """Return ``(cost, fee)``; the fee is rounded up in the market's favour."""
    base = price * amount
    cost = math.ceil(Decimal(base) * (1 + service_fee))
    return cost, cost - base


def sell_gain(price: int, amount: int, service_fee: Decimal) -> tuple[int, int]:
    """Return ``(gain, fee)``; the gain is rounded down."""
    base = price * amount
    gain = math.floor((1 - service_fee) * Decimal(base))
    return gain, base - gain
