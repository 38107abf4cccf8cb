from __future__ import annotations

import random
from datetime import date

from domain.pricing import DailyPriceSource, draw_price


class RandomDailyPriceSource(DailyPriceSource):
    """Two-regime random price, skewed towards the middle-low end of [10, 50]."""

    def __init__(self, *, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def draw(self, user_id: int, day: date) -> int:
        low_regime = self._rng.random() < 0.5
        return draw_price(low_regime, self._rng.random())


__all__ = [
    "DailyPriceSource",
    "RandomDailyPriceSource",
]
