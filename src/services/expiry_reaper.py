from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from db.repositories import DailyPriceRepository, StockBatchRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReapResult:
    prices_deleted: int
    batches_deleted: int


class ExpiryReaper:
    """Deletes daily prices and stock batches whose expiry has passed.

    Rotten batches are simply removed; nobody is refunded. Reads already
    ignore expired rows, so the sweep only reclaims space.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep(self) -> ReapResult:
        now = self._clock().astimezone(timezone.utc)
        with self._session_factory.begin() as session:
            result = ReapResult(
                prices_deleted=DailyPriceRepository(session).delete_expired(now),
                batches_deleted=StockBatchRepository(session).delete_expired(now),
            )
        if result.prices_deleted or result.batches_deleted:
            logger.info(
                "Reaped %d daily prices and %d stock batches expired before %s",
                result.prices_deleted,
                result.batches_deleted,
                now.isoformat(),
            )
        return result

    def start(self, interval: float) -> None:
        if self._thread is not None:
            raise RuntimeError("ExpiryReaper is already running")
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, args=(interval,), name="expiry-reaper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.sweep()
            except Exception:
                # The next tick retries; a failed sweep leaves every row in place.
                logger.exception("Expiry sweep failed")


__all__ = ["ExpiryReaper", "ReapResult"]
