from __future__ import annotations

import argparse
import logging
import threading
from pathlib import Path
from typing import Sequence

from config import config
from db.db import init_db
from domain.market import BuyResult, LedgerRejection, QueryResult, SellResult
from services.expiry_reaper import ExpiryReaper
from services.ledger_engine import LedgerEngine

logger = logging.getLogger(__name__)


def print_query(result: QueryResult) -> None:
    print(f"You hold {result.total_quantity} turnips and {result.coin_balance} coins.")
    print(f"Today's price is {result.price} coins per turnip.")
    if result.daily_remaining is not None:
        print(f"You can still buy {result.daily_remaining} turnips today.")
    if not result.batches:
        print("  (no turnips)")
        return
    for batch in result.batches:
        print(f"  {batch.quantity} bought at {batch.unit_price}, rots at {batch.expires_at.isoformat()}")
    if result.hidden_count:
        print(f"  ... {result.hidden_count} more batches hidden")


def print_trade(result: BuyResult | SellResult | LedgerRejection) -> None:
    if isinstance(result, LedgerRejection):
        print(f"Rejected ({result.reason}): {result.message}")
    elif isinstance(result, BuyResult):
        print(f"Bought {result.amount} turnips at {result.price} for {result.cost} coins (fee {result.fee}).")
        print(f"Coins left: {result.new_coin_balance}")
    else:
        print(f"Sold {result.amount} turnips at {result.price} for {result.gain} coins (fee {result.fee}).")
        print(f"Coins now: {result.new_coin_balance}")


def watch_expiry(reaper: ExpiryReaper, interval: float, stop: threading.Event | None = None) -> None:
    """Sweep every ``interval`` seconds until ``stop`` is set or the process is interrupted."""
    stop = stop or threading.Event()
    reaper.start(interval)
    logger.info("Reaping expired rows every %s seconds", interval)
    try:
        stop.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping the reaper")
    finally:
        reaper.stop(timeout=interval)


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Turnip market ledger.")
    parser.add_argument("--db", type=Path, default=None, help="SQLite file, defaults to TURNIP_DB_FILE")
    parser.add_argument("--verbose", "-v", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name in ("query", "buy", "sell"):
        sub = subparsers.add_parser(name)
        sub.add_argument("--user", type=int, required=True)
        sub.add_argument("--coins", type=int, default=0)
        if name != "query":
            sub.add_argument("--amount", type=int, default=None)
    reap = subparsers.add_parser("reap")
    reap.add_argument("--watch", action="store_true", help="keep sweeping every TURNIP_REAPER_INTERVAL_SECONDS")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    settings = config()
    session_factory = init_db(db_file=args.db or settings.db_file)

    if args.command == "reap":
        reaper = ExpiryReaper(session_factory)
        if args.watch:
            watch_expiry(reaper, settings.reaper_interval_seconds)
            return
        result = reaper.sweep()
        print(f"Deleted {result.prices_deleted} daily prices and {result.batches_deleted} stock batches.")
        return

    engine = LedgerEngine(session_factory, settings)
    if args.command == "query":
        print_query(engine.query(args.user, args.coins))
    elif args.command == "buy":
        print_trade(engine.buy(args.user, args.coins, args.amount))
    else:
        print_trade(engine.sell(args.user, args.coins, args.amount))


if __name__ == "__main__":
    main()
