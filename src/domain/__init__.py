"""Domain models and rules for the turnip market ledger.

This package holds the in-memory (Pydantic) models for daily prices and stock
batches, the fee arithmetic and the FIFO consumption planner. Nothing here
touches the database, so the rules can be tested without a session.
"""

__all__ = [
    "errors",
    "fees",
    "fifo",
    "market",
    "pricing",
]
