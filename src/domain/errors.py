from __future__ import annotations


class LedgerError(Exception):
    """Base class for failures the ledger cannot express as a rejection."""


class LedgerInvariantError(LedgerError):
    """Raised when stored or computed state contradicts a ledger invariant."""


class LedgerBusyError(LedgerError):
    def __init__(self, user_id: int, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout}s waiting for ledger lock of user={user_id}")
        self.user_id = user_id
        self.timeout = timeout
