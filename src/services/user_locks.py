from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from domain.errors import LedgerBusyError


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class UserLocks:
    """One mutex per user; entries are dropped once nobody holds or waits on them."""

    def __init__(self, *, timeout: float) -> None:
        self._timeout = timeout
        self._guard = threading.Lock()
        self._entries: dict[int, _Entry] = {}

    @contextmanager
    def hold(self, user_id: int) -> Iterator[None]:
        entry = self._checkout(user_id)
        try:
            if not entry.lock.acquire(timeout=self._timeout):
                raise LedgerBusyError(user_id, self._timeout)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(user_id, entry)

    def tracked_users(self) -> int:
        """Number of users currently holding or waiting on a lock."""
        with self._guard:
            return len(self._entries)

    def _checkout(self, user_id: int) -> _Entry:
        with self._guard:
            entry = self._entries.get(user_id)
            if entry is None:
                entry = self._entries[user_id] = _Entry()
            entry.holders += 1
            return entry

    def _checkin(self, user_id: int, entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[user_id]
