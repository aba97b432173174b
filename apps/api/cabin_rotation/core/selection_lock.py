"""
Per-(organization, rotation year) mutual exclusion for selection transitions.

Two layers, one critical section:
- a process-local lock per key serializes threads of this worker;
- on PostgreSQL, a transaction-scoped advisory lock on the same key
  serializes workers across processes and is released by commit/rollback.

The lock is held for a single read-validate-write transition only. Never
hold it across notification dispatch or other external calls.
"""

from __future__ import annotations

import hashlib
import threading
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from cabin_rotation.core.config import settings
from cabin_rotation.services.selection_errors import SelectionLockTimeoutError

SelectionKey = tuple[UUID, int]


def advisory_lock_id(org_id: UUID, year: int) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.sha256(f"selection:{org_id}:{year}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class SelectionLockRegistry:
    """Keyed locks; entries are dropped once no caller holds or waits on them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[SelectionKey, threading.Lock] = {}
        self._waiters: dict[SelectionKey, int] = {}

    def _checkout(self, key: SelectionKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._waiters[key] = self._waiters.get(key, 0) + 1
            return lock

    def _checkin(self, key: SelectionKey) -> None:
        with self._guard:
            remaining = self._waiters.get(key, 1) - 1
            if remaining <= 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._waiters[key] = remaining

    def active_keys(self) -> set[SelectionKey]:
        with self._guard:
            return set(self._locks)

    @contextmanager
    def hold(
        self,
        db: Session,
        org_id: UUID,
        year: int,
        timeout: float | None = None,
    ) -> Iterator[None]:
        """
        Enter the critical section for (org_id, year).

        The caller must commit or roll back `db` before leaving the block so
        the advisory lock (PostgreSQL) is released together with the local one.
        """
        key = (org_id, year)
        wait = settings.SELECTION_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=wait):
                raise SelectionLockTimeoutError(
                    f"Selection for rotation year {year} is busy, try again"
                )
            try:
                if db.get_bind().dialect.name == "postgresql":
                    db.execute(
                        text("SELECT pg_advisory_xact_lock(:lock_id)"),
                        {"lock_id": advisory_lock_id(org_id, year)},
                    )
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)


selection_locks = SelectionLockRegistry()
