"""Named single-flight job locks with TTL expiry.

A lock is a row `(name, holder_token, expires_at)` in a store that supports
compare-and-set. Contention is not an error: `acquire` returns False and the
caller skips its run. An expired record is taken over with a CAS against the
stale holder's token, so two processes racing for the same stale lock cannot
both win.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import psycopg


logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL_SECONDS = 1800


@dataclass(frozen=True)
class LockRecord:
    name: str
    holder_token: str
    expires_at: float  # epoch seconds


class LockStore:
    def get(self, name: str) -> Optional[LockRecord]:
        raise NotImplementedError

    def compare_and_set(self, name: str, expected: Optional[str], new: LockRecord) -> bool:
        """Write `new` only if the current holder token equals `expected` (None means absent)."""
        raise NotImplementedError

    def delete(self, name: str) -> None:
        raise NotImplementedError


class InMemoryLockStore(LockStore):
    def __init__(self):
        self._records: Dict[str, LockRecord] = {}
        self._mutex = threading.Lock()

    def get(self, name: str) -> Optional[LockRecord]:
        with self._mutex:
            return self._records.get(name)

    def compare_and_set(self, name: str, expected: Optional[str], new: LockRecord) -> bool:
        with self._mutex:
            current = self._records.get(name)
            current_token = current.holder_token if current else None
            if current_token != expected:
                return False
            self._records[name] = new
            return True

    def delete(self, name: str) -> None:
        with self._mutex:
            self._records.pop(name, None)


class PostgresLockStore(LockStore):
    """`job_locks` table; the row-level conditions make each write atomic."""

    def __init__(self, pg_dsn: str):
        self.pg_dsn = pg_dsn

    def get(self, name: str) -> Optional[LockRecord]:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT name, holder_token, EXTRACT(EPOCH FROM expires_at) FROM job_locks WHERE name = %s",
                    (name,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return LockRecord(name=row[0], holder_token=row[1], expires_at=float(row[2]))

    def compare_and_set(self, name: str, expected: Optional[str], new: LockRecord) -> bool:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                if expected is None:
                    cur.execute(
                        """
                        INSERT INTO job_locks (name, holder_token, expires_at)
                        VALUES (%s, %s, to_timestamp(%s))
                        ON CONFLICT (name) DO NOTHING
                        """,
                        (name, new.holder_token, new.expires_at),
                    )
                else:
                    cur.execute(
                        """
                        UPDATE job_locks
                        SET holder_token = %s, expires_at = to_timestamp(%s), acquired_at = now()
                        WHERE name = %s AND holder_token = %s
                        """,
                        (new.holder_token, new.expires_at, name, expected),
                    )
                return cur.rowcount == 1

    def delete(self, name: str) -> None:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM job_locks WHERE name = %s", (name,))


class LockManager:
    def __init__(self, store: LockStore, *, ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def acquire(self, name: str) -> bool:
        """Take the lock if free or expired. Returns False when someone else holds it."""
        now = self._clock()
        current = self.store.get(name)
        if current is not None and current.expires_at > now:
            logger.debug(f"[Lock] {name} held until {current.expires_at:.0f}; skipping")
            return False

        record = LockRecord(name=name, holder_token=uuid.uuid4().hex, expires_at=now + self.ttl_seconds)
        expected = current.holder_token if current is not None else None
        if not self.store.compare_and_set(name, expected, record):
            logger.debug(f"[Lock] lost race for {name}")
            return False
        if current is not None:
            logger.warning(f"[Lock] took over expired lock {name}")
        else:
            logger.debug(f"[Lock] acquired {name}")
        return True

    def release(self, name: str) -> None:
        # Unconditional: a holder whose TTL lapsed may delete a successor's lock.
        self.store.delete(name)
        logger.debug(f"[Lock] released {name}")

    def is_locked(self, name: str) -> bool:
        current = self.store.get(name)
        return current is not None and current.expires_at > self._clock()
