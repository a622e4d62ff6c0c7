"""Nonce stores with atomic insert-if-absent semantics.

A nonce may be marked at most once per scope while its record lives (45
minutes by default, comfortably longer than the accepted timestamp window).
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from badgesmith.results import Error, NonceAlreadyUsed, ValidNonce

if TYPE_CHECKING:
    from collections.abc import Callable

    from badgesmith.caching import MemoryCache

logger = logging.getLogger(__name__)

NONCE_TTL = timedelta(minutes=45)
PURGE_INTERVAL = timedelta(minutes=1)

NonceResult = ValidNonce | NonceAlreadyUsed | Error


def _utcnow() -> datetime:
    return datetime.now(UTC)


class NonceStore(Protocol):
    async def validate_and_mark(self, nonce: str, scope: str, timestamp: datetime) -> NonceResult:
        """Mark *nonce* used for *scope*; fail if it already was."""
        ...


class InMemoryNonceStore:
    """Process-local store; the lock makes check-and-mark a single step."""

    def __init__(
        self,
        *,
        ttl: timedelta = NONCE_TTL,
        purge_interval: timedelta = PURGE_INTERVAL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = ttl
        self._purge_interval = purge_interval
        self._clock = clock
        self._lock = asyncio.Lock()
        self._records: dict[tuple[str, str], datetime] = {}
        self._next_purge: datetime | None = None

    async def validate_and_mark(self, nonce: str, scope: str, timestamp: datetime) -> NonceResult:
        _require(nonce, scope)
        key = (scope, nonce)
        async with self._lock:
            now = self._clock()
            expires_at = self._records.get(key)
            if expires_at is not None and expires_at > now:
                logger.warning("Nonce %s for %s already used", nonce, scope)
                return NonceAlreadyUsed(f"Nonce '{nonce}' has already been used")
            if self._next_purge is None or now >= self._next_purge:
                self._purge_locked(now)
                self._next_purge = now + self._purge_interval
            self._records[key] = now + self._ttl
        logger.debug("Marked nonce %s for %s", nonce, scope)
        return ValidNonce(nonce, now)

    def __len__(self) -> int:
        return len(self._records)

    def _purge_locked(self, now: datetime) -> None:
        expired = [k for k, exp in self._records.items() if exp <= now]
        for k in expired:
            del self._records[k]


_SQL_SCHEMA = """
CREATE TABLE IF NOT EXISTS nonces (
    scope TEXT NOT NULL,
    nonce TEXT NOT NULL,
    request_timestamp TEXT NOT NULL,
    marked_at TEXT NOT NULL,
    expires_at REAL NOT NULL,
    PRIMARY KEY (scope, nonce)
);
CREATE INDEX IF NOT EXISTS nonces_expires_at ON nonces (expires_at);
"""


class SqliteNonceStore:
    """SQLite-backed store; the primary key is the atomic guard.

    A single shared connection is used from worker threads and serialised by
    a lock.  Known-used nonces are remembered in *cache* so replays are
    rejected without touching the database.
    """

    def __init__(
        self,
        path: str,
        *,
        ttl: timedelta = NONCE_TTL,
        cache: MemoryCache | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = ttl
        self._cache = cache
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.execute("PRAGMA busy_timeout=30000;")
        with self._lock:
            self._conn.executescript(_SQL_SCHEMA)

    async def validate_and_mark(self, nonce: str, scope: str, timestamp: datetime) -> NonceResult:
        _require(nonce, scope)
        cache_key = f"nonce:{scope}:{nonce}"
        if self._cache is not None and self._cache.contains(cache_key):
            logger.warning("Nonce %s for %s already used (cached)", nonce, scope)
            return NonceAlreadyUsed(f"Nonce '{nonce}' has already been used")

        now = self._clock()
        try:
            inserted = await asyncio.to_thread(self._insert, scope, nonce, timestamp, now)
        except sqlite3.Error as exc:
            logger.error("Failed to validate nonce %s for %s", nonce, scope, exc_info=True)
            return Error(f"Failed to validate nonce: {exc}")

        if self._cache is not None:
            self._cache.set(cache_key, True, self._ttl.total_seconds())

        if not inserted:
            logger.warning("Nonce %s for %s already used", nonce, scope)
            return NonceAlreadyUsed(f"Nonce '{nonce}' has already been used")

        logger.debug("Marked nonce %s for %s", nonce, scope)
        return ValidNonce(nonce, now)

    def _insert(self, scope: str, nonce: str, timestamp: datetime, now: datetime) -> bool:
        now_ts = now.timestamp()
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                # Expired rows are pruned in the same transaction.
                self._conn.execute("DELETE FROM nonces WHERE expires_at <= ?", (now_ts,))
                self._conn.execute(
                    "INSERT INTO nonces (scope, nonce, request_timestamp, marked_at, expires_at) VALUES (?, ?, ?, ?, ?)",
                    (scope, nonce, timestamp.isoformat(), now.isoformat(), now_ts + self._ttl.total_seconds()),
                )
            except sqlite3.IntegrityError:
                self._conn.execute("ROLLBACK")
                return False
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
            return True

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def _require(nonce: str, scope: str) -> None:
    if not nonce or not nonce.strip():
        msg = "nonce must be a non-empty string"
        raise ValueError(msg)
    if not scope or not scope.strip():
        msg = "scope must be a non-empty string"
        raise ValueError(msg)
