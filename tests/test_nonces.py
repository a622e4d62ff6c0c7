"""Tests for the nonce stores."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import UTC, datetime, timedelta

import pytest

from badgesmith.caching import MemoryCache
from badgesmith.nonces import InMemoryNonceStore, SqliteNonceStore
from badgesmith.results import NonceAlreadyUsed, ValidNonce

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


class Clock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(params=["memory", "sqlite"])
def store_and_clock(request, tmp_path):
    clock = Clock()
    if request.param == "memory":
        yield InMemoryNonceStore(clock=clock), clock
        return
    store = SqliteNonceStore(str(tmp_path / "nonces.db"), clock=clock)
    yield store, clock
    store.close()


@pytest.mark.asyncio
async def test_first_use_succeeds_second_fails(store_and_clock) -> None:
    store, _ = store_and_clock
    first = await store.validate_and_mark("n1", "acme/widgets", T0)
    assert isinstance(first, ValidNonce)
    assert first.nonce == "n1"
    second = await store.validate_and_mark("n1", "acme/widgets", T0)
    assert isinstance(second, NonceAlreadyUsed)
    assert second.code == "NONCE_ALREADY_USED"


@pytest.mark.asyncio
async def test_nonces_are_scoped(store_and_clock) -> None:
    store, _ = store_and_clock
    assert isinstance(await store.validate_and_mark("n1", "acme/widgets", T0), ValidNonce)
    assert isinstance(await store.validate_and_mark("n1", "acme/gadgets", T0), ValidNonce)


@pytest.mark.asyncio
async def test_nonce_reusable_after_ttl(store_and_clock) -> None:
    store, clock = store_and_clock
    assert isinstance(await store.validate_and_mark("n1", "acme/widgets", T0), ValidNonce)
    clock.now = T0 + timedelta(minutes=44)
    assert isinstance(await store.validate_and_mark("n1", "acme/widgets", T0), NonceAlreadyUsed)
    clock.now = T0 + timedelta(minutes=45, seconds=1)
    assert isinstance(await store.validate_and_mark("n1", "acme/widgets", clock.now), ValidNonce)


@pytest.mark.asyncio
async def test_concurrent_callers_exactly_one_wins(store_and_clock) -> None:
    store, _ = store_and_clock
    results = await asyncio.gather(*(store.validate_and_mark("race", "acme/widgets", T0) for _ in range(25)))
    assert sum(isinstance(r, ValidNonce) for r in results) == 1
    assert sum(isinstance(r, NonceAlreadyUsed) for r in results) == 24


@pytest.mark.asyncio
@pytest.mark.parametrize(("nonce", "scope"), [("", "acme/widgets"), ("  ", "acme/widgets"), ("n", "")])
async def test_blank_arguments_rejected(store_and_clock, nonce: str, scope: str) -> None:
    store, _ = store_and_clock
    with pytest.raises(ValueError):
        await store.validate_and_mark(nonce, scope, T0)


@pytest.mark.asyncio
async def test_in_memory_purges_expired_records() -> None:
    clock = Clock()
    store = InMemoryNonceStore(ttl=timedelta(minutes=1), clock=clock)
    await store.validate_and_mark("a", "s", T0)
    await store.validate_and_mark("b", "s", T0)
    assert len(store) == 2
    clock.now = T0 + timedelta(minutes=2)
    await store.validate_and_mark("c", "s", clock.now)
    assert len(store) == 1


@pytest.mark.asyncio
async def test_sqlite_replay_answered_from_cache(tmp_path) -> None:
    cache = MemoryCache()
    store = SqliteNonceStore(str(tmp_path / "n.db"), cache=cache, clock=Clock())
    try:
        assert isinstance(await store.validate_and_mark("n", "acme/widgets", T0), ValidNonce)
        assert cache.contains("nonce:acme/widgets:n")
        assert isinstance(await store.validate_and_mark("n", "acme/widgets", T0), NonceAlreadyUsed)
    finally:
        store.close()


@pytest.mark.asyncio
async def test_sqlite_survives_reopen(tmp_path) -> None:
    path = str(tmp_path / "n.db")
    store = SqliteNonceStore(path, clock=Clock())
    await store.validate_and_mark("n", "acme/widgets", T0)
    store.close()

    reopened = SqliteNonceStore(path, clock=Clock())
    try:
        assert isinstance(await reopened.validate_and_mark("n", "acme/widgets", T0), NonceAlreadyUsed)
    finally:
        reopened.close()


@pytest.mark.asyncio
async def test_in_memory_purges_on_interval() -> None:
    clock = Clock()
    store = InMemoryNonceStore(ttl=timedelta(minutes=1), purge_interval=timedelta(minutes=10), clock=clock)
    await store.validate_and_mark("a", "s", T0)
    clock.now = T0 + timedelta(minutes=2)
    assert isinstance(await store.validate_and_mark("a", "s", clock.now), ValidNonce)
    await store.validate_and_mark("b", "s", clock.now)
    assert len(store) == 2
    clock.now = T0 + timedelta(minutes=11)
    await store.validate_and_mark("c", "s", clock.now)
    assert len(store) == 1


@pytest.mark.asyncio
async def test_sqlite_drops_expired_rows_on_insert(tmp_path) -> None:
    path = str(tmp_path / "n.db")
    clock = Clock()
    store = SqliteNonceStore(path, ttl=timedelta(minutes=1), clock=clock)
    try:
        await store.validate_and_mark("a", "s", T0)
        await store.validate_and_mark("b", "other", T0)
        clock.now = T0 + timedelta(minutes=5)
        await store.validate_and_mark("c", "s", clock.now)
    finally:
        store.close()

    conn = sqlite3.connect(path)
    try:
        rows = conn.execute("SELECT scope, nonce FROM nonces").fetchall()
    finally:
        conn.close()
    assert rows == [("s", "c")]
