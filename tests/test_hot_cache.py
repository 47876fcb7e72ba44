"""Tests for the hot cache tier."""

from datetime import datetime, timedelta

import pytest

from mnemo.core.errors import ValidationError
from mnemo.core.types import Turn
from mnemo.memory.hot_cache import InMemoryHotCache

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def make_turn(index: int, importance: float = 0.5, conversation_id: str = "conv-1") -> Turn:
    turn = Turn.create(
        "user-1",
        conversation_id,
        f"message {index}",
        created_at=BASE_TIME + timedelta(seconds=index),
    )
    turn.importance = importance
    return turn


@pytest.fixture
def cache():
    return InMemoryHotCache(capacity=3)


@pytest.mark.asyncio
async def test_recent_is_bounded_and_ordered(cache):
    """recent(n) returns at most min(n, capacity) turns in ascending time order."""
    for i in range(6):
        await cache.add("user-1", "conv-1", make_turn(i))

    for n in range(0, 6):
        turns = await cache.recent("user-1", "conv-1", n)
        assert len(turns) <= min(n, 3), f"Expected at most {min(n, 3)}, got {len(turns)}"
        times = [t.created_at for t in turns]
        assert times == sorted(times)


@pytest.mark.asyncio
async def test_overflow_evicts_lowest_importance(cache):
    """Inserting capacity+1 turns evicts the least important, not the oldest."""
    importances = [0.9, 0.2, 0.7, 0.5]
    turns = [make_turn(i, imp) for i, imp in enumerate(importances)]
    for turn in turns:
        await cache.add("user-1", "conv-1", turn)

    kept = await cache.recent("user-1", "conv-1", 10)
    kept_ids = {t.id for t in kept}

    assert turns[1].id not in kept_ids, "Lowest importance turn should be evicted"
    assert turns[0].id in kept_ids, "Oldest but important turn should be kept"
    assert len(kept) == 3


@pytest.mark.asyncio
async def test_overflow_tie_evicts_oldest(cache):
    """With equal importance the oldest turn goes first."""
    turns = [make_turn(i, 0.5) for i in range(4)]
    for turn in turns:
        await cache.add("user-1", "conv-1", turn)

    kept = await cache.recent("user-1", "conv-1", 10)
    assert [t.id for t in kept] == [t.id for t in turns[1:]]


@pytest.mark.asyncio
async def test_conversations_are_isolated(cache):
    """Buckets are per (user, conversation)."""
    await cache.add("user-1", "conv-1", make_turn(1))
    await cache.add("user-1", "conv-2", make_turn(2, conversation_id="conv-2"))

    assert len(await cache.recent("user-1", "conv-1")) == 1
    assert len(await cache.recent("user-1", "conv-2")) == 1
    assert await cache.recent("user-2", "conv-1") == []


@pytest.mark.asyncio
async def test_remove_and_clear(cache):
    """Single turns can be removed and whole conversations cleared."""
    first, second = make_turn(1), make_turn(2)
    await cache.add("user-1", "conv-1", first)
    await cache.add("user-1", "conv-1", second)

    assert await cache.remove(first.id)
    assert not await cache.remove(first.id)
    assert [t.id for t in await cache.recent("user-1", "conv-1")] == [second.id]

    await cache.clear("user-1", "conv-1")
    assert await cache.recent("user-1", "conv-1") == []


@pytest.mark.asyncio
async def test_delete_user(cache):
    """delete_user drops every bucket of that user only."""
    await cache.add("user-1", "conv-1", make_turn(1))
    await cache.add("user-1", "conv-2", make_turn(2, conversation_id="conv-2"))
    other = Turn.create("user-2", "conv-1", "hi")
    await cache.add("user-2", "conv-1", other)

    assert await cache.delete_user("user-1") == 2
    assert await cache.recent("user-1", "conv-1") == []
    assert await cache.recent("user-1", "conv-2") == []
    assert len(await cache.recent("user-2", "conv-1")) == 1


@pytest.mark.asyncio
async def test_sweep_expires_idle_buckets(cache):
    """Buckets untouched past the TTL are swept."""
    await cache.add("user-1", "conv-1", make_turn(1))
    await cache.add("user-1", "conv-2", make_turn(2, conversation_id="conv-2"))
    cache._buckets[("user-1", "conv-1")].last_touched = datetime.now() - timedelta(hours=25)

    assert await cache.sweep() == 1
    assert await cache.recent("user-1", "conv-1") == []
    assert len(await cache.recent("user-1", "conv-2")) == 1


@pytest.mark.asyncio
async def test_sweep_enforces_bucket_cap():
    """Over the global cap, the least recently touched buckets go first."""
    cache = InMemoryHotCache(capacity=3, max_buckets=2)
    for i in range(3):
        await cache.add("user-1", f"conv-{i}", make_turn(i, conversation_id=f"conv-{i}"))

    assert await cache.sweep() == 1
    assert len(cache) == 2
    assert await cache.recent("user-1", "conv-0") == []


@pytest.mark.asyncio
async def test_sweep_skips_locked_buckets(cache):
    """A bucket in use is left for the next sweep."""
    await cache.add("user-1", "conv-1", make_turn(1))
    bucket = cache._buckets[("user-1", "conv-1")]
    bucket.last_touched = datetime.now() - timedelta(hours=25)

    async with bucket.lock:
        assert await cache.sweep() == 0
    assert await cache.sweep() == 1


@pytest.mark.asyncio
async def test_invalid_identifiers_rejected(cache):
    """Malformed ids raise before anything is stored."""
    with pytest.raises(ValidationError):
        await cache.add("bad user", "conv-1", make_turn(1))
    with pytest.raises(ValidationError):
        await cache.recent("user-1\n", "conv-1")
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_readding_turn_does_not_duplicate(cache):
    """A turn id added twice occupies one slot."""
    first, second = make_turn(1), make_turn(2)
    await cache.add("user-1", "conv-1", first)
    await cache.add("user-1", "conv-1", first)
    await cache.add("user-1", "conv-1", second)

    assert [t.id for t in await cache.recent("user-1", "conv-1")] == [first.id, second.id]
