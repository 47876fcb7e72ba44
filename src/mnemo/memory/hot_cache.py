"""In-memory hot cache (Tier 4): recent turns per conversation with TTL + LRU."""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from mnemo.core.errors import validate_identifier, validate_limit
from mnemo.core.logging import get_logger
from mnemo.core.types import Turn
from mnemo.core.typing import BucketKey
from mnemo.memory.base import HotCache

logger = get_logger("memory.hot_cache")


@dataclass
class _Bucket:
    turns: list[Turn] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    last_touched: datetime = field(default_factory=datetime.now)


class InMemoryHotCache(HotCache):
    """Bounded per-(user, conversation) buckets.

    Overflow evicts the least important turn (oldest on ties), so a bucket
    always holds the highest-(importance, recency) set. Buckets expire after
    `ttl` without a touch and the number of buckets is LRU-capped; both
    checks run at most once per `sweep_interval`, piggybacking on writes.
    """

    def __init__(
        self,
        capacity: int = 10,
        ttl: timedelta = timedelta(hours=24),
        max_buckets: int = 10_000,
        sweep_interval: timedelta = timedelta(minutes=5),
    ):
        self.capacity = capacity
        self.ttl = ttl
        self.max_buckets = max_buckets
        self.sweep_interval = sweep_interval
        # Ordered by last touch, least recent first
        self._buckets: OrderedDict[BucketKey, _Bucket] = OrderedDict()
        self._turn_index: dict[str, BucketKey] = {}
        self._last_sweep = datetime.now()

    def _bucket(self, key: BucketKey, create: bool = False) -> _Bucket | None:
        bucket = self._buckets.get(key)
        if bucket is None and create:
            bucket = _Bucket()
            self._buckets[key] = bucket
        return bucket

    def _touch(self, key: BucketKey, bucket: _Bucket) -> None:
        bucket.last_touched = datetime.now()
        if key in self._buckets:
            self._buckets.move_to_end(key)

    async def add(self, user_id: str, conversation_id: str, turn: Turn) -> None:
        validate_identifier(user_id, "user_id")
        validate_identifier(conversation_id, "conversation_id")

        key = (user_id, conversation_id)
        if self._turn_index.get(turn.id, key) != key:
            await self.remove(turn.id)
        bucket = self._bucket(key, create=True)

        async with bucket.lock:
            # A turn id already in the bucket is replaced, not duplicated
            bucket.turns = [t for t in bucket.turns if t.id != turn.id]
            bucket.turns.append(turn)
            self._turn_index[turn.id] = key

            while len(bucket.turns) > self.capacity:
                victim = min(bucket.turns, key=lambda t: (t.importance, t.created_at))
                bucket.turns.remove(victim)
                self._turn_index.pop(victim.id, None)
                logger.debug(
                    f"Evicted turn {victim.id} (importance {victim.importance:.2f}) "
                    f"from {user_id}/{conversation_id}"
                )

            # Bucket may have been swept while we waited for the lock
            if key not in self._buckets:
                self._buckets[key] = bucket
            self._touch(key, bucket)

        self._maybe_sweep()

    async def recent(self, user_id: str, conversation_id: str, n: int = 10) -> list[Turn]:
        validate_identifier(user_id, "user_id")
        validate_identifier(conversation_id, "conversation_id")
        validate_limit(n, "n")
        key = (user_id, conversation_id)
        bucket = self._bucket(key)
        if bucket is None or n == 0:
            return []

        async with bucket.lock:
            ordered = sorted(bucket.turns, key=lambda t: t.created_at)
            self._touch(key, bucket)
            return ordered[-n:]

    async def clear(self, user_id: str, conversation_id: str) -> None:
        key = (user_id, conversation_id)
        bucket = self._bucket(key)
        if bucket is None:
            return

        async with bucket.lock:
            for turn in bucket.turns:
                self._turn_index.pop(turn.id, None)
            bucket.turns.clear()
            self._buckets.pop(key, None)

        logger.debug(f"Cleared hot cache for conversation: {conversation_id}")

    async def remove(self, turn_id: str) -> bool:
        key = self._turn_index.get(turn_id)
        bucket = self._bucket(key) if key else None
        if bucket is None:
            return False

        async with bucket.lock:
            before = len(bucket.turns)
            bucket.turns = [t for t in bucket.turns if t.id != turn_id]
            self._turn_index.pop(turn_id, None)
            return len(bucket.turns) < before

    async def delete_user(self, user_id: str) -> int:
        keys = [k for k in self._buckets if k[0] == user_id]
        for key in keys:
            bucket = self._buckets.get(key)
            if bucket is None:
                continue
            # One bucket lock at a time
            async with bucket.lock:
                for turn in bucket.turns:
                    self._turn_index.pop(turn.id, None)
                bucket.turns.clear()
                self._buckets.pop(key, None)

        logger.info(
            f"Deleted all hot cache data for user {user_id}: {len(keys)} conversations removed"
        )
        return len(keys)

    def _maybe_sweep(self) -> None:
        if datetime.now() - self._last_sweep >= self.sweep_interval:
            self._sweep_now()

    async def sweep(self) -> int:
        return self._sweep_now()

    def _sweep_now(self) -> int:
        """Drop expired buckets, then least recently used ones over the cap.

        Runs without suspending; buckets whose lock is held are in use and
        are left for the next sweep.
        """
        now = datetime.now()
        self._last_sweep = now
        removed = 0

        for key, bucket in list(self._buckets.items()):
            if bucket.lock.locked():
                continue
            if now - bucket.last_touched > self.ttl:
                self._drop(key, bucket)
                removed += 1

        overflow = len(self._buckets) - self.max_buckets
        if overflow > 0:
            for key, bucket in list(self._buckets.items()):
                if overflow <= 0:
                    break
                if bucket.lock.locked():
                    continue
                self._drop(key, bucket)
                removed += 1
                overflow -= 1

        if removed:
            logger.info(f"Hot cache sweep removed {removed} buckets, {len(self._buckets)} remain")
        return removed

    def _drop(self, key: BucketKey, bucket: _Bucket) -> None:
        for turn in bucket.turns:
            self._turn_index.pop(turn.id, None)
        self._buckets.pop(key, None)

    def __len__(self) -> int:
        return len(self._buckets)
