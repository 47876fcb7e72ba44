"""In-memory fact store (Tier 3)."""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta

from mnemo.core.errors import validate_identifier, validate_limit
from mnemo.core.logging import get_logger
from mnemo.core.types import Fact
from mnemo.core.typing import Vector
from mnemo.llm.base import Embedder, embed_or_none
from mnemo.memory.base import FactStore
from mnemo.memory.similarity import cosine_similarity, keyword_score

logger = get_logger("memory.facts")


class InMemoryFactStore(FactStore):
    """Per-user facts ranked by similarity, then importance, then recency.

    Embeddings are computed before taking the user's lock. Without an
    embedder (or when it fails) search falls back to keyword overlap.
    """

    def __init__(
        self,
        embedder: Embedder | None = None,
        min_access_count: int = 2,
        ttl: timedelta = timedelta(days=30),
        min_similarity: float = 0.3,
    ):
        self.embedder = embedder
        self.min_access_count = min_access_count
        self.ttl = ttl
        self.min_similarity = min_similarity
        self._facts: dict[str, dict[str, Fact]] = {}
        self._owners: dict[str, str] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def store(self, user_id: str, conversation_id: str, facts: list[Fact]) -> int:
        validate_identifier(user_id, "user_id")
        validate_identifier(conversation_id, "conversation_id")
        if not facts:
            return 0

        for fact in facts:
            if fact.embedding is None:
                fact.embedding = await embed_or_none(self.embedder, fact.text, user_id, "facts.store")

        stored = 0
        async with self._locks[user_id]:
            user_facts = self._facts.setdefault(user_id, {})
            for fact in facts:
                fact.user_id = user_id
                duplicate = next(
                    (
                        f for f in user_facts.values()
                        if f.key.lower() == fact.key.lower() and f.value.lower() == fact.value.lower()
                    ),
                    None,
                )
                if duplicate:
                    duplicate.importance = max(duplicate.importance, fact.importance)
                    continue
                user_facts[fact.id] = fact
                self._owners[fact.id] = user_id
                stored += 1

        logger.debug(f"Stored {stored} facts for user {user_id}")
        return stored

    def _score(self, fact: Fact, query: str, query_embedding: Vector | None) -> float:
        if query_embedding is not None and fact.embedding:
            return cosine_similarity(query_embedding, fact.embedding)
        return keyword_score(query, fact.text)

    async def search(self, user_id: str, query: str, max_results: int = 20) -> list[Fact]:
        validate_identifier(user_id, "user_id")
        validate_limit(max_results)
        if not self._facts.get(user_id) or max_results == 0:
            return []

        query_embedding = await embed_or_none(self.embedder, query, user_id, "facts.search")

        async with self._locks[user_id]:
            scored = []
            for fact in self._facts.get(user_id, {}).values():
                score = self._score(fact, query, query_embedding)
                if score >= self.min_similarity:
                    scored.append((score, fact))

            scored.sort(key=lambda p: (p[0], p[1].importance, p[1].last_accessed), reverse=True)
            results = [fact for _, fact in scored[:max_results]]

            now = datetime.now()
            for fact in results:
                fact.record_access(now)

        logger.debug(f"Found {len(results)} facts for query: {query}")
        return results

    async def record_access(self, fact_id: str) -> bool:
        user_id = self._owners.get(fact_id)
        if user_id is None:
            return False

        async with self._locks[user_id]:
            fact = self._facts.get(user_id, {}).get(fact_id)
            if fact is None:
                return False
            fact.record_access()
            return True

    async def get(self, fact_id: str) -> Fact | None:
        user_id = self._owners.get(fact_id)
        if user_id is None:
            return None
        return self._facts.get(user_id, {}).get(fact_id)

    async def list_for_user(self, user_id: str) -> list[Fact]:
        validate_identifier(user_id, "user_id")
        if user_id not in self._facts:
            return []

        async with self._locks[user_id]:
            return sorted(
                self._facts.get(user_id, {}).values(),
                key=lambda f: (f.importance, f.last_accessed),
                reverse=True,
            )

    async def prune(self, user_id: str) -> int:
        if user_id not in self._facts:
            return 0

        async with self._locks[user_id]:
            now = datetime.now()
            user_facts = self._facts.get(user_id, {})
            stale = [
                fid for fid, f in user_facts.items()
                if f.should_evict(self.ttl, self.min_access_count, now)
            ]
            for fid in stale:
                del user_facts[fid]
                self._owners.pop(fid, None)

        logger.info(f"Pruned {len(stale)} facts for user {user_id}")
        return len(stale)

    async def delete_user(self, user_id: str) -> int:
        async with self._locks[user_id]:
            user_facts = self._facts.pop(user_id, {})
            for fid in user_facts:
                self._owners.pop(fid, None)
        self._locks.pop(user_id, None)

        if user_facts:
            logger.info(f"Deleted all fact data for user {user_id}: {len(user_facts)} facts removed")
        else:
            logger.debug(f"No fact data found for user {user_id}")
        return len(user_facts)

    async def users(self) -> list[str]:
        return [u for u, facts in self._facts.items() if facts]
