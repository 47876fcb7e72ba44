"""In-memory archive (Tier 2): the full per-user message log."""

import asyncio
from collections import defaultdict

from mnemo.core.errors import validate_identifier, validate_limit
from mnemo.core.logging import get_logger
from mnemo.core.types import Turn
from mnemo.core.typing import Vector
from mnemo.llm.base import Embedder, embed_or_none
from mnemo.memory.base import Archive
from mnemo.memory.similarity import cosine_similarity, keyword_score

logger = get_logger("memory.archive")


class InMemoryArchive(Archive):
    """Per-user message log keyed by turn id. Nothing is ever evicted implicitly."""

    def __init__(self, embedder: Embedder | None = None, min_similarity: float = 0.5):
        self.embedder = embedder
        self.min_similarity = min_similarity
        self._by_id: dict[str, Turn] = {}
        self._by_user: dict[str, list[Turn]] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def append(self, turn: Turn) -> None:
        validate_identifier(turn.user_id, "user_id")
        if turn.embedding is None:
            turn.embedding = await embed_or_none(self.embedder, turn.text, turn.user_id, "archive.append")

        previous = self._by_id.get(turn.id)
        if previous is not None and previous.user_id != turn.user_id:
            await self.delete(previous.user_id, turn.id)

        async with self._locks[turn.user_id]:
            # Re-appending a turn id replaces the stored turn
            user_turns = [t for t in self._by_user.get(turn.user_id, []) if t.id != turn.id]
            user_turns.append(turn)
            self._by_user[turn.user_id] = user_turns
            self._by_id[turn.id] = turn

        logger.debug(f"Archived turn {turn.id} for user {turn.user_id}")

    async def search(self, user_id: str, query: str, max_results: int = 5) -> list[Turn]:
        validate_identifier(user_id, "user_id")
        validate_limit(max_results)
        if not self._by_user.get(user_id) or max_results == 0:
            return []

        query_embedding = await embed_or_none(self.embedder, query, user_id, "archive.search")

        async with self._locks[user_id]:
            matches = []
            for turn in self._by_user.get(user_id, []):
                if query_embedding is not None and turn.embedding:
                    score = cosine_similarity(query_embedding, turn.embedding)
                else:
                    score = keyword_score(query, turn.text)
                if score >= self.min_similarity:
                    matches.append(turn)

        matches.sort(key=lambda t: (t.importance, t.created_at), reverse=True)
        results = matches[:max_results]
        logger.debug(f"Found {len(results)} archived turns for query: {query}")
        return results

    async def get(self, turn_id: str) -> Turn | None:
        return self._by_id.get(turn_id)

    async def conversation(
        self, user_id: str, conversation_id: str, limit: int = 50
    ) -> list[Turn]:
        validate_identifier(user_id, "user_id")
        validate_limit(limit, "limit")
        async with self._locks[user_id]:
            turns = [t for t in self._by_user.get(user_id, []) if t.conversation_id == conversation_id]
        turns.sort(key=lambda t: t.created_at)
        return turns[-limit:] if limit else []

    async def delete(self, user_id: str, turn_id: str) -> bool:
        async with self._locks[user_id]:
            turn = self._by_id.get(turn_id)
            if turn is None or turn.user_id != user_id:
                return False
            del self._by_id[turn_id]
            self._by_user[user_id] = [t for t in self._by_user.get(user_id, []) if t.id != turn_id]

        logger.debug(f"Deleted archived turn {turn_id} for user {user_id}")
        return True

    async def delete_user(self, user_id: str) -> int:
        async with self._locks[user_id]:
            turns = self._by_user.pop(user_id, [])
            for turn in turns:
                self._by_id.pop(turn.id, None)
        self._locks.pop(user_id, None)

        logger.info(f"Deleted all archive data for user {user_id}: {len(turns)} turns removed")
        return len(turns)
