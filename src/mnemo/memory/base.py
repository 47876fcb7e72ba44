"""
Memory tier interfaces.

Each tier has one canonical in-memory implementation; persistent backends
(key-value cache, document store, full-text index) plug in by
implementing the same contract.
"""

from abc import ABC, abstractmethod

from mnemo.core.types import Fact, Pattern, Turn


class HotCache(ABC):
    """Tier 4: bounded recent turns per (user, conversation)."""

    @abstractmethod
    async def add(self, user_id: str, conversation_id: str, turn: Turn) -> None:
        ...

    @abstractmethod
    async def recent(self, user_id: str, conversation_id: str, n: int = 10) -> list[Turn]:
        """Up to n turns, ascending time order."""
        ...

    @abstractmethod
    async def clear(self, user_id: str, conversation_id: str) -> None:
        ...

    @abstractmethod
    async def remove(self, turn_id: str) -> bool:
        ...

    @abstractmethod
    async def delete_user(self, user_id: str) -> int:
        """Drop every bucket of a user, return the number of buckets removed."""
        ...

    async def sweep(self) -> int:
        """Expire idle buckets. No-op for backends with native expiry."""
        return 0


class FactStore(ABC):
    """Tier 3: per-user searchable facts with access tracking."""

    @abstractmethod
    async def store(self, user_id: str, conversation_id: str, facts: list[Fact]) -> int:
        ...

    @abstractmethod
    async def search(self, user_id: str, query: str, max_results: int = 20) -> list[Fact]:
        """Ranked matches; each returned fact has its access recorded."""
        ...

    @abstractmethod
    async def record_access(self, fact_id: str) -> bool:
        ...

    @abstractmethod
    async def prune(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def delete_user(self, user_id: str) -> int:
        ...

    async def users(self) -> list[str]:
        """Users with stored facts. Used by scheduled maintenance."""
        return []


class Archive(ABC):
    """Tier 2: append-only per-user message log, the system of record."""

    @abstractmethod
    async def append(self, turn: Turn) -> None:
        ...

    @abstractmethod
    async def search(self, user_id: str, query: str, max_results: int = 5) -> list[Turn]:
        """Matches ranked by importance, then recency."""
        ...

    @abstractmethod
    async def get(self, turn_id: str) -> Turn | None:
        ...

    @abstractmethod
    async def delete(self, user_id: str, turn_id: str) -> bool:
        ...

    @abstractmethod
    async def delete_user(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def conversation(
        self, user_id: str, conversation_id: str, limit: int = 50
    ) -> list[Turn]:
        """Latest turns of one conversation, chronological."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


class PatternStore(ABC):
    """Tier 1: learned trigger -> instruction patterns."""

    @abstractmethod
    async def match(self, user_id: str, query: str) -> Pattern | None:
        ...

    @abstractmethod
    async def store(self, pattern: Pattern, merge_similar: bool = True) -> Pattern:
        ...

    @abstractmethod
    async def detect(self, user_id: str, turn: Turn) -> list[Pattern]:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[Pattern]:
        ...

    @abstractmethod
    async def delete_user(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def consolidate(self, user_id: str) -> int:
        """Merge similar patterns, return the number of merges."""
        ...

    async def wait_background(self) -> None:
        """Wait for background consolidation, if the backend runs any."""
        return None

    async def users(self) -> list[str]:
        return []
