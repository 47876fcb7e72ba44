"""
In-memory pattern store (Tier 1).

Patterns are learned trigger -> instruction associations. This module handles:
- Matching a query against a user's patterns (keyword, regex, semantic triggers)
- Threshold decay through Pattern.record_usage on every match
- Background consolidation of near-duplicate patterns every N matches
- Per-user capacity with least-used, least-recent eviction
- Detection of new patterns from turns (delegated to PatternDetector)
"""

import asyncio
import re
from collections import defaultdict

from mnemo.core.errors import ValidationError, validate_identifier, validate_query
from mnemo.core.logging import get_logger, op_tag
from mnemo.core.types import DEFAULT_POLICY, Pattern, PatternTrigger, ReinforcementPolicy, TriggerKind, Turn
from mnemo.core.typing import Vector
from mnemo.llm.base import Embedder, embed_or_none
from mnemo.memory.base import PatternStore
from mnemo.memory.detection import PatternDetector
from mnemo.memory.similarity import cosine_similarity, jaccard, string_similarity

logger = get_logger("memory.patterns")

KEYWORD_SCORE = 0.9
REGEX_SCORE = 0.85
SEMANTIC_FALLBACK_SCORE = 0.7
USAGE_BOOST_PER_USE = 0.01
MAX_USAGE_BOOST = 0.15

NAME_SIMILARITY = 0.8
TRIGGER_OVERLAP = 0.6


def is_similar(a: Pattern, b: Pattern) -> bool:
    """Near-duplicate check used by consolidation and store-time merging."""
    if string_similarity(a.name.lower(), b.name.lower()) >= NAME_SIMILARITY:
        return True
    return jaccard(a.trigger_keys(), b.trigger_keys()) > TRIGGER_OVERLAP


def pick_survivor(a: Pattern, b: Pattern) -> tuple[Pattern, Pattern]:
    """(survivor, loser): the more used wins, the older one on ties."""
    if a.usage_count != b.usage_count:
        return (a, b) if a.usage_count > b.usage_count else (b, a)
    return (a, b) if a.created_at <= b.created_at else (b, a)


def merge_patterns(
    target: Pattern,
    source: Pattern,
    policy: ReinforcementPolicy = DEFAULT_POLICY,
) -> Pattern:
    """Fold source into target.

    Triggers are unioned case-insensitively and the source's usage is
    replayed through record_usage, so merged usage decays the threshold
    exactly like organic matches do.
    """
    existing = target.trigger_keys()
    for trigger in source.triggers:
        key = trigger.pattern.lower()
        if key not in existing:
            target.triggers.append(trigger)
            existing.add(key)

    at = max(target.last_used, source.last_used)
    for _ in range(source.usage_count):
        target.record_usage(policy, at=at)
    return target


def score_trigger(trigger: PatternTrigger, query: str, query_embedding: Vector | None) -> float:
    query_lower = query.lower()

    if trigger.kind == TriggerKind.KEYWORD:
        return KEYWORD_SCORE if trigger.pattern.lower() in query_lower else 0.0

    if trigger.kind == TriggerKind.REGEX:
        try:
            return REGEX_SCORE if re.search(trigger.pattern, query, re.IGNORECASE) else 0.0
        except re.error:
            logger.debug(f"Invalid regex trigger ignored: {trigger.pattern!r}")
            return 0.0

    if query_embedding is not None and trigger.embedding:
        return cosine_similarity(query_embedding, trigger.embedding)
    return SEMANTIC_FALLBACK_SCORE if trigger.pattern.lower() in query_lower else 0.0


class InMemoryPatternStore(PatternStore):
    """Per-user patterns guarded by a per-user lock.

    The query embedding is computed once per match, before the lock.
    Consolidation runs as an independent task; a second trigger while one
    is in flight for the same user is skipped, not queued.
    """

    def __init__(
        self,
        embedder: Embedder | None = None,
        detector: PatternDetector | None = None,
        capacity: int = 100,
        consolidation_every: int = 10,
        consolidation_timeout: float = 120.0,
        consolidation_debounce: float = 0.1,
        policy: ReinforcementPolicy = DEFAULT_POLICY,
    ):
        self.embedder = embedder
        self.detector = detector or PatternDetector(embedder=embedder)
        self.capacity = capacity
        self.consolidation_every = consolidation_every
        self.consolidation_timeout = consolidation_timeout
        self.consolidation_debounce = consolidation_debounce
        self.policy = policy

        self._patterns: dict[str, dict[str, Pattern]] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._consolidation_guards: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._background: set[asyncio.Task] = set()

    def _has_semantic_triggers(self, user_id: str) -> bool:
        return any(
            t.kind == TriggerKind.SEMANTIC and t.embedding
            for p in self._patterns.get(user_id, {}).values()
            for t in p.triggers
        )

    # =========================================================================
    # Matching
    # =========================================================================

    async def match(self, user_id: str, query: str) -> Pattern | None:
        validate_identifier(user_id, "user_id")
        validate_query(query)
        if not self._patterns.get(user_id):
            return None

        query_embedding = None
        if self._has_semantic_triggers(user_id):
            query_embedding = await embed_or_none(self.embedder, query, user_id, "patterns.match")

        async with self._locks[user_id]:
            candidates = sorted(
                self._patterns.get(user_id, {}).values(),
                key=lambda p: p.usage_count,
                reverse=True,
            )

            best: Pattern | None = None
            best_score = 0.0
            for pattern in candidates:
                boost = min(pattern.usage_count * USAGE_BOOST_PER_USE, MAX_USAGE_BOOST)
                for trigger in pattern.triggers:
                    score = score_trigger(trigger, query, query_embedding)
                    if score <= pattern.confidence_threshold:
                        continue
                    if best is None or score + boost > best_score:
                        best = pattern
                        best_score = score + boost

            if best is None:
                return None

            best.record_usage(self.policy)
            due = best.usage_count % self.consolidation_every == 0

        logger.debug(
            f"Matched pattern '{best.name}' for user {user_id} "
            f"(score {best_score:.2f}, uses {best.usage_count})"
        )
        if due:
            self._schedule_consolidation(user_id)
        return best

    # =========================================================================
    # Consolidation
    # =========================================================================

    def _schedule_consolidation(self, user_id: str) -> None:
        guard = self._consolidation_guards[user_id]
        if guard.locked():
            logger.debug(f"Consolidation already running for user {user_id}, skipped")
            return

        task = asyncio.create_task(self._run_consolidation(user_id, guard))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_consolidation(self, user_id: str, guard: asyncio.Lock) -> None:
        # Check-then-acquire does not suspend on a free lock
        if guard.locked():
            logger.debug(f"Consolidation already running for user {user_id}, skipped")
            return
        await guard.acquire()
        try:
            if self.consolidation_debounce:
                await asyncio.sleep(self.consolidation_debounce)
            merged = await asyncio.wait_for(
                self.consolidate(user_id), timeout=self.consolidation_timeout
            )
            if merged:
                logger.info(f"Background consolidation merged {merged} patterns for user {user_id}")
        except asyncio.TimeoutError:
            logger.warning(f"{op_tag(user_id, 'consolidate')} timed out after {self.consolidation_timeout}s")
        except Exception as e:
            logger.warning(f"{op_tag(user_id, 'consolidate')} failed: {e}")
        finally:
            guard.release()

    def _find_similar_pair(self, patterns: list[Pattern]) -> tuple[Pattern, Pattern] | None:
        for i, a in enumerate(patterns):
            for b in patterns[i + 1:]:
                if is_similar(a, b):
                    return a, b
        return None

    async def consolidate(self, user_id: str) -> int:
        """Merge similar patterns until none remain. Returns the number of merges."""
        if user_id not in self._patterns:
            return 0

        merges = 0
        async with self._locks[user_id]:
            user_patterns = self._patterns.get(user_id, {})
            while True:
                ordered = sorted(user_patterns.values(), key=lambda p: (p.created_at, p.id))
                pair = self._find_similar_pair(ordered)
                if pair is None:
                    break

                survivor, loser = pick_survivor(*pair)
                merge_patterns(survivor, loser, self.policy)
                del user_patterns[loser.id]
                merges += 1
                logger.debug(f"Merged pattern '{loser.name}' into '{survivor.name}'")

        if merges:
            logger.info(f"Consolidated {merges} patterns for user {user_id}")
        return merges

    async def wait_background(self) -> None:
        """Wait for in-flight consolidation tasks."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # Storage
    # =========================================================================

    @staticmethod
    def _validate(pattern: Pattern) -> None:
        validate_identifier(pattern.user_id, "user_id")
        if not pattern.name.strip():
            raise ValidationError("pattern name cannot be empty")
        if not pattern.instruction_template.strip():
            raise ValidationError("pattern instruction_template cannot be empty")
        if not pattern.triggers:
            raise ValidationError("pattern needs at least one trigger")
        if any(not t.pattern.strip() for t in pattern.triggers):
            raise ValidationError("pattern triggers cannot be empty")

    def _evict_overflow(self, user_id: str, user_patterns: dict[str, Pattern]) -> None:
        while len(user_patterns) > self.capacity:
            victim = min(user_patterns.values(), key=lambda p: (p.usage_count, p.last_used))
            del user_patterns[victim.id]
            logger.debug(f"Evicted pattern '{victim.name}' for user {user_id} (capacity {self.capacity})")

    async def store(self, pattern: Pattern, merge_similar: bool = True) -> Pattern:
        self._validate(pattern)
        user_id = pattern.user_id

        for trigger in pattern.triggers:
            if trigger.kind == TriggerKind.SEMANTIC and trigger.embedding is None:
                trigger.embedding = await embed_or_none(self.embedder, trigger.pattern, user_id, "patterns.store")

        async with self._locks[user_id]:
            user_patterns = self._patterns.setdefault(user_id, {})

            if merge_similar:
                existing = next(
                    (
                        p for p in sorted(user_patterns.values(), key=lambda p: p.usage_count, reverse=True)
                        if p.id != pattern.id and is_similar(p, pattern)
                    ),
                    None,
                )
                if existing is not None:
                    survivor, loser = pick_survivor(existing, pattern)
                    merge_patterns(survivor, loser, self.policy)
                    user_patterns.pop(loser.id, None)
                    user_patterns[survivor.id] = survivor
                    logger.debug(f"Merged new pattern into '{survivor.name}' for user {user_id}")
                    return survivor

            user_patterns[pattern.id] = pattern
            self._evict_overflow(user_id, user_patterns)

        logger.debug(f"Stored pattern '{pattern.name}' for user {user_id}")
        return pattern

    async def detect(self, user_id: str, turn: Turn) -> list[Pattern]:
        """Detect patterns in a turn and store them. Never raises for collaborator failures."""
        validate_identifier(user_id, "user_id")
        candidates = await self.detector.detect(user_id, turn)

        stored = []
        for candidate in candidates:
            try:
                stored.append(await self.store(candidate))
            except ValidationError as e:
                logger.warning(f"{op_tag(user_id, 'detect')} discarded malformed pattern: {e}")

        if stored:
            logger.info(f"Learned {len(stored)} patterns for user {user_id}")
        return stored

    async def list_for_user(self, user_id: str) -> list[Pattern]:
        validate_identifier(user_id, "user_id")
        if user_id not in self._patterns:
            return []

        async with self._locks[user_id]:
            return sorted(
                self._patterns.get(user_id, {}).values(),
                key=lambda p: (p.usage_count, p.last_used),
                reverse=True,
            )

    async def delete_user(self, user_id: str) -> int:
        if user_id not in self._patterns and user_id not in self._locks:
            return 0

        async with self._locks[user_id]:
            removed = self._patterns.pop(user_id, {})
        self._locks.pop(user_id, None)
        self._consolidation_guards.pop(user_id, None)

        if removed:
            logger.info(f"Deleted all pattern data for user {user_id}: {len(removed)} patterns removed")
        return len(removed)

    async def users(self) -> list[str]:
        return [u for u, patterns in self._patterns.items() if patterns]
