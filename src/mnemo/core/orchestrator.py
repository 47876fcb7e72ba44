"""
Memory orchestrator - read/write facade over the four tiers.

Write path: validate, annotate, score, then hot cache + archive in
parallel; fact extraction and pattern detection run afterwards as
background tasks.
Read path: plan, query only the tiers in the plan (concurrently), assemble
a MemoryContext.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from mnemo.cognition.extraction import EntityExtractor, annotate_turn
from mnemo.cognition.importance import ImportanceScorer
from mnemo.cognition.planner import Planner
from mnemo.core.config import Settings
from mnemo.core.errors import ValidationError, validate_identifier, validate_query, validate_text
from mnemo.core.logging import get_logger, op_tag
from mnemo.core.scheduler import JobPriority, Scheduler
from mnemo.core.types import ConversationState, Fact, MemoryContext, Pattern, Role, Tier, Turn
from mnemo.core.typing import BucketKey
from mnemo.llm.base import Embedder, QueryClassifier, SentimentAnalyzer, TextCompleter
from mnemo.llm.heuristic import LexiconSentimentAnalyzer
from mnemo.memory.archive import InMemoryArchive
from mnemo.memory.base import Archive, FactStore, HotCache, PatternStore
from mnemo.memory.detection import PatternDetector
from mnemo.memory.facts import InMemoryFactStore
from mnemo.memory.hot_cache import InMemoryHotCache
from mnemo.memory.patterns import InMemoryPatternStore
from mnemo.memory.sqlite_archive import SQLiteArchive

logger = get_logger("core.orchestrator")

CHARS_PER_TOKEN = 4


@dataclass
class MaintenanceReport:
    user_id: str
    facts_pruned: int = 0
    patterns_merged: int = 0
    finished_at: datetime = field(default_factory=datetime.now)


async def _skip(value: Any) -> Any:
    return value


def estimate_tokens(
    recent: list[Turn],
    facts: list[Fact],
    archived: list[Turn],
    pattern: Pattern | None,
) -> int:
    """Roughly 4 characters per token."""
    chars = sum(len(t.text) for t in recent)
    chars += sum(len(f.key) + len(f.value) for f in facts)
    chars += sum(len(t.text) for t in archived)
    if pattern is not None:
        chars += len(pattern.instruction_template)
    return chars // CHARS_PER_TOKEN


class MemoryOrchestrator:
    """Coordinates the tiers. One instance per process."""

    def __init__(
        self,
        hot_cache: HotCache,
        facts: FactStore,
        archive: Archive,
        patterns: PatternStore,
        scorer: ImportanceScorer | None = None,
        planner: Planner | None = None,
        extractor: EntityExtractor | None = None,
        settings: Settings | None = None,
        scheduler: Scheduler | None = None,
    ):
        self.hot_cache = hot_cache
        self.facts = facts
        self.archive = archive
        self.patterns = patterns
        self.scorer = scorer or ImportanceScorer()
        self.planner = planner or Planner()
        self.extractor = extractor or EntityExtractor()
        self.settings = settings or Settings(_env_file=None)
        self.scheduler = scheduler or Scheduler()

        self._states: dict[BucketKey, ConversationState] = {}
        self._background: dict[str, set[asyncio.Task]] = {}

    # =========================================================================
    # Write path
    # =========================================================================

    async def write(self, user_id: str, conversation_id: str, turn: Turn) -> Turn:
        """Store a turn. Returns it annotated and scored."""
        validate_identifier(user_id, "user_id")
        validate_identifier(conversation_id, "conversation_id")
        validate_text(turn.text)
        if turn.user_id != user_id or turn.conversation_id != conversation_id:
            raise ValidationError(
                f"turn {turn.id} belongs to {turn.user_id}/{turn.conversation_id}, "
                f"not {user_id}/{conversation_id}"
            )

        annotate_turn(turn)
        turn.importance = await self.scorer.assess(turn)

        await asyncio.gather(
            self.hot_cache.add(user_id, conversation_id, turn),
            self.archive.append(turn),
        )

        state = self._state(user_id, conversation_id)
        state.turn_count += 1

        logger.info(
            f"Stored turn {turn.id} for {user_id}/{conversation_id} (importance: {turn.importance:.2f})"
        )

        if turn.role == Role.USER:
            self._spawn(user_id, "extract", self._extract_facts, turn)
            self._spawn(user_id, "detect", self.patterns.detect, user_id, turn)
        return turn

    async def _extract_facts(self, turn: Turn) -> None:
        facts = await self.extractor.extract_facts(turn)
        if facts:
            await self.facts.store(turn.user_id, turn.conversation_id, facts)

    def _spawn(self, user_id: str, operation: str, func: Callable[..., Awaitable], *args) -> None:
        task = asyncio.create_task(self._run_background(user_id, operation, func, *args))
        tasks = self._background.setdefault(user_id, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def _run_background(
        self, user_id: str, operation: str, func: Callable[..., Awaitable], *args
    ) -> None:
        timeout = self.settings.background_timeout_seconds
        try:
            await asyncio.wait_for(func(*args), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"{op_tag(user_id, operation)} background task timed out after {timeout}s")
        except Exception as e:
            logger.error(f"{op_tag(user_id, operation)} background task failed: {e}")

    # =========================================================================
    # Read path
    # =========================================================================

    async def read(self, user_id: str, conversation_id: str, query: str) -> MemoryContext:
        """Assemble context for a query from the tiers the plan selects."""
        validate_identifier(user_id, "user_id")
        validate_identifier(conversation_id, "conversation_id")
        validate_query(query)

        state = self._state(user_id, conversation_id)
        state.last_query_at = datetime.now()
        plan = await self.planner.plan(query, state)

        recent, facts, archived, pattern = await asyncio.gather(
            self.hot_cache.recent(user_id, conversation_id, self.settings.hot_cache_capacity)
            if plan.uses(Tier.HOT_CACHE) else _skip([]),
            self.facts.search(user_id, query, self.settings.fact_search_limit)
            if plan.uses(Tier.FACT_STORE) else _skip([]),
            self.archive.search(user_id, query, self.settings.archive_search_limit)
            if plan.uses(Tier.ARCHIVE) else _skip([]),
            self.patterns.match(user_id, query)
            if plan.uses(Tier.PATTERN_STORE) else _skip(None),
        )

        if pattern is not None:
            logger.info(f"Matched procedural pattern: {pattern.name}")

        context = MemoryContext(
            plan=plan,
            recent_turns=recent,
            facts=facts,
            archived_turns=archived,
            applied_pattern=pattern,
            token_estimate=estimate_tokens(recent, facts, archived, pattern),
        )
        logger.info(
            f"Context assembled for {user_id}/{conversation_id}: {plan.intent.value}, "
            f"{context.token_estimate} tokens from {len(plan.tiers)} tiers"
        )
        return context

    def _state(self, user_id: str, conversation_id: str) -> ConversationState:
        key = (user_id, conversation_id)
        if key not in self._states:
            self._states[key] = ConversationState(user_id=user_id, conversation_id=conversation_id)
        return self._states[key]

    # =========================================================================
    # Management
    # =========================================================================

    async def forget(self, user_id: str, conversation_id: str, turn_id: str) -> bool:
        """Remove one turn from the hot cache and the archive."""
        validate_identifier(user_id, "user_id")
        validate_identifier(conversation_id, "conversation_id")

        cached = await self.hot_cache.recent(user_id, conversation_id, self.settings.hot_cache_capacity)
        in_cache = any(t.id == turn_id for t in cached)

        removed_cache, removed_archive = await asyncio.gather(
            self.hot_cache.remove(turn_id) if in_cache else _skip(False),
            self.archive.delete(user_id, turn_id),
        )
        if removed_cache or removed_archive:
            logger.info(f"Forgot turn {turn_id} for {user_id}/{conversation_id}")
        return removed_cache or removed_archive

    async def delete_user(self, user_id: str) -> dict[Tier, int]:
        """Erase a user from every tier. Pending enrichment for the user is cancelled first."""
        validate_identifier(user_id, "user_id")

        pending = list(self._background.pop(user_id, set()))
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        cache, facts, archive, patterns = await asyncio.gather(
            self.hot_cache.delete_user(user_id),
            self.facts.delete_user(user_id),
            self.archive.delete_user(user_id),
            self.patterns.delete_user(user_id),
        )

        self.scorer.forget_user(user_id)
        for key in [k for k in self._states if k[0] == user_id]:
            del self._states[key]

        counts = {
            Tier.HOT_CACHE: cache,
            Tier.FACT_STORE: facts,
            Tier.ARCHIVE: archive,
            Tier.PATTERN_STORE: patterns,
        }
        logger.info(f"Deleted user {user_id}: " + ", ".join(f"{t.value}={n}" for t, n in counts.items()))
        return counts

    async def list_patterns(self, user_id: str) -> list[Pattern]:
        validate_identifier(user_id, "user_id")
        return await self.patterns.list_for_user(user_id)

    async def maintain(self, user_id: str) -> MaintenanceReport:
        """Prune stale facts and consolidate patterns for one user."""
        validate_identifier(user_id, "user_id")
        pruned, merged = await asyncio.gather(
            self.facts.prune(user_id),
            self.patterns.consolidate(user_id),
        )
        return MaintenanceReport(user_id=user_id, facts_pruned=pruned, patterns_merged=merged)

    async def _maintain_all(self) -> None:
        users = set(await self.facts.users()) | set(await self.patterns.users())
        for user_id in sorted(users):
            report = await self.maintain(user_id)
            logger.debug(
                f"Maintenance for {user_id}: {report.facts_pruned} facts pruned, "
                f"{report.patterns_merged} patterns merged"
            )
        logger.info(f"Maintenance pass finished for {len(users)} users")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Schedule periodic hot cache sweeps and maintenance, then start the scheduler."""
        self.scheduler.add_job(
            "hot_cache_sweep",
            "Hot cache sweep",
            self.hot_cache.sweep,
            interval=timedelta(seconds=max(self.settings.hot_cache_sweep_seconds, 1.0)),
            priority=JobPriority.HIGH,
        )
        interval = timedelta(hours=self.settings.maintenance_interval_hours)
        self.scheduler.add_job(
            "maintenance",
            "Fact pruning and pattern consolidation",
            self._maintain_all,
            interval=interval,
            priority=JobPriority.LOW,
            delay=interval,
            timeout=self.settings.background_timeout_seconds,
        )
        await self.scheduler.start()
        logger.info("Memory orchestrator started")

    async def drain(self) -> None:
        """Wait for all outstanding background work."""
        while any(self._background.values()):
            tasks = [t for tasks in self._background.values() for t in tasks]
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.patterns.wait_background()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.drain()
        await self.archive.close()
        logger.info("Memory orchestrator stopped")


async def build_orchestrator(
    settings: Settings | None = None,
    embedder: Embedder | None = None,
    sentiment: SentimentAnalyzer | None = None,
    classifier: QueryClassifier | None = None,
    completer: TextCompleter | None = None,
) -> MemoryOrchestrator:
    """Wire the tiers from settings.

    When `completion_model` is configured and no collaborators are passed,
    a LiteLLM-backed service fills every collaborator role.
    """
    settings = settings or Settings()

    if settings.completion_model and not any((embedder, classifier, completer)):
        from mnemo.llm.litellm_adapter import create_service

        service = create_service(settings.completion_model, settings.embedding_model or None)
        completer = classifier = service
        if settings.embedding_model:
            embedder = service

    if settings.archive_backend == "sqlite":
        archive: Archive = SQLiteArchive(settings.db_path)
        await archive.connect()
    elif settings.archive_backend == "memory":
        archive = InMemoryArchive(embedder=embedder)
    else:
        raise ValidationError(f"Unknown archive backend: {settings.archive_backend}")

    hot_cache = InMemoryHotCache(
        capacity=settings.hot_cache_capacity,
        ttl=timedelta(hours=settings.hot_cache_ttl_hours),
        max_buckets=settings.hot_cache_max_buckets,
        sweep_interval=timedelta(seconds=settings.hot_cache_sweep_seconds),
    )
    facts = InMemoryFactStore(
        embedder=embedder,
        min_access_count=settings.fact_min_access_count,
        ttl=timedelta(days=settings.fact_ttl_days),
    )
    patterns = InMemoryPatternStore(
        embedder=embedder,
        detector=PatternDetector(completer=completer, embedder=embedder),
        capacity=settings.pattern_capacity,
        consolidation_every=settings.consolidation_every,
        consolidation_timeout=settings.consolidation_timeout_seconds,
        consolidation_debounce=settings.consolidation_debounce_seconds,
        policy=settings.reinforcement_policy,
    )

    return MemoryOrchestrator(
        hot_cache=hot_cache,
        facts=facts,
        archive=archive,
        patterns=patterns,
        scorer=ImportanceScorer(sentiment or LexiconSentimentAnalyzer()),
        planner=Planner(classifier),
        extractor=EntityExtractor(completer),
        settings=settings,
    )
