"""
Shared type definitions.

Core data structures used across modules.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from uuid import uuid4

from mnemo.core.typing import Vector


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class FactKind(Enum):
    PERSON = "person"
    PLACE = "place"
    TECHNOLOGY = "technology"
    DECISION = "decision"
    PREFERENCE = "preference"
    CONSTRAINT = "constraint"
    GOAL = "goal"
    OTHER = "other"


class TriggerKind(Enum):
    KEYWORD = "keyword"
    REGEX = "regex"
    SEMANTIC = "semantic"


class QueryIntent(Enum):
    CONTINUATION = "Continuation"
    FACT_RETRIEVAL = "FactRetrieval"
    DEEP_RECALL = "DeepRecall"
    COMPLEX = "Complex"
    PROCEDURAL_TRIGGER = "ProceduralTrigger"


class Tier(Enum):
    HOT_CACHE = "hot_cache"
    FACT_STORE = "fact_store"
    ARCHIVE = "archive"
    PATTERN_STORE = "pattern_store"


@dataclass
class TurnFlags:
    is_question: bool = False
    has_decision: bool = False
    has_code: bool = False


@dataclass
class Turn:
    """One message in a conversation."""

    id: str
    user_id: str
    conversation_id: str
    role: Role
    text: str
    created_at: datetime = field(default_factory=datetime.now)
    importance: float = 0.0  # 0-1, set once on ingestion
    flags: TurnFlags = field(default_factory=TurnFlags)
    extracted_entities: list[str] = field(default_factory=list)
    embedding: Vector | None = None

    @classmethod
    def create(
        cls,
        user_id: str,
        conversation_id: str,
        text: str,
        role: Role = Role.USER,
        created_at: datetime | None = None,
    ) -> "Turn":
        return cls(
            id=str(uuid4()),
            user_id=user_id,
            conversation_id=conversation_id,
            role=role,
            text=text,
            created_at=created_at or datetime.now(),
        )


@dataclass
class Fact:
    """Extracted fact with access tracking."""

    id: str
    user_id: str
    conversation_id: str
    key: str
    value: str
    kind: FactKind = FactKind.OTHER
    importance: float = 0.5
    embedding: Vector | None = None
    last_accessed: datetime = field(default_factory=datetime.now)
    access_count: int = 1
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def create(
        cls,
        user_id: str,
        conversation_id: str,
        key: str,
        value: str,
        kind: FactKind = FactKind.OTHER,
        importance: float = 0.5,
    ) -> "Fact":
        return cls(
            id=str(uuid4()),
            user_id=user_id,
            conversation_id=conversation_id,
            key=key,
            value=value,
            kind=kind,
            importance=min(max(importance, 0.0), 1.0),
        )

    @property
    def text(self) -> str:
        return f"{self.key}: {self.value}"

    def record_access(self, now: datetime | None = None) -> None:
        self.last_accessed = now or datetime.now()
        self.access_count += 1

    def should_evict(self, ttl: timedelta, min_access_count: int, now: datetime | None = None) -> bool:
        """Rarely used AND idle past the TTL. Fresh or frequent facts are kept."""
        age = (now or datetime.now()) - self.last_accessed
        return self.access_count < min_access_count and age > ttl


@dataclass(frozen=True)
class ReinforcementPolicy:
    """How a pattern's confidence threshold relaxes with repeated use."""

    decay_after_uses: int = 10
    decay_step: float = 0.05
    decay_ceiling: float = 0.7
    threshold_floor: float = 0.6


DEFAULT_POLICY = ReinforcementPolicy()


@dataclass
class PatternTrigger:
    kind: TriggerKind
    pattern: str
    embedding: Vector | None = None


@dataclass
class Pattern:
    """Learned trigger -> instruction association."""

    id: str
    user_id: str
    name: str
    description: str
    triggers: list[PatternTrigger]
    instruction_template: str
    confidence_threshold: float = 0.8
    usage_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    last_used: datetime = field(default_factory=datetime.now)

    @classmethod
    def create(
        cls,
        user_id: str,
        name: str,
        description: str,
        triggers: list[PatternTrigger],
        instruction_template: str,
        confidence_threshold: float = 0.8,
    ) -> "Pattern":
        return cls(
            id=str(uuid4()),
            user_id=user_id,
            name=name,
            description=description,
            triggers=list(triggers),
            instruction_template=instruction_template,
            confidence_threshold=min(max(confidence_threshold, 0.0), 1.0),
        )

    def trigger_keys(self) -> set[str]:
        return {t.pattern.lower() for t in self.triggers}

    def record_usage(
        self,
        policy: ReinforcementPolicy = DEFAULT_POLICY,
        at: datetime | None = None,
    ) -> None:
        """Count one use; past the decay point the threshold relaxes toward the floor."""
        self.usage_count += 1
        self.last_used = at or datetime.now()

        if (
            self.usage_count > policy.decay_after_uses
            and self.confidence_threshold > policy.decay_ceiling
        ):
            self.confidence_threshold = max(
                policy.threshold_floor,
                self.confidence_threshold - policy.decay_step,
            )


@dataclass(frozen=True)
class QueryPlan:
    intent: QueryIntent
    tiers: frozenset[Tier]
    classified_by: str = "rules"  # rules | classifier | fallback

    def uses(self, tier: Tier) -> bool:
        return tier in self.tiers


@dataclass
class ConversationState:
    user_id: str
    conversation_id: str
    turn_count: int = 0
    last_query_at: datetime = field(default_factory=datetime.now)


@dataclass
class MemoryContext:
    """Assembled result of a read. Never persisted."""

    plan: QueryPlan
    recent_turns: list[Turn] = field(default_factory=list)
    facts: list[Fact] = field(default_factory=list)
    archived_turns: list[Turn] = field(default_factory=list)
    applied_pattern: Pattern | None = None
    token_estimate: int = 0

    def render(self) -> str:
        """Format as a prompt block."""
        sections = []
        if self.applied_pattern:
            sections.append(f"## Procedure: {self.applied_pattern.name}\n"
                            f"{self.applied_pattern.instruction_template}")
        if self.facts:
            lines = "\n".join(f"- {f.key}: {f.value}" for f in self.facts)
            sections.append(f"## Known facts\n{lines}")
        if self.archived_turns:
            lines = "\n".join(
                f"- [{t.created_at:%Y-%m-%d %H:%M}] {t.role.value}: {t.text}"
                for t in self.archived_turns
            )
            sections.append(f"## From earlier conversations\n{lines}")
        if self.recent_turns:
            lines = "\n".join(f"{t.role.value}: {t.text}" for t in self.recent_turns)
            sections.append(f"## Recent turns\n{lines}")
        return "\n\n".join(sections)
