"""
Query planning - decides which tiers answer a query.

Two stages: a deterministic rule table, then the injected classifier.
Anything the classifier cannot settle becomes a Complex plan over all tiers.
"""

from mnemo.core.errors import validate_query
from mnemo.core.logging import get_logger
from mnemo.core.types import ConversationState, QueryIntent, QueryPlan, Tier
from mnemo.llm.base import QueryClassifier

logger = get_logger("cognition.planner")

CONTINUATION_PREFIXES = ("continue", "go on", "and then", "next", "keep going", "tell me more")

DEEP_RECALL_PHRASES = (
    "quote", "exactly", "verbatim", "word for word", "precise",
    "show me the exact", "what did i say about", "find the conversation",
)

PROCEDURAL_PHRASES = ("write code", "implement", "show me how", "generate", "format as", "structure as")

FACT_PHRASES = (
    "what was", "what is", "who is", "when did", "where",
    "how many", "tell me about", "remind me", "what's my",
)

TIERS_BY_INTENT: dict[QueryIntent, frozenset[Tier]] = {
    QueryIntent.CONTINUATION: frozenset({Tier.HOT_CACHE}),
    QueryIntent.FACT_RETRIEVAL: frozenset({Tier.HOT_CACHE, Tier.FACT_STORE}),
    QueryIntent.DEEP_RECALL: frozenset({Tier.HOT_CACHE, Tier.FACT_STORE, Tier.ARCHIVE}),
    QueryIntent.PROCEDURAL_TRIGGER: frozenset({Tier.HOT_CACHE, Tier.PATTERN_STORE}),
    QueryIntent.COMPLEX: frozenset(Tier),
}


class Planner:
    def __init__(self, classifier: QueryClassifier | None = None):
        self.classifier = classifier

    @staticmethod
    def classify_rules(query: str) -> QueryIntent | None:
        """Rule stage only. Returns None when no rule fires."""
        q = query.lower().strip()

        if q.startswith(CONTINUATION_PREFIXES):
            return QueryIntent.CONTINUATION
        if any(p in q for p in DEEP_RECALL_PHRASES):
            return QueryIntent.DEEP_RECALL
        if any(p in q for p in PROCEDURAL_PHRASES):
            return QueryIntent.PROCEDURAL_TRIGGER
        if any(p in q for p in FACT_PHRASES):
            return QueryIntent.FACT_RETRIEVAL
        return None

    async def plan(self, query: str, state: ConversationState | None = None) -> QueryPlan:
        validate_query(query)

        intent = self.classify_rules(query)
        classified_by = "rules"
        if intent is None:
            intent, classified_by = await self._classify(query)

        plan = QueryPlan(intent=intent, tiers=TIERS_BY_INTENT[intent], classified_by=classified_by)
        if state is not None:
            logger.debug(
                f"Planned {intent.value} via {classified_by} for "
                f"{state.user_id}/{state.conversation_id} (turn {state.turn_count})"
            )
        return plan

    async def _classify(self, query: str) -> tuple[QueryIntent, str]:
        if self.classifier is None:
            return QueryIntent.COMPLEX, "fallback"

        try:
            label = (await self.classifier.classify(query)).strip()
        except Exception as e:
            logger.warning(f"[op=plan] classifier unavailable, planning Complex: {e}")
            return QueryIntent.COMPLEX, "fallback"

        for intent in QueryIntent:
            if label.lower() in (intent.value.lower(), intent.name.lower()):
                return intent, "classifier"

        logger.debug(f"Classifier returned unknown label {label!r}, planning Complex")
        return QueryIntent.COMPLEX, "fallback"
