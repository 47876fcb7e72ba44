"""Tests for query planning."""

import pytest

from mnemo.cognition.planner import Planner
from mnemo.core.types import ConversationState, QueryIntent, Tier
from mnemo.llm.base import QueryClassifier


class LabelClassifier(QueryClassifier):
    def __init__(self, label: str):
        self.label = label
        self.calls = 0

    async def classify(self, query: str) -> str:
        self.calls += 1
        return self.label


class BrokenClassifier(QueryClassifier):
    async def classify(self, query: str) -> str:
        raise RuntimeError("classifier down")


@pytest.fixture
def state():
    return ConversationState(user_id="user-1", conversation_id="conv-1")


@pytest.mark.asyncio
async def test_continuation_uses_hot_cache_only(state):
    """'continue the story' plans the hot cache alone."""
    plan = await Planner().plan("continue the story", state)

    assert plan.intent == QueryIntent.CONTINUATION
    assert plan.tiers == frozenset({Tier.HOT_CACHE})
    assert plan.classified_by == "rules"


@pytest.mark.asyncio
async def test_deep_recall_includes_archive(state):
    """Verbatim requests reach the archive."""
    plan = await Planner().plan("quote exactly what I said about X", state)

    assert plan.intent == QueryIntent.DEEP_RECALL
    assert plan.tiers >= {Tier.HOT_CACHE, Tier.FACT_STORE, Tier.ARCHIVE}


@pytest.mark.asyncio
async def test_fact_retrieval(state):
    """Fact-seeking phrasing uses hot cache and facts."""
    plan = await Planner().plan("What's my favorite color?", state)

    assert plan.intent == QueryIntent.FACT_RETRIEVAL
    assert plan.tiers == frozenset({Tier.HOT_CACHE, Tier.FACT_STORE})


@pytest.mark.asyncio
async def test_procedural_trigger(state):
    """Task requests consult the pattern store."""
    plan = await Planner().plan("write code for a csv parser", state)

    assert plan.intent == QueryIntent.PROCEDURAL_TRIGGER
    assert plan.uses(Tier.PATTERN_STORE)
    assert not plan.uses(Tier.ARCHIVE)


def test_rule_order():
    """Continuation wins over later rules; deep recall wins over fact retrieval."""
    assert Planner.classify_rules("tell me more about what is next") == QueryIntent.CONTINUATION
    assert Planner.classify_rules("what did i say about the budget") == QueryIntent.DEEP_RECALL
    assert Planner.classify_rules("banana smoothie") is None


@pytest.mark.asyncio
async def test_no_rule_no_classifier_is_complex(state):
    """Without a classifier an unmatched query plans every tier."""
    plan = await Planner().plan("hello there", state)

    assert plan.intent == QueryIntent.COMPLEX
    assert plan.tiers == frozenset(Tier)
    assert plan.classified_by == "fallback"


@pytest.mark.asyncio
async def test_classifier_label_used(state):
    """The classifier decides when no rule fires."""
    classifier = LabelClassifier("DeepRecall")
    plan = await Planner(classifier).plan("banana smoothie recipe", state)

    assert plan.intent == QueryIntent.DEEP_RECALL
    assert plan.classified_by == "classifier"
    assert classifier.calls == 1


@pytest.mark.asyncio
async def test_classifier_not_called_when_rule_fires(state):
    """Rule-stage plans never touch the classifier."""
    classifier = LabelClassifier("DeepRecall")
    plan = await Planner(classifier).plan("go on", state)

    assert plan.intent == QueryIntent.CONTINUATION
    assert classifier.calls == 0


@pytest.mark.asyncio
async def test_unknown_label_is_complex(state):
    """An unknown classifier label falls back to Complex."""
    plan = await Planner(LabelClassifier("Gibberish")).plan("banana smoothie recipe", state)

    assert plan.intent == QueryIntent.COMPLEX
    assert plan.classified_by == "fallback"


@pytest.mark.asyncio
async def test_classifier_failure_is_complex(state):
    """A failing classifier falls back to Complex."""
    plan = await Planner(BrokenClassifier()).plan("banana smoothie recipe", state)

    assert plan.intent == QueryIntent.COMPLEX
    assert plan.tiers == frozenset(Tier)
