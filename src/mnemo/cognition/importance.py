"""
Importance scoring - how much a turn is worth keeping.

Composite score:
    0.4 * base + 0.3 * emotion + 0.2 * novelty + 0.1 * recency

- base: baseline plus bonuses for questions, decision language,
  explicit importance markers, code and long text (capped at 1.0)
- emotion: |sentiment| scaled to 0-0.5
- novelty: 0.1 per first-seen entity, capped at 0.5
- recency: 1.0 within the first hour, then exp(-hours / 24)
"""

import math
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from mnemo.core.logging import get_logger, op_tag
from mnemo.core.types import Turn
from mnemo.llm.base import SentimentAnalyzer

logger = get_logger("cognition.importance")

BASE_WEIGHT = 0.4
EMOTION_WEIGHT = 0.3
NOVELTY_WEIGHT = 0.2
RECENCY_WEIGHT = 0.1

BASELINE = 0.5
QUESTION_BONUS = 0.2
DECISION_BONUS = 0.3
MARKER_BONUS = 0.5
CODE_BONUS = 0.15
LENGTH_BONUS = 0.1
LONG_TEXT = 500

DECISION_PATTERNS = (
    "i will", "let's", "we should", "i decided", "going to",
    "plan to", "commit to", "i'll", "we'll", "must",
)

IMPORTANCE_MARKERS = (
    "important", "critical", "remember", "don't forget", "note that",
    "always", "never", "from now on", "crucial", "essential",
    "key point", "take note",
)


def _phrase_regex(phrases: tuple[str, ...]) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(re.escape(p) for p in phrases) + r")\b")


_DECISION_RE = _phrase_regex(DECISION_PATTERNS)
_MARKER_RE = _phrase_regex(IMPORTANCE_MARKERS)


def has_decision_language(text: str) -> bool:
    return bool(_DECISION_RE.search(text.lower()))


def has_importance_marker(text: str) -> bool:
    return bool(_MARKER_RE.search(text.lower()))


def has_code(text: str) -> bool:
    return "```" in text or bool(re.search(r"\bcode\b", text.lower()))


@dataclass
class ImportanceSignals:
    """Inputs that do not come from the text itself. Missing means zero."""

    sentiment: float = 0.0
    new_entities: int = 0
    now: datetime | None = None


class ImportanceScorer:
    """Scores turns; `score` is pure, `assess` gathers signals first."""

    def __init__(self, sentiment: SentimentAnalyzer | None = None):
        self.sentiment = sentiment
        # user_id -> lowercased entities already seen
        self._seen_entities: defaultdict[str, set[str]] = defaultdict(set)

    @staticmethod
    def base_score(text: str) -> float:
        score = BASELINE
        if "?" in text:
            score += QUESTION_BONUS
        if has_decision_language(text):
            score += DECISION_BONUS
        if has_importance_marker(text):
            score += MARKER_BONUS
        if has_code(text):
            score += CODE_BONUS
        if len(text) > LONG_TEXT:
            score += LENGTH_BONUS
        return min(score, 1.0)

    @staticmethod
    def recency_score(created_at: datetime, now: datetime | None = None) -> float:
        age_hours = ((now or datetime.now()) - created_at).total_seconds() / 3600
        if age_hours < 1:
            return 1.0
        return math.exp(-age_hours / 24)

    def score(self, turn: Turn, signals: ImportanceSignals | None = None) -> float:
        signals = signals or ImportanceSignals()

        base = self.base_score(turn.text or "")
        emotion = min(abs(signals.sentiment), 1.0) * 0.5
        novelty = min(0.1 * max(signals.new_entities, 0), 0.5)
        recency = self.recency_score(turn.created_at, signals.now)

        total = (
            BASE_WEIGHT * base
            + EMOTION_WEIGHT * emotion
            + NOVELTY_WEIGHT * novelty
            + RECENCY_WEIGHT * recency
        )
        return max(0.0, min(1.0, total))

    async def assess(self, turn: Turn) -> float:
        """Collect sentiment and novelty for a turn, then score it."""
        sentiment = 0.0
        if self.sentiment is not None:
            try:
                sentiment = await self.sentiment.analyze(turn.text)
            except Exception as e:
                logger.warning(f"{op_tag(turn.user_id, 'score')} sentiment unavailable: {e}")

        seen = self._seen_entities[turn.user_id]
        fresh = {e.lower() for e in turn.extracted_entities} - seen
        seen.update(fresh)

        importance = self.score(turn, ImportanceSignals(sentiment=sentiment, new_entities=len(fresh)))
        logger.debug(
            f"Scored turn {turn.id}: {importance:.2f} "
            f"(sentiment {sentiment:.2f}, {len(fresh)} new entities)"
        )
        return importance

    def forget_user(self, user_id: str) -> None:
        self._seen_entities.pop(user_id, None)
