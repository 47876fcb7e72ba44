"""Pattern detection - turns user instructions into candidate patterns."""

import json
import re
from dataclasses import dataclass

from mnemo.core.logging import get_logger, op_tag
from mnemo.core.types import Pattern, PatternTrigger, TriggerKind, Turn
from mnemo.llm.base import Embedder, LLMConfig, TextCompleter, embed_or_none, strip_code_fence
from mnemo.memory.similarity import STOPWORDS, tokenize

logger = get_logger("memory.detection")

DETECT_PATTERNS_PROMPT = """Analyze this message for procedural instructions or patterns that should be remembered for future interactions.

Message: {message}

Identify any:
1. Explicit preferences ("I prefer...", "Always...", "Never...")
2. Workflow patterns ("When X, then Y...")
3. Format preferences ("Format code as...", "Structure as...")
4. Decision rules ("If X, do Y...")
5. Constraints ("Don't include...", "Make sure to...")

Return a JSON array of patterns found:
[
  {{
    "name": "Brief pattern name",
    "description": "What this pattern does",
    "instructionTemplate": "How to apply this pattern",
    "triggerKeywords": ["keyword1", "keyword2"],
    "confidence": 0.0-1.0
  }}
]

Return ONLY valid JSON array. If no patterns found, return empty array []."""

# Marker -> pattern label, checked in order
PROCEDURAL_MARKERS = (
    ("from now on", "Future Instruction"),
    ("remember to", "Reminder Instruction"),
    ("make sure to", "Ensure Instruction"),
    ("i prefer", "User Preference"),
    ("always", "Always Instruction"),
    ("never", "Never Instruction"),
    ("format", "Format Preference"),
)

_MARKER_WORDS = {w for marker, _ in PROCEDURAL_MARKERS for w in marker.split()}

MIN_AI_CONFIDENCE = 0.6
RULE_THRESHOLD = 0.7
MIN_KEYWORD_LENGTH = 5


@dataclass
class PatternCandidate:
    name: str
    description: str
    instruction_template: str
    trigger_keywords: list[str]
    confidence: float = 0.7


def parse_candidates(content: str) -> list[PatternCandidate]:
    """Parse the model's JSON answer. Raises ValueError on malformed output."""
    data = json.loads(strip_code_fence(content))
    if not isinstance(data, list):
        raise ValueError("expected a JSON array of patterns")

    candidates = []
    for item in data:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name", "")).strip()
        template = str(item.get("instructionTemplate", "")).strip()
        if not name or not template:
            continue
        keywords = [str(k).strip().lower() for k in item.get("triggerKeywords") or [] if str(k).strip()]
        candidates.append(
            PatternCandidate(
                name=name,
                description=str(item.get("description", "")).strip() or template,
                instruction_template=template,
                trigger_keywords=keywords,
                confidence=float(item.get("confidence", 0.7)),
            )
        )
    return candidates


def extract_keyword(text: str) -> str | None:
    """First sufficiently long token that is neither a stopword nor a marker word."""
    for token in tokenize(text):
        if len(token) >= MIN_KEYWORD_LENGTH and token not in STOPWORDS and token not in _MARKER_WORDS:
            return token
    return None


def extract_key_phrase(text: str, marker: str) -> str:
    lower = text.lower()
    index = lower.find(marker)
    if index == -1:
        return "pattern"

    phrase = lower[index:index + 50].strip()
    sentence_end = re.search(r"[.!?]", phrase)
    if sentence_end and sentence_end.start() > 0:
        phrase = phrase[: sentence_end.start()]
    return phrase[:30] + "..." if len(phrase) > 30 else phrase


class PatternDetector:
    """Detects procedural patterns in a turn.

    With a completer, asks the model for structured candidates; without one,
    or when anything about that path fails, falls back to marker rules.
    `detect` never raises.
    """

    def __init__(self, completer: TextCompleter | None = None, embedder: Embedder | None = None):
        self.completer = completer
        self.embedder = embedder

    async def detect(self, user_id: str, turn: Turn) -> list[Pattern]:
        if self.completer is not None:
            try:
                patterns = await self._detect_with_ai(user_id, turn)
                logger.info(f"Detected {len(patterns)} patterns using AI")
                return patterns
            except Exception as e:
                logger.warning(f"{op_tag(user_id, 'detect')} AI pattern detection failed, using rules: {e}")

        try:
            return self._detect_with_rules(user_id, turn)
        except Exception as e:
            logger.warning(f"{op_tag(user_id, 'detect')} rule-based detection failed: {e}")
            return []

    async def _detect_with_ai(self, user_id: str, turn: Turn) -> list[Pattern]:
        content = await self.completer.complete(
            DETECT_PATTERNS_PROMPT.format(message=turn.text),
            LLMConfig(max_tokens=1000, temperature=0.2),
        )
        candidates = parse_candidates(content)

        patterns = []
        for candidate in candidates:
            if candidate.confidence < MIN_AI_CONFIDENCE:
                logger.debug(f"Discarded low-confidence candidate: {candidate.name}")
                continue

            triggers = [
                PatternTrigger(kind=TriggerKind.KEYWORD, pattern=k)
                for k in dict.fromkeys(candidate.trigger_keywords)
            ]
            embedding = await embed_or_none(self.embedder, candidate.instruction_template, user_id, "detect")
            triggers.append(
                PatternTrigger(kind=TriggerKind.SEMANTIC, pattern=candidate.description, embedding=embedding)
            )

            patterns.append(
                Pattern.create(
                    user_id=user_id,
                    name=candidate.name,
                    description=candidate.description,
                    triggers=triggers,
                    instruction_template=candidate.instruction_template,
                    confidence_threshold=candidate.confidence,
                )
            )
        return patterns

    def _detect_with_rules(self, user_id: str, turn: Turn) -> list[Pattern]:
        lower = turn.text.lower()
        for marker, label in PROCEDURAL_MARKERS:
            if not re.search(rf"\b{re.escape(marker)}\b", lower):
                continue

            keyword = extract_keyword(turn.text)
            if keyword is None:
                logger.debug(f"Marker '{marker}' found but no usable keyword in turn {turn.id}")
                return []

            pattern = Pattern.create(
                user_id=user_id,
                name=f"{label}: {extract_key_phrase(turn.text, marker)}",
                description=turn.text,
                triggers=[PatternTrigger(kind=TriggerKind.KEYWORD, pattern=keyword)],
                instruction_template=turn.text,
                confidence_threshold=RULE_THRESHOLD,
            )
            logger.debug(f"Detected rule-based pattern: {pattern.name}")
            return [pattern]

        return []
