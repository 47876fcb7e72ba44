"""
Turn annotation and fact extraction.

`annotate_turn` is synchronous and runs on every write: it sets the turn's
flags and a heuristic entity list used for novelty scoring.
`EntityExtractor` runs in the background and produces Facts, with a model
when a completer is injected and with rules otherwise.
"""

import json
import re
from dataclasses import dataclass

from mnemo.cognition.importance import has_code, has_decision_language
from mnemo.core.logging import get_logger, op_tag
from mnemo.core.types import Fact, FactKind, Turn, TurnFlags
from mnemo.llm.base import LLMConfig, TextCompleter, strip_code_fence

logger = get_logger("cognition.extraction")

EXTRACT_ENTITIES_PROMPT = """Extract key entities from this text. Return a JSON array.

Text: {text}

Format:
[
  {{
    "key": "EntityName",
    "value": "EntityValue",
    "type": "Person|Place|Technology|Decision|Preference|Constraint|Goal|Other",
    "importance": 0.0-1.0
  }}
]

Return ONLY valid JSON array, no additional text."""

EXTRACTION_SYSTEM_PROMPT = "You are an entity extraction expert. Always return valid JSON."

TECH_KEYWORDS = frozenset({
    "python", "javascript", "typescript", "rust", "go", "java", "c#", ".net",
    "sql", "sqlite", "postgres", "redis", "docker", "kubernetes", "api",
    "react", "django", "fastapi", "azure", "aws", "openai", "git",
})

_URL_RE = re.compile(r"https?://\S+")

# (regex, key, kind, importance); the first group is the value
_FACT_RULES = (
    (re.compile(r"\bmy name is ([A-Za-z][\w' -]{0,40}?)(?:[.,!?]|$)", re.I), "name", FactKind.PERSON, 0.9),
    (re.compile(r"\bi live in ([A-Za-z][\w' -]{0,40}?)(?:[.,!?]|$)", re.I), "location", FactKind.PLACE, 0.7),
    (re.compile(r"\bi prefer ([^.!?\n]{2,80})", re.I), "preference", FactKind.PREFERENCE, 0.7),
    (re.compile(r"\bi (?:decided|will) ([^.!?\n]{2,80})", re.I), "decision", FactKind.DECISION, 0.9),
    (re.compile(r"\bi want to ([^.!?\n]{2,80})", re.I), "goal", FactKind.GOAL, 0.7),
    (re.compile(r"\b(?:i can't|i cannot|we can't|must not) ([^.!?\n]{2,80})", re.I), "constraint",
     FactKind.CONSTRAINT, 0.8),
    (re.compile(r"\bmy ([a-z][a-z ]{1,30}?) is ([^.!?\n]{1,80})", re.I), None, FactKind.OTHER, 0.6),
)


def heuristic_entities(text: str) -> list[str]:
    """Capitalized names (not sentence-initial), known technologies and URLs."""
    found: dict[str, str] = {}

    words = text.split()
    for i, word in enumerate(words):
        cleaned = word.strip(".,!?;:()\"'")
        if not cleaned:
            continue
        if cleaned.lower() in TECH_KEYWORDS:
            found.setdefault(cleaned.lower(), cleaned.lower())
            continue
        sentence_start = i == 0 or words[i - 1].endswith((".", "!", "?", ":"))
        if cleaned[0].isupper() and not sentence_start and not cleaned.startswith("I'") and cleaned != "I":
            found.setdefault(cleaned.lower(), cleaned)

    for url in _URL_RE.findall(text)[:3]:
        found.setdefault(url.lower(), url)

    return list(found.values())


def annotate_turn(turn: Turn) -> Turn:
    """Set flags and heuristic entities in place. Existing entities are kept."""
    turn.flags = TurnFlags(
        is_question="?" in turn.text,
        has_decision=has_decision_language(turn.text),
        has_code=has_code(turn.text),
    )
    if not turn.extracted_entities:
        turn.extracted_entities = heuristic_entities(turn.text)
    return turn


@dataclass
class ExtractedEntity:
    key: str
    value: str
    kind: FactKind = FactKind.OTHER
    importance: float = 0.5


def _parse_kind(value: str) -> FactKind:
    try:
        return FactKind(str(value).strip().lower())
    except ValueError:
        return FactKind.OTHER


def parse_entities(content: str) -> list[ExtractedEntity]:
    data = json.loads(strip_code_fence(content))
    if not isinstance(data, list):
        raise ValueError("expected a JSON array of entities")

    entities = []
    for item in data:
        if not isinstance(item, dict):
            continue
        key = str(item.get("key", "")).strip()
        value = str(item.get("value", "")).strip()
        if not key or not value:
            continue
        entities.append(
            ExtractedEntity(
                key=key,
                value=value,
                kind=_parse_kind(item.get("type", "other")),
                importance=float(item.get("importance", 0.5)),
            )
        )
    return entities


def rule_entities(text: str) -> list[ExtractedEntity]:
    entities = []
    for regex, key, kind, importance in _FACT_RULES:
        match = regex.search(text)
        if not match:
            continue
        if key is None:
            key, value = match.group(1).strip(), match.group(2).strip()
        else:
            value = match.group(1).strip()
        entities.append(ExtractedEntity(key=key, value=value, kind=kind, importance=importance))

    for word in text.split():
        cleaned = word.strip(".,!?;:()\"'")
        if cleaned.lower() in TECH_KEYWORDS:
            entities.append(ExtractedEntity("technology", cleaned, FactKind.TECHNOLOGY, 0.7))

    if "```" in text:
        entities.append(ExtractedEntity("contains code", "true", FactKind.TECHNOLOGY, 0.8))

    for url in _URL_RE.findall(text)[:3]:
        entities.append(ExtractedEntity("referenced url", url, FactKind.OTHER, 0.6))

    unique: dict[tuple[str, str], ExtractedEntity] = {}
    for entity in entities:
        unique.setdefault((entity.key.lower(), entity.value.lower()), entity)
    return list(unique.values())


class EntityExtractor:
    """Turns a message into Facts. Never raises for collaborator failures."""

    def __init__(self, completer: TextCompleter | None = None):
        self.completer = completer

    async def extract_facts(self, turn: Turn) -> list[Fact]:
        entities: list[ExtractedEntity] | None = None

        if self.completer is not None:
            try:
                content = await self.completer.complete(
                    EXTRACT_ENTITIES_PROMPT.format(text=turn.text),
                    LLMConfig(max_tokens=1000, temperature=0.1, system_prompt=EXTRACTION_SYSTEM_PROMPT),
                )
                entities = parse_entities(content)
            except Exception as e:
                logger.warning(f"{op_tag(turn.user_id, 'extract')} AI extraction failed, using rules: {e}")

        if entities is None:
            entities = rule_entities(turn.text)

        facts = [
            Fact.create(
                user_id=turn.user_id,
                conversation_id=turn.conversation_id,
                key=e.key,
                value=e.value,
                kind=e.kind,
                importance=e.importance,
            )
            for e in entities
        ]
        logger.debug(f"Extracted {len(facts)} facts from turn {turn.id}")
        return facts
