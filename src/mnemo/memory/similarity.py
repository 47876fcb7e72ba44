"""Similarity helpers shared by the tiers. All pure, none suspend."""

import math
import re

from mnemo.core.typing import Vector

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "is", "are", "was", "were", "be", "it", "this", "that", "with",
    "as", "by", "from", "i", "me", "my", "you", "your", "we", "our", "do",
    "did", "what", "when", "where", "who", "how", "about", "please", "can",
    "could", "would", "should", "there", "their", "they", "them", "then",
})

_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9+#'.-]*")


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens with trailing punctuation stripped."""
    return [t.strip(".'-") for t in _TOKEN_RE.findall(text.lower()) if t.strip(".'-")]


def content_tokens(text: str) -> set[str]:
    return {t for t in tokenize(text) if t not in STOPWORDS}


def cosine_similarity(a: Vector | None, b: Vector | None) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def levenshtein_distance(s1: str, s2: str) -> int:
    if s1 == s2:
        return 0
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def string_similarity(s1: str, s2: str) -> float:
    """1 - normalized edit distance. Strings differing in length by >30% score 0."""
    max_len = max(len(s1), len(s2))
    if max_len == 0:
        return 1.0
    if abs(len(s1) - len(s2)) > max_len * 0.3:
        return 0.0
    return 1.0 - levenshtein_distance(s1, s2) / max_len


def jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def keyword_score(query: str, text: str) -> float:
    """Share of the query's content words found in text; full containment scores 1."""
    query_lower = query.lower().strip()
    if not query_lower:
        return 0.0
    if query_lower in text.lower():
        return 1.0

    wanted = content_tokens(query)
    if not wanted:
        return 0.0
    have = set(tokenize(text))
    return len(wanted & have) / len(wanted)
