"""
Collaborator interfaces.

The core never talks to a model directly. Everything it needs from one is
behind these four small interfaces so tests and deployments can swap in
whatever backend they have (or none at all).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from mnemo.core.logging import get_logger, op_tag
from mnemo.core.typing import Vector

logger = get_logger("llm")


@dataclass
class LLMConfig:
    """Configuration for a completion call."""

    max_tokens: int = 1000
    temperature: float = 0.3
    system_prompt: str | None = None


class Embedder(ABC):
    """Text -> vector."""

    @abstractmethod
    async def embed(self, text: str) -> Vector:
        ...


class SentimentAnalyzer(ABC):
    """Text -> sentiment score in [-1, 1]."""

    @abstractmethod
    async def analyze(self, text: str) -> float:
        ...


class QueryClassifier(ABC):
    """Query -> intent label (one of the QueryIntent values)."""

    @abstractmethod
    async def classify(self, query: str) -> str:
        ...


class TextCompleter(ABC):
    """Prompt -> completion text."""

    @abstractmethod
    async def complete(self, prompt: str, config: LLMConfig | None = None) -> str:
        ...

    async def health_check(self) -> bool:
        """Check if the backend answers. Defaults to True for local implementations."""
        return True


def strip_code_fence(content: str) -> str:
    """Drop a ```json fence around a model answer, if present."""
    content = content.strip()
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]
    return content.strip()


async def embed_or_none(
    embedder: Embedder | None, text: str, user_id: str, operation: str
) -> Vector | None:
    """Embed text; None when there is no embedder or it fails (callers fall back to keywords)."""
    if embedder is None:
        return None
    try:
        return await embedder.embed(text)
    except Exception as e:
        logger.warning(f"{op_tag(user_id, operation)} embedding unavailable, using keywords: {e}")
        return None
