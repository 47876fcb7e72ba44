"""LiteLLM adapter - one backend for every collaborator the core can use."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import litellm
import yaml
from litellm import acompletion, aembedding

from mnemo.core.errors import CollaboratorUnavailable
from mnemo.core.logging import get_logger
from mnemo.core.types import QueryIntent
from mnemo.core.typing import Vector
from mnemo.llm.base import (
    Embedder,
    LLMConfig,
    QueryClassifier,
    SentimentAnalyzer,
    TextCompleter,
)

logger = get_logger("llm.litellm_adapter")

# Disable LiteLLM's verbose logging
litellm.suppress_debug_info = True

DEFAULT_REGISTRY_PATH = Path(__file__).parent.parent / "configs" / "models.yaml"

CLASSIFY_PROMPT = """Classify this query to a conversational memory system.

Labels:
- Continuation: continue the current topic, recent turns are enough
- FactRetrieval: asks for a specific fact about the user or past topics
- DeepRecall: asks for exact wording or details from older conversations
- ProceduralTrigger: asks to perform a task the user may have preferences for
- Complex: anything else, or needs everything

Query: {query}

Answer with the label only."""

SENTIMENT_PROMPT = """Rate the sentiment of this text from -1.0 (very negative) to 1.0 (very positive).
Answer with the number only.

Text: {text}"""

MODEL_KINDS = ("completion", "embedding")


@dataclass(frozen=True)
class ModelConfig:
    """One registry entry. Credentials are read from the environment on use."""

    model_id: str
    litellm_name: str
    kind: str = "completion"
    auth_env: str | None = None
    base_url_env: str | None = None
    notes: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelConfig":
        kind = data.get("kind", "completion")
        if kind not in MODEL_KINDS:
            raise CollaboratorUnavailable(f"Model {data.get('model_id')} has unknown kind {kind!r}")
        return cls(
            model_id=data["model_id"],
            litellm_name=data["litellm_name"],
            kind=kind,
            auth_env=data.get("auth_env"),
            base_url_env=data.get("base_url_env"),
            notes=data.get("notes", ""),
        )

    @property
    def api_key(self) -> str | None:
        return os.getenv(self.auth_env) if self.auth_env else None

    @property
    def base_url(self) -> str | None:
        return os.getenv(self.base_url_env) if self.base_url_env else None

    @property
    def is_available(self) -> bool:
        """Every environment variable the entry names is set."""
        return all(os.getenv(var) for var in (self.auth_env, self.base_url_env) if var)

    def call_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"model": self.litellm_name}
        if self.api_key:
            params["api_key"] = self.api_key
        if self.base_url:
            params["api_base"] = self.base_url
        return params


class ModelRegistry:
    """Models from models.yaml, keyed by model_id."""

    def __init__(self, config_path: Path | str = DEFAULT_REGISTRY_PATH):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self.models = {m["model_id"]: ModelConfig.from_dict(m) for m in data.get("models", [])}
        logger.info(
            f"Loaded {len(self.models)} models from registry, "
            f"available: {', '.join(m.model_id for m in self.available()) or 'none'}"
        )

    def get(self, model_id: str) -> ModelConfig | None:
        return self.models.get(model_id)

    def available(self, kind: str | None = None) -> list[ModelConfig]:
        return [
            m for m in self.models.values()
            if m.is_available and (kind is None or m.kind == kind)
        ]

    def require(self, model_id: str, kind: str) -> ModelConfig:
        model = self.get(model_id)
        if not model:
            raise CollaboratorUnavailable(f"Model {model_id} not in registry")
        if model.kind != kind:
            raise CollaboratorUnavailable(f"Model {model_id} is a {model.kind} model, not {kind}")
        return model


class LiteLLMCognitiveService(Embedder, SentimentAnalyzer, QueryClassifier, TextCompleter):
    """All four collaborators on top of LiteLLM.

    Any failure is raised as CollaboratorUnavailable; the core decides the
    fallback.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        completion_model: str,
        embedding_model: str | None = None,
    ):
        self.registry = registry
        self.completion = registry.require(completion_model, "completion")
        self.embedding = registry.require(embedding_model, "embedding") if embedding_model else None

    async def complete(self, prompt: str, config: LLMConfig | None = None) -> str:
        config = config or LLMConfig()
        messages = []
        if config.system_prompt:
            messages.append({"role": "system", "content": config.system_prompt})
        messages.append({"role": "user", "content": prompt})

        params = self.completion.call_params()
        params.update(messages=messages, max_tokens=config.max_tokens, temperature=config.temperature)

        logger.debug(f"LiteLLM request: model={self.completion.litellm_name}, chars={len(prompt)}")
        try:
            response = await acompletion(**params)
        except Exception as e:
            logger.error(f"LiteLLM completion error for {self.completion.model_id}: {e}")
            raise CollaboratorUnavailable(f"completion failed: {e}") from e

        return response.choices[0].message.content or ""

    async def embed(self, text: str) -> Vector:
        if not self.embedding:
            raise CollaboratorUnavailable("no embedding model configured")

        params = self.embedding.call_params()
        params["input"] = [text]
        try:
            response = await aembedding(**params)
        except Exception as e:
            logger.error(f"LiteLLM embedding error for {self.embedding.model_id}: {e}")
            raise CollaboratorUnavailable(f"embedding failed: {e}") from e

        item = response.data[0]
        vector = item["embedding"] if isinstance(item, dict) else item.embedding
        return [float(x) for x in vector]

    async def classify(self, query: str) -> str:
        content = await self.complete(
            CLASSIFY_PROMPT.format(query=query),
            LLMConfig(max_tokens=10, temperature=0.0),
        )
        label = content.strip().strip(".").strip()
        for intent in QueryIntent:
            if intent.value.lower() == label.lower():
                return intent.value
        return label

    async def analyze(self, text: str) -> float:
        content = await self.complete(
            SENTIMENT_PROMPT.format(text=text),
            LLMConfig(max_tokens=8, temperature=0.0),
        )
        try:
            value = float(json.loads(content.strip()))
        except (ValueError, TypeError) as e:
            raise CollaboratorUnavailable(f"unparseable sentiment: {content!r}") from e
        return max(-1.0, min(1.0, value))

    async def health_check(self) -> bool:
        try:
            await self.complete("ping", LLMConfig(max_tokens=1, temperature=0.0))
            return True
        except CollaboratorUnavailable:
            return False


def create_service(
    completion_model: str,
    embedding_model: str | None = None,
    config_path: Path | str = DEFAULT_REGISTRY_PATH,
) -> LiteLLMCognitiveService:
    """Create LiteLLM-backed collaborators from the model registry."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise CollaboratorUnavailable(f"Model registry not found at {config_path}")

    registry = ModelRegistry(config_path)
    return LiteLLMCognitiveService(registry, completion_model, embedding_model or None)
