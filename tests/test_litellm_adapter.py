"""Tests for the LiteLLM-backed collaborators (no network)."""

from pathlib import Path
from types import SimpleNamespace

import pytest

from mnemo.core.errors import CollaboratorUnavailable
from mnemo.llm.base import LLMConfig
from mnemo.llm import litellm_adapter
from mnemo.llm.litellm_adapter import (
    DEFAULT_REGISTRY_PATH,
    LiteLLMCognitiveService,
    ModelRegistry,
    create_service,
)

REGISTRY_YAML = """
models:
  - model_id: fast
    litellm_name: openai/fast-model
    kind: completion
    auth_env: MNEMO_TEST_KEY
  - model_id: local
    litellm_name: openai/local-model
    kind: completion
  - model_id: vectors
    litellm_name: openai/vectors
    kind: embedding
"""


@pytest.fixture
def registry_path(tmp_path) -> Path:
    path = tmp_path / "models.yaml"
    path.write_text(REGISTRY_YAML)
    return path


@pytest.fixture
def registry(registry_path) -> ModelRegistry:
    return ModelRegistry(registry_path)


def fake_completion(content: str, calls: list):
    async def acompletion(**params):
        calls.append(params)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    return acompletion


def test_default_registry_loads():
    """The bundled registry has completion and embedding models."""
    registry = ModelRegistry(DEFAULT_REGISTRY_PATH)

    kinds = {m.kind for m in registry.models.values()}
    assert kinds == {"completion", "embedding"}


def test_availability_follows_environment(registry, monkeypatch):
    """Models needing credentials are only available when the env var is set."""
    monkeypatch.delenv("MNEMO_TEST_KEY", raising=False)
    assert not registry.get("fast").is_available
    assert registry.get("local").is_available

    monkeypatch.setenv("MNEMO_TEST_KEY", "secret")
    assert registry.get("fast").is_available
    assert registry.get("fast").call_params() == {"model": "openai/fast-model", "api_key": "secret"}


def test_require_checks_presence_and_kind(registry):
    """Unknown models and wrong kinds are unavailable collaborators."""
    assert registry.require("vectors", "embedding").litellm_name == "openai/vectors"

    with pytest.raises(CollaboratorUnavailable):
        registry.require("missing", "completion")
    with pytest.raises(CollaboratorUnavailable):
        registry.require("vectors", "completion")


def test_create_service_missing_registry(tmp_path):
    """A missing registry file is reported, not a crash."""
    with pytest.raises(CollaboratorUnavailable):
        create_service("local", config_path=tmp_path / "nope.yaml")


@pytest.mark.asyncio
async def test_complete_sends_system_prompt(registry, monkeypatch):
    """System prompts and sampling options reach LiteLLM."""
    calls = []
    monkeypatch.setattr(litellm_adapter, "acompletion", fake_completion("hello", calls))
    service = LiteLLMCognitiveService(registry, "local")

    result = await service.complete("hi", LLMConfig(system_prompt="be brief", max_tokens=5))

    assert result == "hello"
    assert calls[0]["model"] == "openai/local-model"
    assert calls[0]["messages"][0] == {"role": "system", "content": "be brief"}
    assert calls[0]["max_tokens"] == 5


@pytest.mark.asyncio
async def test_classify_normalizes_label(registry, monkeypatch):
    """Labels are matched case-insensitively and trailing dots dropped."""
    monkeypatch.setattr(litellm_adapter, "acompletion", fake_completion(" deeprecall.\n", []))
    service = LiteLLMCognitiveService(registry, "local")

    assert await service.classify("quote me") == "DeepRecall"


@pytest.mark.asyncio
async def test_analyze_clamps_and_rejects_garbage(registry, monkeypatch):
    """Sentiment is clamped to [-1, 1]; non-numbers are unavailable."""
    service = LiteLLMCognitiveService(registry, "local")

    monkeypatch.setattr(litellm_adapter, "acompletion", fake_completion("3.5", []))
    assert await service.analyze("great") == 1.0

    monkeypatch.setattr(litellm_adapter, "acompletion", fake_completion("very happy", []))
    with pytest.raises(CollaboratorUnavailable):
        await service.analyze("great")


@pytest.mark.asyncio
async def test_failures_become_unavailable(registry, monkeypatch):
    """Backend errors surface as CollaboratorUnavailable; health check reports False."""

    async def broken(**params):
        raise ConnectionError("no route")

    monkeypatch.setattr(litellm_adapter, "acompletion", broken)
    service = LiteLLMCognitiveService(registry, "local")

    with pytest.raises(CollaboratorUnavailable):
        await service.complete("hi")
    assert await service.health_check() is False

    with pytest.raises(CollaboratorUnavailable):
        await service.embed("no embedding model configured")


@pytest.mark.asyncio
async def test_embed(registry, monkeypatch):
    """Embeddings are returned as float lists."""

    async def aembedding(**params):
        assert params["input"] == ["text"]
        return SimpleNamespace(data=[{"embedding": [1, 0.5]}])

    monkeypatch.setattr(litellm_adapter, "aembedding", aembedding)
    service = LiteLLMCognitiveService(registry, "local", "vectors")

    assert await service.embed("text") == [1.0, 0.5]


def test_available_filters_by_kind(registry, monkeypatch):
    """Only entries with their environment in place are listed."""
    monkeypatch.delenv("MNEMO_TEST_KEY", raising=False)

    assert [m.model_id for m in registry.available("completion")] == ["local"]
    assert [m.model_id for m in registry.available("embedding")] == ["vectors"]


def test_unknown_kind_rejected(tmp_path):
    """Registry entries must be completion or embedding models."""
    path = tmp_path / "models.yaml"
    path.write_text("models:\n  - model_id: odd\n    litellm_name: x/odd\n    kind: rerank\n")

    with pytest.raises(CollaboratorUnavailable):
        ModelRegistry(path)
