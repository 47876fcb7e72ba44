"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: MNEMO_
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mnemo.core.types import ReinforcementPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MNEMO_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="mnemo.db", description="SQLite database name")
    archive_backend: str = Field(default="memory", description="Archive backend: memory | sqlite")

    # Tier 4: hot cache
    hot_cache_capacity: int = Field(default=10, ge=1, description="Turns kept per conversation")
    hot_cache_ttl_hours: float = Field(default=24.0, gt=0, description="Bucket TTL since last touch")
    hot_cache_max_buckets: int = Field(default=10_000, ge=1, description="Global bucket cap (LRU)")
    hot_cache_sweep_seconds: float = Field(default=300.0, ge=0, description="Min seconds between sweeps")

    # Tier 3: facts
    fact_min_access_count: int = Field(default=2, ge=1, description="Facts accessed less are prunable")
    fact_ttl_days: float = Field(default=30.0, gt=0, description="Idle days before a fact is prunable")
    fact_search_limit: int = Field(default=20, ge=1, description="Facts returned per read")

    # Tier 2: archive
    archive_search_limit: int = Field(default=5, ge=1, description="Archived turns returned per read")

    # Tier 1: patterns
    pattern_capacity: int = Field(default=100, ge=1, description="Max patterns per user")
    consolidation_every: int = Field(default=10, ge=1, description="Consolidate every N matches")
    consolidation_timeout_seconds: float = Field(default=120.0, gt=0)
    consolidation_debounce_seconds: float = Field(default=0.1, ge=0)
    threshold_decay_after_uses: int = Field(default=10, ge=0)
    threshold_decay_step: float = Field(default=0.05, ge=0, le=1)
    threshold_decay_ceiling: float = Field(default=0.7, ge=0, le=1)
    threshold_floor: float = Field(default=0.6, ge=0, le=1)

    # Background work
    background_timeout_seconds: float = Field(default=300.0, gt=0, description="Enrichment timeout")
    maintenance_interval_hours: float = Field(default=24.0, gt=0)

    # Collaborators (optional, via LiteLLM)
    completion_model: str = Field(default="", description="Model id from models.yaml for completions")
    embedding_model: str = Field(default="", description="Model id from models.yaml for embeddings")

    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @property
    def reinforcement_policy(self) -> ReinforcementPolicy:
        return ReinforcementPolicy(
            decay_after_uses=self.threshold_decay_after_uses,
            decay_step=self.threshold_decay_step,
            decay_ceiling=self.threshold_decay_ceiling,
            threshold_floor=self.threshold_floor,
        )


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
