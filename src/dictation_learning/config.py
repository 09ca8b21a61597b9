"""Configuration and environment loading for the dictation learning engine."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Supabase (optional - without it the engine runs offline-only)
    supabase_url: str | None = None
    supabase_key: str | None = None

    # AI provider factory as "module:callable"
    ai_provider: str | None = None

    # Local persistence
    database_path: str = "~/.dictation_learning/learning.db"

    # Local API
    host: str = "127.0.0.1"
    port: int = 8765
    debug: bool = False

    # Learning switches
    learning_enabled: bool = True
    apply_learned_patterns: bool = True

    # Pattern confidence
    learning_ema_alpha: float = 0.2
    learning_seed_confidence: float = 0.3
    learning_staleness_days: int = 30
    learning_decay_factor: float = 0.8
    learning_prune_floor: float = 0.05
    pattern_ready_min_occurrences: int = 3
    pattern_ready_confidence: float = 0.6

    # Decision engine
    decision_trivial_change_threshold: float = 0.1

    # Sync queue
    sync_interval_seconds: float = 30.0
    sync_base_backoff_seconds: float = 2.0
    sync_max_backoff_seconds: float = 300.0
    sync_max_attempts: int = 8
    cloud_timeout_seconds: float = 10.0

    # Pipeline stage timeouts
    transcribe_timeout_seconds: float = 60.0
    refine_timeout_seconds: float = 30.0
    output_timeout_seconds: float = 5.0

    # Finished sessions and their event history are kept this long
    session_history_ttl_seconds: float = 300.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
