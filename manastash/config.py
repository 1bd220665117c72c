from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "ManaStash"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "postgresql+asyncpg://localhost:5432/manastash"

    # Empty key disables AI deck generation (503)
    anthropic_api_key: str = ""
    deck_generation_model: str = "claude-sonnet-4-20250514"

    undo_history_limit: int = 50
    # Least recently used session histories are dropped beyond this
    undo_max_sessions: int = 1000

    # Weight-adjustment suggestions
    suggestion_lift_threshold: float = 0.1
    suggestion_min_sample: int = 10
    suggestion_step: float = 0.1

    # Outcome labelling for suggestions
    overpay_threshold: float = 0.25
    sell_window_days: int = 30


settings = Settings()


# =============================================================================
# SUGGESTION CONFIDENCE BANDS
# =============================================================================

# High confidence needs both a large sample and a strong lift
HIGH_CONFIDENCE_MIN_SAMPLE = 30
HIGH_CONFIDENCE_MIN_LIFT = 0.2
