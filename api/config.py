# =============================================================================
# config.py — Application configuration
#
# All tunable settings are defined here using Pydantic's BaseSettings, so every
# value can be overridden via environment variable (or a local .env file)
# without touching code.
#
# Business thresholds that end up stored on records (the approval gate) live
# here too. Changing them only affects records written after the change.
# =============================================================================

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    # ── Server ────────────────────────────────────────────────────────────────
    port: int = 8000
    host: str = "0.0.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # ── Opportunities ─────────────────────────────────────────────────────────
    # Deals strictly above this value (local currency units) need sign-off.
    approval_threshold: int = 50_000_000
    closing_soon_days: int = 30

    # ── Search & filtering ────────────────────────────────────────────────────
    search_min_chars: int = 2
    search_debounce_ms: int = 300

    # ── Lists ─────────────────────────────────────────────────────────────────
    top_entities_limit: int = 10
    recent_interactions_limit: int = 10
    default_page_size: int = 20
    max_page_size: int = 100

    # ── CORS: origins allowed to call this API ─────────────────────────────────
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # ── API metadata ──────────────────────────────────────────────────────────
    api_title: str = "CRM Scoring & Aggregation API"
    api_version: str = "1.0.0"
    api_description: str = (
        "Entity scoring, pipeline statistics and list filtering for the "
        "professional-services CRM."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CRM_",
    )


# Module-level singleton, imported everywhere
settings = Settings()
