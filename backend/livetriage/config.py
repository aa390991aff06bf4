"""
LiveTriage - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and environment-specific values are loaded from environment variables.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Hierarchy (highest to lowest priority):
    1. Environment variables
    2. .env file
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: str = "development"
    app_debug: bool = True
    app_log_level: str = "INFO"
    log_json: bool = False

    # --- Server ---
    backend_host: str = "0.0.0.0"
    backend_port: int = 8000

    # --- Remote voice platform (Smallest.ai Atoms) ---
    smallest_api_key: Optional[str] = None
    atoms_agent_id: Optional[str] = None
    atoms_api_base: str = "https://atoms-api.smallest.ai/api/v1"
    http_timeout_seconds: float = 10.0

    # --- Triage Store ---
    triage_store_max_entries: int = 50
    triage_entry_ttl_seconds: int = 3600  # 0 = entries never expire by age

    # --- Client side (call controller, dashboard aggregator) ---
    triage_api_base_url: str = "http://localhost:8000"
    poll_interval_seconds: float = 2.0
    local_cache_path: Optional[str] = None
    speech_language: str = "en-US"
    transcript_window: int = 12

    # --- Security ---
    allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins into list."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.

    Use dependency injection in routes:
        settings: Settings = Depends(get_settings)
    """
    return Settings()

