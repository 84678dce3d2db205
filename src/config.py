"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "VitalSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Platform bridge ---
    source_platform: str = "health_connect"  # health_connect | apple_health
    bridge_url: str = "http://localhost:8765"
    bridge_token: str = ""

    # --- Vitals API ---
    device_id: str = "local-device"
    api_base_url: str = "http://localhost:4000"
    api_token: str = ""  # push is skipped while empty
    patient_profile_id: str = ""
    push_timeout_seconds: float = 10.0

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
