"""
Configuration management for Klaviyo Hub
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Klaviyo Hub"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./data/klaviyo_hub.db"

    # Klaviyo OAuth
    klaviyo_client_id: Optional[str] = None
    klaviyo_client_secret: str = ""
    klaviyo_redirect_uri: Optional[str] = None  # Must match the app's allowlist exactly
    klaviyo_oauth_scopes: str = "accounts:read profiles:read"
    klaviyo_api_revision: str = "2024-10-15"
    klaviyo_http_timeout: float = 30.0

    # Backfill
    backfill_page_size: int = 100
    backfill_max_pages: int = 10000  # Guard against cyclic pagination
    backfill_strategy: str = "swap"  # swap | clear_first

    # Sync Schedules
    enable_scheduler: bool = True
    sync_profiles_schedule: str = "0 */6 * * *"

    # Presentation
    dashboard_path: str = "/dashboard"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
