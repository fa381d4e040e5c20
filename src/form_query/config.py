"""
FQL configuration
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from ``FQL_*`` environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="FQL_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    # Logging
    log_level: str = "WARNING"

    # Post-processing
    resolve_labels: bool = True

    # CLI
    data_file: Optional[Path] = None
    history_file: Path = Path.home() / ".fql_history"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance"""
    return Settings()
