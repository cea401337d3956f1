"""
Application configuration using pydantic-settings.

Loads configuration from environment variables with sensible defaults.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PFSFILL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Templates
    template_dir: Path = Path("./pfs-templates")
    default_template_id: str = "default"
    default_template_filename: str = "CCCU.pdf"

    # Field mapping
    mapping_edition: str = "standard"
    mapping_table_path: Optional[Path] = None

    # Output
    flatten_output: bool = True
    currency_symbol: str = "$"

    # Application
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
