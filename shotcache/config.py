from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SCREENSHOT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SCREENSHOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Cache ---
    cache_dir: Path = Field(Path("./cache"), description="Directory holding cached screenshots.")
    cache_max_age: int = Field(86400, ge=0, description="Cache-Control max-age sent with images.")
    daily_sweep: bool = Field(True, description="Re-run the cache sweep at every UTC midnight.")

    # --- Request defaults ---
    default_width: int = 800
    default_height: int = 600

    # --- Capture ---
    navigation_timeout_ms: int = Field(30000, ge=1000, le=300000)
    settle_ms: int = Field(2000, ge=0, le=30000, description="Delay after navigation before capture.")
    quality: int = Field(90, ge=1, le=100, description="Quality for jpeg and webp output.")
    headless: bool = True

    # --- Logging ---
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
