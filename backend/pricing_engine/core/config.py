"""Application configuration via pydantic settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed engine configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "Condition Pricing Engine"

    database_url: str = Field(..., alias="DATABASE_URL")

    formula_max_length: int = Field(256, ge=1, alias="FORMULA_MAX_LENGTH")
    formula_max_depth: int = Field(32, ge=1, alias="FORMULA_MAX_DEPTH")

    record_simulations: bool = Field(default=True, alias="RECORD_SIMULATIONS")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]
