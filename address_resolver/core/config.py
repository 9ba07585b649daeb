"""Application configuration."""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Address resolver settings.

    Environment variables will be loaded and validated using Pydantic.
    """

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # Geocoding service configuration document (JSON)
    GEOCODING_CONFIG_PATH: str | None = None

    # Transport Settings
    GEOCODING_TIMEOUT: int = Field(default=10, gt=0)
    GEOCODING_RATE_LIMIT: float = Field(default=0.5, ge=0)
    GEOCODING_MAX_RETRIES: int = Field(default=3, ge=0)
    ARCGIS_API_KEY: str | None = None

    # Reverse geocoding
    REVERSE_GEOCODE_WORKERS: int = Field(default=4, ge=1)

    # Redis cache Settings
    REDIS_URL: str | None = None
    GEOCODING_CACHE_TTL: int = Field(default=2592000, ge=0)  # 30 days

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",  # Allow extra fields in environment
    )

    @model_validator(mode="after")
    def normalize_log_level(self) -> "Settings":
        """Upper-case the log level so lookups are uniform."""
        self.LOG_LEVEL = self.LOG_LEVEL.upper()
        return self


# Create settings instance
settings = Settings()
