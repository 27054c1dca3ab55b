from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache
from typing import Optional

from hms.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = Field(default="Hospital Management System", env="APP_NAME")
    debug: bool = Field(default=False, env="DEBUG")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./hms.db", env="DATABASE_URL")

    # JWT. The secret has no default: token operations refuse to run without it.
    jwt_secret: Optional[str] = Field(default=None, env="JWT_SECRET")
    access_token_expire_minutes: int = Field(default=1440, env="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_expire_days: int = Field(default=7, env="REFRESH_TOKEN_EXPIRE_DAYS")

    # Rate limits in `limits` notation, keyed by client address
    rate_limit_enabled: bool = Field(default=True, env="RATE_LIMIT_ENABLED")
    api_rate_limit: str = Field(default="100 per 15 minutes", env="API_RATE_LIMIT")
    auth_rate_limit: str = Field(default="5 per 15 minutes", env="AUTH_RATE_LIMIT")

    # Comma-separated in the environment, see cors_origin_list
    cors_origins: str = Field(default="http://localhost:3000", env="CORS_ORIGINS")

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def require_jwt_secret(self) -> str:
        if not self.jwt_secret:
            raise ConfigurationError("JWT_SECRET is not configured")
        return self.jwt_secret

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
