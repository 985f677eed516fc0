from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_REQUEST_BODY: bool = False
    APP_VERSION: str = "0.1.0"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Cache
    CACHE_TTL: int = 300

    # Database
    DATABASE_URL: str = "sqlite:///./infra24.db"

    # Identity provider tokens (issued elsewhere, verified here)
    IDENTITY_JWT_SECRET: str = "dev-secret"
    IDENTITY_JWT_ALGORITHM: str = "HS256"
    IDENTITY_JWT_AUDIENCE: Optional[str] = None

    # Public URLs
    APP_BASE_URL: str = "http://localhost:3000"
    TENANT_ROOT_DOMAIN: str = "infra24.com"
    LEGACY_TENANT_SUFFIX: str = ".digital"

    # Email (Resend)
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com"
    RESEND_FROM_EMAIL: str = "noreply@infra24.com"
    RESEND_WEBHOOK_SECRET: str = ""
    RESEND_TIMEOUT_SECONDS: float = 10.0
    EMAIL_BATCH_SIZE: int = 10
    EMAIL_BATCH_DELAY_MS: int = 100
    EMAIL_ANALYTICS_ENABLED: bool = True

    # Surveys
    MAGIC_LINK_TTL_HOURS: int = 24
    SURVEY_INVITATION_TTL_HOURS: int = 168

    # Security headers
    SECURITY_HEADERS_ENABLED: bool = True
    CSP_POLICY: str = "default-src 'self'; img-src 'self' data: https:; style-src 'self' 'unsafe-inline'"
    HSTS_MAX_AGE: int = 31536000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Module-level settings instance (import from other modules as `from infra24.app.core.config import settings`)
settings = Settings()


def reload_settings() -> Settings:
    """Reload settings from the environment and return the new Settings instance.

    Use in tests after monkeypatch.setenv(...) to refresh the module-level `settings`.
    """
    global settings
    settings = Settings()
    return settings


