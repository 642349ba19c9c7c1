from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = "local"
    api_prefix: str = "/api"
    log_level: str = "INFO"

    # Security
    secret_key: str = "changeme"  # override in .env
    access_token_expire_minutes: int = 480

    # Database
    database_url: str

    # Redis
    redis_url: str | None = None
    report_cache_ttl_seconds: int = 60

    # CORS (comma separated)
    cors_origins: str = "http://localhost:5173"

    # Compliance policy thresholds (percent)
    compliance_warning_threshold: float = 120.0
    compliance_error_threshold: float = 200.0

    # Audit
    audit_export_limit: int = 10000

    # Bootstrap admin (scripts/setup_platform.py)
    admin_username: str | None = None
    admin_password: str | None = None
    admin_email: str | None = None

    # Pydantic v2 style config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance so the .env is parsed once.
    """
    return Settings()
