from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import orjson
            out = orjson.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except Exception:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # Record store: "memory" | "local" | "redis"
    store_backend: str = Field(default="memory", alias="STORE_BACKEND")
    store_local_path: str = Field(default="./data", alias="STORE_LOCAL_PATH")
    store_key_prefix: str = Field(default="credox:", alias="STORE_KEY_PREFIX")

    # Redis (shared store across processes)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Backups and integrity monitoring
    backup_interval_seconds: float = Field(default=30.0, alias="BACKUP_INTERVAL_SECONDS")
    monitoring_enabled: bool = Field(default=True, alias="MONITORING_ENABLED")
    monitor_interval_seconds: float = Field(default=10.0, alias="MONITOR_INTERVAL_SECONDS")
    monitor_startup_delay_seconds: float = Field(default=1.0, alias="MONITOR_STARTUP_DELAY_SECONDS")
    change_check_delay_seconds: float = Field(default=1.0, alias="CHANGE_CHECK_DELAY_SECONDS")
    max_recovery_attempts: int = Field(default=5, alias="MAX_RECOVERY_ATTEMPTS")

    # Admin account seeded on startup when a password is configured
    admin_email: str = Field(default="admin@credox.com", alias="ADMIN_EMAIL")
    admin_password: str = Field(default="", alias="ADMIN_PASSWORD")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))


@lru_cache
def get_settings() -> Settings:
    return Settings()
