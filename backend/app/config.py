from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List
import os


class Settings(BaseSettings):
    """Global app settings loaded from environment.
    - Keep defaults light for dev.
    - Override via .env or real env vars.
    """

    APP_NAME: str = "clinic_chat"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True

    MONGODB_URI: str = "mongodb://localhost:27017/clinic_chat"
    MONGODB_TIMEOUT_MS: int = 5000

    # Tokens are issued by the auth service; we only verify them.
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    # When False the socket handshake trusts the `userId` query parameter.
    SOCKET_AUTH_REQUIRED: bool = False

    # Raw CORS string from env (comma-separated); parsed via cors_origins property
    CORS_ORIGINS: str | None = None

    # Cloudflare R2 storage config
    R2_ACCOUNT_ID: str | None = None
    R2_ACCESS_KEY_ID: str | None = None
    R2_SECRET_ACCESS_KEY: str | None = None
    R2_BUCKET_NAME: str | None = None
    # Public base URL, e.g. https://cdn.example.com or https://<account>.r2.cloudflarestorage.com/<bucket>
    R2_PUBLIC_BASE: str | None = None

    # Local fallback when R2 is not configured
    MEDIA_DIR: str = "media"
    UPLOAD_MAX_BYTES: int = 20 * 1024 * 1024
    UPLOAD_RATE_LIMIT: str = "30/minute"
    RATE_LIMIT_ENABLED: bool = True

    CHAT_PAGE_SIZE: int = 50
    CHAT_MAX_PAGE_SIZE: int = 200

    LOG_DIR: str = "logs"
    # Overrides the APP_DEBUG-derived level, e.g. "WARNING"
    LOG_LEVEL: str | None = None
    LOG_TO_FILE: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def cors_origins(self) -> List[str]:
        """Return CORS origins as a list, parsing comma-separated env string."""
        raw = self.CORS_ORIGINS or os.getenv("CORS_ORIGINS", "") or ""
        return [o.strip() for o in raw.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
