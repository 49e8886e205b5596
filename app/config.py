from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Company/user backend settings
    BACKEND_BASE_URL: str = "http://localhost:3000"
    BACKEND_TIMEOUT_SECONDS: float = 15.0
    BACKEND_QUERY_PATH: str = "/api/query"
    BACKEND_EMAIL: str | None = None
    BACKEND_PASSWORD: str | None = None
    # JSON list of {"email": ..., "password": ...} objects; malformed JSON fails startup
    BACKEND_FALLBACK_CREDENTIALS: list[dict[str, str]] = []
    BACKEND_DEV_TOKEN: str | None = None

    # Assistant service settings
    OPENAI_API_KEY: str | None = None
    ASSISTANT_API_BASE_URL: str = "https://api.openai.com/v1"
    ASSISTANT_TIMEOUT_SECONDS: float = 30.0
    ASSISTANT_POLL_MAX_ATTEMPTS: int = 7
    ASSISTANT_POLL_BASE_DELAY: float = 0.5
    ASSISTANT_POLL_GROWTH: float = 1.5
    ASSISTANT_POLL_CAP_DELAY: float = 5.0

    # Cache settings
    CACHE_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str | None = None
    USER_CACHE_TTL_SECONDS: int = 1800  # 30 minutes
    ENDPOINT_CACHE_TTL_SECONDS: int = 3600  # 1 hour
    TOKEN_CACHE_TTL_SECONDS: int = 3600  # 1 hour
    INSIGHT_CACHE_TTL_SECONDS: int = 1800  # 30 minutes

    # Add-on identity token verification
    ADDON_JWKS_URL: str = "https://www.googleapis.com/oauth2/v3/certs"
    ADDON_AUDIENCE: str | None = None
    ADDON_ISSUER: str = "https://accounts.google.com"

    # Access policy
    ACCESS_ENFORCE_COMPANY_STATUS: bool = True

    # Presentation
    SUPPORT_EMAIL: str = "support@voxerion.com"
    PRODUCT_URL: str = "https://voxerion.com"
    INSIGHT_LANGUAGE: str = "pt"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def backend_host(self) -> str | None:
        """Host part of BACKEND_BASE_URL, used for log context."""
        try:
            return urlparse(self.BACKEND_BASE_URL).hostname
        except Exception:
            return None

    def primary_credentials(self) -> dict[str, str] | None:
        if self.BACKEND_EMAIL and self.BACKEND_PASSWORD:
            return {"email": self.BACKEND_EMAIL, "password": self.BACKEND_PASSWORD}
        return None

    def get_poll_policy_config(self) -> dict:
        """Get assistant polling configuration as RetryPolicy keyword arguments."""
        return {
            "max_attempts": self.ASSISTANT_POLL_MAX_ATTEMPTS,
            "base_delay": self.ASSISTANT_POLL_BASE_DELAY,
            "growth_factor": self.ASSISTANT_POLL_GROWTH,
            "cap_delay": self.ASSISTANT_POLL_CAP_DELAY,
        }


settings = Settings()
