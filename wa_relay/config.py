from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Credentials set here only seed the in-memory configuration;
    the dashboard can replace them at runtime via POST /api/config.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Webhook subscription handshake secret
    WEBHOOK_VERIFY_TOKEN: str = "your_verify_token_123"

    # Optional app secret; enables X-Hub-Signature-256 verification on POST /webhook
    WHATSAPP_APP_SECRET: Optional[str] = None

    # Optional initial provider credentials
    WHATSAPP_PHONE_NUMBER_ID: Optional[str] = None
    WHATSAPP_ACCESS_TOKEN: Optional[str] = None

    # Provider endpoint
    GRAPH_API_BASE_URL: str = "https://graph.facebook.com"
    GRAPH_API_VERSION: str = "v18.0"
    SEND_TIMEOUT_SECONDS: float = 15.0

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Dashboard assets, mounted at / when the directory exists
    STATIC_DIR: str = "public"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
