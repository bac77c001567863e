from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Values in the environment override the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./whatsapp.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # WhatsApp Cloud API - verify token for the GET handshake
    WHATSAPP_VERIFY_TOKEN: str

    # WhatsApp Cloud API - HMAC key for X-Hub-Signature-256.
    # Falls back to WHATSAPP_VERIFY_TOKEN when unset.
    WHATSAPP_APP_SECRET: str = ""

    @property
    def signing_secret(self) -> str:
        return self.WHATSAPP_APP_SECRET or self.WHATSAPP_VERIFY_TOKEN


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
