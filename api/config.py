"""StroyManager API configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"  # Ignore extra fields from .env
    )

    DB_PATH: str = "db/stroymanager.db"
    TZ: str = "Europe/Moscow"
    COMPANY_NAME: str = "СтройМенеджер"
    CORS_ORIGINS: str = "http://localhost:5173"

    # Auth
    JWT_SECRET_KEY: str = "CHANGE_THIS_IN_PRODUCTION_12345678901234567890"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 12
    INTERNAL_ADMIN_SECRET: str | None = None
    TOTP_ISSUER: str = "StroyManager"
    BACKUP_CODE_COUNT: int = 10

    # AI providers: keys follow the <PROVIDER_TYPE>_API_KEY convention
    OPENAI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None
    DEEPSEEK_API_KEY: str | None = None
    GOOGLE_API_KEY: str | None = None
    AZURE_API_KEY: str | None = None
    LLM_TIMEOUT_S: float = 60.0
    CHAT_PREVIEW_CHARS: int = 300

    # Telegram
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_CHAT_ID: str | None = None
    TELEGRAM_WEBHOOK_SECRET: str | None = None

    def provider_api_key(self, provider_type: str) -> str | None:
        """Look up the API key for a provider type (openai → OPENAI_API_KEY)."""
        return getattr(self, f"{provider_type.upper()}_API_KEY", None)


settings = Settings()
