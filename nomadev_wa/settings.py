from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "NOMADEV WhatsApp Webhook"
    LOG_LEVEL: str = "INFO"

    # Base de datos: DATABASE_URL tiene prioridad sobre las piezas sueltas
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_NAME: str = "nomadev"
    DB_USER: str = "root"
    DB_PASSWORD: str = ""

    CORS_ORIGINS: str = "*"

    # Webhook de WhatsApp
    WHATSAPP_VERIFY_TOKEN: str = "nomadev_webhook_token"
    WHATSAPP_APP_SECRET: str = ""  # vacío => sin verificación de firma
    DEDUPE_INBOUND: bool = True
    MAX_MESSAGE_AGE_SECONDS: int = 0  # 0 => sin límite

    # WhatsApp Cloud API
    WHATSAPP_API_BASE: str = "https://graph.facebook.com"
    WHATSAPP_API_VERSION: str = "v18.0"
    WHATSAPP_TIMEOUT_SECONDS: float = 30.0

    # Modelo de lenguaje
    LLM_PROVIDER: str = "openai"  # openai | ollama
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    OPENAI_API_KEY: str = ""
    OPENAI_LOGPROBS: bool = False
    OLLAMA_API_BASE: str = "https://ollama.com/api"
    OLLAMA_API_KEY: str = ""
    LLM_TIMEOUT_SECONDS: float = 60.0

    DEFAULT_AI_MODEL: str = "gpt-4o-mini"
    DEFAULT_AI_TEMPERATURE: float = 0.7
    DEFAULT_AI_MAX_TOKENS: int = 2000
    HISTORY_LIMIT: int = 10

    # API interna (envío manual)
    INTERNAL_API_KEY: str = ""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            f"?charset=utf8mb4"
        )

    @property
    def cors_origins(self) -> List[str]:
        origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        return origins or ["*"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
