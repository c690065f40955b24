from typing import Literal, Optional
from pathlib import Path
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    ENV: Literal["development", "staging", "production"] = Field("development")
    PORT: int = Field(8000)

    # Remote store (checked on first use, not at startup)
    DATABASE_URL: Optional[str] = None
    HOSPITALS_TABLE: str = Field(default="hospitals")
    COLD_EMAILS_TABLE: str = Field(default="cold_emails")
    CREATE_TABLES_ON_STARTUP: bool = Field(default=True)

    # Realtime change channel (optional, falls back to in-process hooks)
    REDIS_URL: Optional[str] = None
    REALTIME_CHANNEL_PREFIX: str = Field(default="realtime")

    # Dashboard
    TOAST_TTL_SECONDS: float = Field(default=3.4)
    EXPORT_TIMEZONE: str = Field(default="UTC")
    SESSION_IDLE_SECONDS: float = Field(default=1800)  # 0 disables the idle sweep

    @field_validator('DATABASE_URL', mode='after')
    @classmethod
    def normalize_database_url(cls, v):
        """Hosted Postgres providers hand out postgres:// URLs, SQLAlchemy wants postgresql://"""
        if v and v.startswith("postgres://"):
            return "postgresql://" + v[len("postgres://"):]
        return v or None

try:
    settings = Settings()
except ValidationError as e:
    print("❌ Env validation failed:\n", e.json(indent=2))
    raise
