"""
Application configuration settings.

Central configuration module using Pydantic BaseSettings with environment variable support.
Loads from .env file and environment variables.
"""
import json
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if it exists (python-dotenv)
env_path = Path(".env")
if env_path.exists():
    load_dotenv(dotenv_path=env_path)


EVENT_STORE_DURABLE = "durable"
EVENT_STORE_EPHEMERAL = "ephemeral"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App settings
    APP_NAME: str = "Contract Auditor"
    APP_ENV: str = Field(default="local", description="Deployment environment (local, staging, production)")
    DEBUG: bool = Field(default=False)

    # Database settings - generic connection string (highest priority)
    DATABASE_URL: Optional[str] = Field(
        default=None,
        description="Database connection URL for audit report storage",
    )

    # Hosted Postgres raw vars (PG*)
    PGUSER: Optional[str] = Field(default=None)
    PGPASSWORD: Optional[str] = Field(default=None)
    PGHOST: Optional[str] = Field(default=None)
    PGPORT: Optional[str] = Field(default=None)
    PGDATABASE: Optional[str] = Field(default=None)

    # Discrete Postgres settings
    POSTGRES_USER: Optional[str] = Field(default=None)
    POSTGRES_PASSWORD: Optional[str] = Field(default=None)
    POSTGRES_HOST: Optional[str] = Field(default=None)
    POSTGRES_PORT: str = Field(default="5432")
    POSTGRES_DB: str = Field(default="contract_auditor")

    @property
    def sqlalchemy_database_uri(self) -> str:
        """
        Build SQLAlchemy database URI with priority:
        1. DATABASE_URL (full connection string)
        2. PG* vars (hosted Postgres plugin)
        3. Discrete Postgres settings (POSTGRES_*)
        4. SQLite in the working directory
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.PGUSER and self.PGHOST and self.PGDATABASE:
            password = quote_plus(self.PGPASSWORD or "")
            port = self.PGPORT or "5432"
            return f"postgresql+psycopg2://{self.PGUSER}:{password}@{self.PGHOST}:{port}/{self.PGDATABASE}"

        if self.POSTGRES_HOST and self.POSTGRES_USER and self.POSTGRES_PASSWORD:
            password = quote_plus(self.POSTGRES_PASSWORD)
            return (
                f"postgresql+psycopg2://"
                f"{self.POSTGRES_USER}:{password}@"
                f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )

        return "sqlite:///./contract_auditor.db"

    # CORS settings
    CORS_ORIGINS: Union[str, List[str]] = Field(
        default='["http://localhost:3000", "http://localhost:8000"]',
    )

    @field_validator("CORS_ORIGINS")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from string or list."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not JSON, treat as comma-separated
                return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Event log store
    EVENT_STORE_MODE: Optional[str] = Field(
        default=None,
        description="'durable' (daily JSONL files) or 'ephemeral' (memory only). Derived from APP_ENV when unset.",
    )
    LOG_DIR: str = Field(default="./logs", description="Directory for audit/error event files and app logs")
    EVENT_BUFFER_SIZE: int = Field(default=1000, ge=1, description="Capacity of the in-memory recent-event buffer")
    LOG_RETENTION_DAYS: int = Field(default=30, ge=1, description="Daily event files older than this are archived")
    LOG_SWEEP_INTERVAL_SECONDS: int = Field(
        default=24 * 60 * 60,
        ge=0,
        description="Interval of the retention sweep timer (0 disables the timer)",
    )

    @field_validator("EVENT_STORE_MODE")
    @classmethod
    def validate_event_store_mode(cls, v):
        """Accept only the two known storage modes."""
        if v is None or v.strip() == "":
            return None
        mode = v.strip().lower()
        if mode not in (EVENT_STORE_DURABLE, EVENT_STORE_EPHEMERAL):
            raise ValueError(f"EVENT_STORE_MODE must be '{EVENT_STORE_DURABLE}' or '{EVENT_STORE_EPHEMERAL}'")
        return mode

    @property
    def event_store_mode(self) -> str:
        """
        Storage mode of the event log.

        Serverless production deployments have no persistent file system, so they
        default to the memory-only store.
        """
        if self.EVENT_STORE_MODE:
            return self.EVENT_STORE_MODE
        if self.APP_ENV.lower() == "production":
            return EVENT_STORE_EPHEMERAL
        return EVENT_STORE_DURABLE

    # Detection engine
    AUDIT_ENGINE_PROVIDER: str = Field(
        default="chaingpt",
        description="Detection engine used for audits: 'chaingpt' or 'openai'",
    )
    CHAINGPT_API_KEY: Optional[str] = Field(default=None, description="ChainGPT API key")
    CHAINGPT_API_URL: str = Field(default="https://api.chaingpt.org/chat/stream")
    CHAINGPT_MODEL: str = Field(default="smart_contract_auditor")
    OPENAI_API_KEY: Optional[str] = Field(
        default=None,
        description="OpenAI API key when AUDIT_ENGINE_PROVIDER=openai",
    )
    OPENAI_MODEL: str = Field(default="gpt-4", description="OpenAI model to use for contract analysis")
    AUDIT_TIMEOUT_SECONDS: float = Field(default=90.0, gt=0)
    MAX_CONTRACT_SIZE: int = Field(default=100_000, ge=1, description="Max contract size in characters")

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # Access
    API_KEY: Optional[str] = Field(
        default=None,
        description="Service API key expected in X-API-Key. Leave empty to disable the check.",
    )
    ALLOWED_EMAIL_DOMAIN: Optional[str] = Field(
        default=None,
        description="Email suffix (e.g. '@example.com') allowed to run audits and view logs/analytics",
    )

    def is_chaingpt_available(self) -> bool:
        """Check if a ChainGPT API key is configured and not empty."""
        return bool(self.CHAINGPT_API_KEY and self.CHAINGPT_API_KEY.strip())

    def is_openai_available(self) -> bool:
        """Check if OpenAI API key is configured and not empty."""
        return (
            self.OPENAI_API_KEY is not None
            and isinstance(self.OPENAI_API_KEY, str)
            and self.OPENAI_API_KEY.strip() != ""
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
