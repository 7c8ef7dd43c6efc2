# config.py
"""
Application settings.

Values come from the process environment (optionally seeded from a local
.env file). Call load_settings() once at startup and hand the result to
create_app(); nothing here is cached at module level.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

BASE_DIR = Path(__file__).resolve().parent

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Storage
    DATABASE_URL: str = f"sqlite:///{(BASE_DIR / 'assistant.db').as_posix()}"

    # Auth (tokens are HS256-signed by the identity provider with a shared secret)
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None
    PASSWORD_RESET_TTL: int = 3600

    # LLM (any OpenAI-compatible chat-completions endpoint)
    LLM_API_URL: str = "https://api.groq.com/openai/v1/chat/completions"
    LLM_API_KEY: str = ""
    LLM_MODEL: str = "llama-3.3-70b-versatile"
    LLM_TIMEOUT: int = 25

    # Google People API
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_AUTH_URL: str = "https://accounts.google.com/o/oauth2/v2/auth"
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    GOOGLE_REDIRECT_URI: str = "http://localhost:5000/api/google-oauth/callback"
    GOOGLE_STATE_TTL: int = 600
    GOOGLE_PEOPLE_API_URL: str = "https://people.googleapis.com/v1"
    GOOGLE_TIMEOUT: int = 20

    # Origin the OAuth popup reports back to when the client does not send one
    FRONTEND_URL: str = "http://localhost:3000"

    SEARCH_CACHE_TTL: int = 300
    SEARCH_CACHE_MAX_SIZE: int = 200
    LOG_LEVEL: str = "INFO"

    @field_validator("JWT_SECRET")
    @classmethod
    def secret_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("JWT_SECRET must be set")
        return v

    @field_validator("JWT_AUDIENCE", mode="before")
    @classmethod
    def blank_audience_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return str(v or "INFO").upper()


def load_settings(env_file: Optional[Path] = None, **overrides) -> Settings:
    """Build Settings from the environment; keyword overrides win."""
    load_dotenv(env_file or BASE_DIR / ".env")
    values = {
        name: os.environ[name]
        for name in Settings.model_fields
        if os.environ.get(name) is not None
    }
    values.update(overrides)
    return Settings(**values)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    # Quiet noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
