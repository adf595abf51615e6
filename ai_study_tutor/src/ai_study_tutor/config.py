"""
Runtime Configuration

Reads settings from the environment (and a local .env file) once at process
start. The resulting Settings object is passed explicitly to everything that
needs it.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass
class Settings:
    """Service settings."""
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = 15.0
    cache_ttl_minutes: int = 60
    questions_per_test: int = 6
    max_tokens: int = 1024
    temperature: float = 0.7
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"

    def require_api_key(self) -> str:
        """Return the API key or refuse to continue without one."""
        if not self.openai_api_key:
            raise ValueError("OPENAI_API_KEY not found in environment variables")
        return self.openai_api_key


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ [Config] Invalid integer for {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ [Config] Invalid number for {name}={raw!r}, using {default}")
        return default


def _env_log_level(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    level = raw.strip().upper()
    if level not in LOG_LEVELS:
        logger.warning(f"⚠️ [Config] Invalid log level for {name}={raw!r}, using {default}")
        return default
    return level


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        env_file: Optional explicit .env path (defaults to python-dotenv's lookup)

    Returns:
        Settings instance
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    origins_raw = os.getenv("CORS_ORIGINS", "")
    origins = [o.strip() for o in origins_raw.split(",") if o.strip()] or list(DEFAULT_CORS_ORIGINS)

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        ai_timeout_seconds=_env_float("AI_TIMEOUT_SECONDS", 15.0),
        cache_ttl_minutes=_env_int("AI_CACHE_TTL_MINUTES", 60),
        questions_per_test=_env_int("QUESTIONS_PER_TEST", 6),
        max_tokens=_env_int("AI_MAX_TOKENS", 1024),
        temperature=_env_float("AI_TEMPERATURE", 0.7),
        cors_origins=origins,
        log_level=_env_log_level("LOG_LEVEL", "INFO"),
    )
