import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel


class Settings(BaseModel):
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 768
    llm_timeout_seconds: float = 30.0
    embed_timeout_seconds: float = 10.0
    default_timezone: str = "UTC"
    max_clock_skew_seconds: float = 300.0
    outbox_max_attempts: int = 3
    log_level: str = "INFO"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(f"WELLBUDDY_{name}")
    if value is None or not value.strip():
        return default
    return value.strip()


def load_settings() -> Settings:
    return Settings(
        llm_base_url=_env("LLM_BASE_URL", "https://api.openai.com/v1"),
        llm_api_key=_env("LLM_API_KEY"),
        llm_model=_env("LLM_MODEL", "gpt-4o-mini"),
        embedding_model=_env("EMBEDDING_MODEL", "text-embedding-3-small"),
        embedding_dimensions=int(_env("EMBEDDING_DIMENSIONS", "768")),
        llm_timeout_seconds=float(_env("LLM_TIMEOUT_SECONDS", "30")),
        embed_timeout_seconds=float(_env("EMBED_TIMEOUT_SECONDS", "10")),
        default_timezone=_env("DEFAULT_TIMEZONE", "UTC"),
        max_clock_skew_seconds=float(_env("MAX_CLOCK_SKEW_SECONDS", "300")),
        outbox_max_attempts=int(_env("OUTBOX_MAX_ATTEMPTS", "3")),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
