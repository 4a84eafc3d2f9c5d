"""Configuration and settings for the rebar_agentic package.

Centralizes environment-variable based configuration using Pydantic
for type safety and discoverability.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


MAX_STREAMING_DEADLINE_MS = 295_000


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Field names map onto upper-case environment variables
    (``openai_api_key`` <- ``OPENAI_API_KEY``).
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: Optional[str] = None
    openai_project: Optional[str] = None
    default_model: str = "gpt-5-mini"

    # Supabase REST + direct Postgres (bulk task claiming).
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    postgres_url: Optional[str] = None
    http_timeout: float = 20.0

    initial_credits: int = 1000
    streaming_deadline_ms: int = 280_000

    # Comma/semicolon/space separated lists; empty means unrestricted.
    access_allowlist: str = ""
    access_allowed_domains: str = ""

    # Where the bulk runner posts research requests.
    chat_api_url: Optional[str] = None
    site_url: Optional[str] = None

    enable_prompt_debug: bool = False
    enable_bulk_email: bool = False
    quick_reasoning_throttle_ms: int = Field(800, ge=0)

    @property
    def streaming_deadline_seconds(self) -> float:
        return min(self.streaming_deadline_ms, MAX_STREAMING_DEADLINE_MS) / 1000.0

    @property
    def allowlist_emails(self) -> List[str]:
        return _split_list(self.access_allowlist)

    @property
    def allowlist_domains(self) -> List[str]:
        return [d.lstrip("@") for d in _split_list(self.access_allowed_domains)]


def _split_list(raw: str) -> List[str]:
    return [part.strip().lower() for part in re.split(r"[;,\s]+", raw or "") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Using an accessor keeps imports cheap and avoids repeated parsing.
    """

    settings = Settings()
    # Propagate critical settings into process env so libraries that
    # read environment variables (OpenAI SDK, supabase_client) see them.
    import os as _os

    if settings.openai_api_key and "OPENAI_API_KEY" not in _os.environ:
        _os.environ["OPENAI_API_KEY"] = settings.openai_api_key
    if settings.supabase_url and "SUPABASE_URL" not in _os.environ:
        _os.environ["SUPABASE_URL"] = settings.supabase_url
    if settings.supabase_service_role_key and "SUPABASE_SERVICE_ROLE_KEY" not in _os.environ:
        _os.environ["SUPABASE_SERVICE_ROLE_KEY"] = settings.supabase_service_role_key
    if settings.supabase_anon_key and "SUPABASE_ANON_KEY" not in _os.environ:
        _os.environ["SUPABASE_ANON_KEY"] = settings.supabase_anon_key
    if settings.postgres_url and "POSTGRES_URL" not in _os.environ:
        _os.environ["POSTGRES_URL"] = settings.postgres_url
    return settings
