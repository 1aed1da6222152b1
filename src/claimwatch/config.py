# Configuration: environment-driven settings for claimwatch.
# Created: 2026-10-18

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_LIVE_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)


def get_config_dir() -> Path:
    """Get/create the config directory (``~/.claimwatch`` by default)."""
    override = os.environ.get("CLAIMWATCH_CONFIG_DIR")
    d = Path(override).expanduser() if override else Path.home() / ".claimwatch"
    d.mkdir(parents=True, exist_ok=True)
    return d


class Settings(BaseSettings):
    """claimwatch settings.

    Every field can be set through a ``CLAIMWATCH_``-prefixed environment
    variable or a local ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLAIMWATCH_",
        env_file=".env",
        extra="ignore",
    )

    # Credential selection
    auth_mode: str = Field(default="auto", description="auto | oauth | api_key")
    google_api_key: str | None = None
    google_api_keys: list[str] = Field(default_factory=list)

    # OAuth
    google_oauth_client_id: str | None = None
    google_oauth_client_secret: str | None = None
    oauth_scopes: list[str] = Field(
        default_factory=lambda: [
            "https://www.googleapis.com/auth/generative-language.retriever",
            "https://www.googleapis.com/auth/cloud-platform",
        ]
    )
    oauth_auth_url: str = GOOGLE_AUTH_URL
    oauth_token_url: str = GOOGLE_TOKEN_URL
    oauth_timeout: float = 300.0
    token_refresh_margin: float = 300.0

    # Live session
    live_url: str = GEMINI_LIVE_URL
    live_model: str = "models/gemini-2.5-flash-native-audio-preview-12-2025"
    audio_mime_type: str = "audio/pcm;rate=16000"

    # Verification
    api_base: str = GEMINI_API_BASE
    primary_model: str = "gemini-3-flash-preview"
    fallback_model: str = "gemini-2.5-flash"
    fallback_attempts: int = 3
    retry_delay: float = 0.0
    http_timeout: float = 30.0
    max_sources: int = 5

    log_level: str = "INFO"

    @field_validator("auth_mode")
    @classmethod
    def _check_auth_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in ("auto", "oauth", "api_key"):
            raise ValueError(f"auth_mode must be auto, oauth or api_key, got {v!r}")
        return v

    @property
    def api_key_pool(self) -> list[str]:
        """All configured static keys, single key first, without duplicates."""
        keys: list[str] = []
        for key in [self.google_api_key, *self.google_api_keys]:
            if key and key not in keys:
                keys.append(key)
        return keys


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings (cached; ``cache_clear()`` to reload)."""
    return Settings()
