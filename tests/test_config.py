# Tests for config.py and logging_setup.py

import logging

import pytest
from pydantic import ValidationError
from rich.logging import RichHandler

from claimwatch.config import Settings, get_config_dir, get_settings
from claimwatch.logging_setup import setup_logging


class TestSettings:
    def test_defaults(self, monkeypatch):
        for var in ("CLAIMWATCH_GOOGLE_API_KEY", "CLAIMWATCH_AUTH_MODE"):
            monkeypatch.delenv(var, raising=False)
        s = Settings(_env_file=None)
        assert s.auth_mode == "auto"
        assert s.token_refresh_margin == 300.0
        assert s.primary_model == "gemini-3-flash-preview"
        assert s.fallback_model == "gemini-2.5-flash"
        assert s.fallback_attempts == 3
        assert s.retry_delay == 0.0
        assert s.max_sources == 5
        assert s.audio_mime_type == "audio/pcm;rate=16000"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("CLAIMWATCH_GOOGLE_API_KEY", "env-key")
        monkeypatch.setenv("CLAIMWATCH_GOOGLE_API_KEYS", '["k2", "env-key"]')
        monkeypatch.setenv("CLAIMWATCH_AUTH_MODE", "API_KEY")
        s = Settings(_env_file=None)
        assert s.auth_mode == "api_key"
        assert s.api_key_pool == ["env-key", "k2"]

    def test_invalid_auth_mode(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, auth_mode="password")

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


def test_config_dir_override(tmp_path):
    # the autouse fixture points CLAIMWATCH_CONFIG_DIR at tmp_path / "config"
    assert get_config_dir() == tmp_path / "config"
    assert (tmp_path / "config").is_dir()


def test_setup_logging_replaces_handler():
    root = logging.getLogger()
    before = [h for h in root.handlers if not isinstance(h, RichHandler)]
    level = root.level
    try:
        setup_logging("debug")
        setup_logging("warning")
        rich_handlers = [h for h in root.handlers if isinstance(h, RichHandler)]
        assert len(rich_handlers) == 1
        assert root.level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for h in list(root.handlers):
            if isinstance(h, RichHandler):
                root.removeHandler(h)
        root.setLevel(level)
    assert [h for h in root.handlers if not isinstance(h, RichHandler)] == before
