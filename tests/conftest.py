import pytest

from claimwatch.auth.credential_store import CredentialStore
from claimwatch.config import Settings


@pytest.fixture(autouse=True)
def _isolated_config_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("CLAIMWATCH_CONFIG_DIR", str(tmp_path / "config"))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        google_oauth_client_id="test-client",
        google_oauth_client_secret="test-secret",
        oauth_token_url="https://oauth.test/token",
        oauth_auth_url="https://accounts.test/auth",
        api_base="https://gemini.test/v1beta",
        live_url="wss://live.test/ws",
        oauth_timeout=5.0,
    )


@pytest.fixture
def store(tmp_path):
    return CredentialStore(directory=tmp_path / "secrets")
