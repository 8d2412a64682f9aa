"""
Tests for credential loading.

Run with: pytest tests/test_credentials.py -v
"""

from unittest.mock import patch

import pytest

from credentials import load_credentials

CREDENTIAL_KEYS = [
    "LEADS_DATABASE_URL",
    "LEADS_AUTH_TOKEN",
    "APOLLO_API_KEY",
    "APOLLO_IO_API_KEY",
    "APOLLO_API_BASE_URL",
    "APOLLO_WEBHOOK_URL",
    "DEFAULT_SCHEMA",
    "APP_ENV",
    "DEV_TENANT_ID",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove credential env vars and disable .env loading."""
    for key in CREDENTIAL_KEYS:
        monkeypatch.delenv(key, raising=False)
    with patch("credentials.load_dotenv"):
        yield monkeypatch


class TestLoadCredentials:
    """Tests for load_credentials()."""

    def test_env_vars(self, clean_env, tmp_path):
        clean_env.setenv("LEADS_DATABASE_URL", "libsql://leads.turso.io")
        clean_env.setenv("APOLLO_API_KEY", "key-123")

        creds = load_credentials(secrets_path=tmp_path / "missing.toml")

        assert creds["LEADS_DATABASE_URL"] == "libsql://leads.turso.io"
        assert creds["APOLLO_API_KEY"] == "key-123"
        assert creds["DEFAULT_SCHEMA"] == "main"
        assert creds["APP_ENV"] == "development"
        assert creds["APOLLO_WEBHOOK_URL"] is None

    def test_missing_database_url_raises(self, clean_env, tmp_path):
        with pytest.raises(ValueError, match="LEADS_DATABASE_URL"):
            load_credentials(secrets_path=tmp_path / "missing.toml")

    def test_secrets_toml_fallback(self, clean_env, tmp_path):
        secrets = tmp_path / "secrets.toml"
        secrets.write_text(
            'LEADS_DATABASE_URL = "file:leads.db"\n'
            'APP_ENV = "production"\n'
            'APOLLO_WEBHOOK_URL = "https://example.org/hooks/apollo"\n'
        )

        creds = load_credentials(secrets_path=secrets)

        assert creds["LEADS_DATABASE_URL"] == "file:leads.db"
        assert creds["APP_ENV"] == "production"
        assert creds["APOLLO_WEBHOOK_URL"] == "https://example.org/hooks/apollo"

    def test_env_overrides_secrets(self, clean_env, tmp_path):
        secrets = tmp_path / "secrets.toml"
        secrets.write_text('LEADS_DATABASE_URL = "file:from-toml.db"\n')
        clean_env.setenv("LEADS_DATABASE_URL", "file:from-env.db")

        creds = load_credentials(secrets_path=secrets)

        assert creds["LEADS_DATABASE_URL"] == "file:from-env.db"

    def test_legacy_api_key_name(self, clean_env, tmp_path):
        clean_env.setenv("LEADS_DATABASE_URL", "file:leads.db")
        clean_env.setenv("APOLLO_IO_API_KEY", "legacy-key")

        creds = load_credentials(secrets_path=tmp_path / "missing.toml")

        assert creds["APOLLO_API_KEY"] == "legacy-key"
