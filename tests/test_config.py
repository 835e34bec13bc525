"""Unit tests for core/config.py -- Settings validation and env loading."""

import logging

import pytest
from pydantic import ValidationError

from core.config import Settings

_GOOGLE = {
    "google_client_id": "id",
    "google_client_secret": "secret",
    "google_redirect_uri": "https://api.test/auth/google/callback",
}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    names = ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI", "ALLOWED_REDIRECT_HOSTS", "CALLBACK_RATE_LIMIT")
    for name in names:
        monkeypatch.delenv(name, raising=False)


def test_production_requires_google_client() -> None:
    with pytest.raises(ValidationError) as exc:
        Settings(_env_file=None, debug=False)
    assert "GOOGLE_CLIENT_ID" in str(exc.value)


def test_production_with_google_client_starts() -> None:
    settings = Settings(_env_file=None, debug=False, **_GOOGLE)
    assert settings.callback_rate_limit == "10/minute"
    assert settings.allowed_redirect_hosts == []


def test_debug_mode_only_warns(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="tinytasks.config"):
        settings = Settings(_env_file=None, debug=True)
    assert settings.google_client_id == ""
    assert "Google OAuth is not configured" in caplog.text


def test_list_settings_read_from_env(monkeypatch) -> None:
    monkeypatch.setenv("ALLOWED_REDIRECT_HOSTS", '["app.test", "localhost"]')
    settings = Settings(_env_file=None, debug=True)
    assert settings.allowed_redirect_hosts == ["app.test", "localhost"]
