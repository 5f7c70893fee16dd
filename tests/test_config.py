"""Tests for environment-driven settings."""

from feedpush.config import DEFAULT_DB_PATH, DEFAULT_POLL_INTERVAL, Settings


def test_defaults():
    settings = Settings.from_env({})
    assert settings.db_path == DEFAULT_DB_PATH
    assert settings.poll_interval == DEFAULT_POLL_INTERVAL
    assert settings.username == "local"


def test_overrides():
    settings = Settings.from_env({
        "RSS_DB_PATH": "/tmp/feeds.db",
        "RSS_POLL_INTERVAL": "60",
        "RSS_FETCH_TIMEOUT": "2.5",
        "RSS_USER": "alice",
    })
    assert settings.db_path == "/tmp/feeds.db"
    assert settings.poll_interval == 60
    assert settings.fetch_timeout == 2.5
    assert settings.username == "alice"
