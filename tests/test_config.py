"""Tests for settings and logging setup."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from badgesmith.config import Settings
from badgesmith.log import configure_logging


def test_defaults() -> None:
    settings = Settings.from_env({})
    assert settings == Settings()
    assert settings.request_timeout == 28.0
    assert settings.nonce_ttl_seconds == 45 * 60
    assert settings.secret_cache_ttl_seconds == 15 * 60
    assert settings.nonce_db_path == ""


def test_from_env() -> None:
    settings = Settings.from_env(
        {
            "BADGESMITH_LOG_LEVEL": "debug",
            "BADGESMITH_DEBUG": "yes",
            "BADGESMITH_REQUEST_TIMEOUT": "5.5",
            "BADGESMITH_NONCE_DB": "/var/lib/badgesmith/nonces.db",
            "BADGESMITH_CORS_ALLOW_CREDENTIALS": "true",
            "BADGESMITH_CORS_ALLOWED_ORIGINS": "https://a.example, https://b.example",
            "BADGESMITH_CORS_EXPOSE_HEADERS": "ETag",
        }
    )
    assert settings.log_level == "DEBUG"
    assert settings.debug is True
    assert settings.request_timeout == 5.5
    assert settings.nonce_db_path == "/var/lib/badgesmith/nonces.db"
    assert settings.cors_allowed_origins == ["https://a.example", "https://b.example"]

    options = settings.cors_options()
    assert options.allow_credentials
    assert options.allowed_origins == frozenset({"https://a.example", "https://b.example"})
    assert options.expose_headers == ("ETag",)


def test_invalid_numbers_fall_back_to_defaults() -> None:
    settings = Settings.from_env({"BADGESMITH_REQUEST_TIMEOUT": "soon", "BADGESMITH_NONCE_TTL": "forever"})
    assert settings.request_timeout == 28.0
    assert settings.nonce_ttl_seconds == 45 * 60


def test_unknown_log_level_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(log_level="LOUD")


def test_non_positive_timeout_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings.from_env({"BADGESMITH_REQUEST_TIMEOUT": "0"})


def test_configure_logging_is_idempotent() -> None:
    logger = configure_logging("debug")
    configure_logging("info")
    named = [h for h in logger.handlers if h.get_name() == "badgesmith"]
    assert len(named) == 1
    assert logger.level == logging.INFO
