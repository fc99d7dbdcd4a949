"""Tests for settings loading."""

import pydantic
import pytest
import structlog

from pair_chat.config import Settings, configure_logging


def test_defaults():
    settings = Settings()
    assert settings.page_size == 50
    assert settings.store_max_attempts == 5
    assert settings.rate_limit_enabled is True


def test_from_env(monkeypatch):
    monkeypatch.setenv("PAIR_CHAT_PAGE_SIZE", "20")
    monkeypatch.setenv("PAIR_CHAT_STORE_MAX_ATTEMPTS", "9")
    monkeypatch.setenv("PAIR_CHAT_RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("LOG_JSON", "1")

    settings = Settings.from_env()

    assert settings.page_size == 20
    assert settings.store_max_attempts == 9
    assert settings.rate_limit_enabled is False
    assert settings.log_json is True


def test_configure_logging_accepts_unknown_level():
    configure_logging(Settings(log_level="chatty", log_json=True))
    structlog.get_logger().info("configured")


def test_invalid_env_value_names_the_setting(monkeypatch):
    monkeypatch.setenv("PAIR_CHAT_PAGE_SIZE", "lots")
    with pytest.raises(pydantic.ValidationError) as exc_info:
        Settings.from_env()
    assert "page_size" in str(exc_info.value).lower()


def test_keyword_arguments_override_env(monkeypatch):
    monkeypatch.setenv("PAIR_CHAT_RATE_LIMIT_ENABLED", "true")
    assert Settings(rate_limit_enabled=False).rate_limit_enabled is False
