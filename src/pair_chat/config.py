"""Environment-driven settings and structlog setup."""

import logging
from typing import Optional

import structlog
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    return Field(default=default, validation_alias=AliasChoices(*env_names))


class Settings(BaseSettings):
    """Runtime configuration, read from ``PAIR_CHAT_*`` and ``LOG_*`` variables."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    page_size: int = _env_field(50, "page_size", "PAIR_CHAT_PAGE_SIZE")
    store_max_attempts: int = _env_field(5, "store_max_attempts", "PAIR_CHAT_STORE_MAX_ATTEMPTS")
    store_retry_backoff: float = _env_field(0.01, "store_retry_backoff", "PAIR_CHAT_STORE_RETRY_BACKOFF")
    rate_limit: int = _env_field(50, "rate_limit", "PAIR_CHAT_RATE_LIMIT")
    rate_window: int = _env_field(60, "rate_window", "PAIR_CHAT_RATE_WINDOW")
    rate_limit_enabled: bool = _env_field(True, "rate_limit_enabled", "PAIR_CHAT_RATE_LIMIT_ENABLED")
    log_level: str = _env_field("INFO", "log_level", "LOG_LEVEL")
    log_json: bool = _env_field(False, "log_json", "LOG_JSON")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure structlog: level filtering plus a JSON or console renderer."""
    settings = settings or Settings.from_env()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )
