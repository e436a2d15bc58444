"""Configuration helpers for environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./transactions.db"
DEFAULT_SEED_SOURCE_URL = "https://s3.amazonaws.com/roxiler.com/product_transaction.json"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _should_load_dotenv() -> bool:
    app_env = os.getenv("APP_ENV", "dev").strip().lower()
    return app_env in {"dev", "local"}


if _should_load_dotenv():
    load_dotenv()


def get_env(name: str, default: str | None = None) -> str | None:
    """Return a raw environment value or default."""
    return os.getenv(name, default)


def get_bool_env(name: str, default: bool) -> bool:
    raw = get_env(name)
    if raw is None or not raw.strip():
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    logger.warning("invalid_bool_env name=%s value=%r default=%s", name, raw, default)
    return default


def get_float_env(name: str, default: float) -> float:
    raw = get_env(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("invalid_float_env name=%s value=%r default=%s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("non_positive_float_env name=%s value=%r default=%s", name, raw, default)
        return default
    return value


@dataclass(frozen=True)
class Settings:
    app_env: str = "dev"
    database_url: str = DEFAULT_DATABASE_URL
    seed_source_url: str = DEFAULT_SEED_SOURCE_URL
    seed_timeout_seconds: float = 10.0
    seed_on_startup: bool = True
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    log_level: str = "INFO"
    port: int = 5000


def load_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings(
        app_env=(get_env("APP_ENV", "dev") or "dev").strip() or "dev",
        database_url=get_env("DATABASE_URL", DEFAULT_DATABASE_URL) or DEFAULT_DATABASE_URL,
        seed_source_url=get_env("SEED_SOURCE_URL", DEFAULT_SEED_SOURCE_URL)
        or DEFAULT_SEED_SOURCE_URL,
        seed_timeout_seconds=get_float_env("SEED_TIMEOUT_SECONDS", 10.0),
        seed_on_startup=get_bool_env("SEED_ON_STARTUP", True),
        frontend_origin=get_env("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN)
        or DEFAULT_FRONTEND_ORIGIN,
        log_level=(get_env("LOG_LEVEL", "INFO") or "INFO").strip().upper(),
        port=int(get_float_env("PORT", 5000)),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler once; later calls only adjust the level."""
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger().setLevel(resolved)
