"""Cached settings accessor for keycast.

Usage:
    from keycast.core.settings import get_settings

    settings = get_settings()
    interval = settings.schedule.issuance_interval_seconds

Settings are read from the environment once per process. Tests reset the
cache with clear_settings_cache().
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from keycast.core.config import (
    ConfigValidationError,
    Settings,
    validate_settings,
)

logger = logging.getLogger(__name__)


def _format_validation_error(error: ValidationError) -> str:
    """One indented line per failing field, without input values."""
    return "\n".join(
        f"  - {'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in error.errors()
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load, validate and cache the application settings.

    Returns:
        Validated Settings instance.

    Raises:
        SystemExit: If settings cannot be loaded or fail validation.
    """
    logger.info("Loading application settings from environment")
    try:
        settings = Settings()  # type: ignore[call-arg]
        validate_settings(settings)
    except ValidationError as e:
        logger.critical("Configuration validation failed:\n%s", _format_validation_error(e))
        raise SystemExit(1) from e
    except ConfigValidationError as e:
        logger.critical(
            "Configuration validation failed: %s (field: %s)",
            e.message,
            e.field or "unknown",
        )
        raise SystemExit(1) from e

    logger.info("Configuration loaded: %s", settings.get_startup_summary())
    return settings


def clear_settings_cache() -> None:
    """Forget the cached settings so the next call reloads them."""
    get_settings.cache_clear()


def get_settings_safe() -> Settings | None:
    """Settings if they load, otherwise None (used where a fallback exists)."""
    try:
        return get_settings()
    except SystemExit:
        return None
