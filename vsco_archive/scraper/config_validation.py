from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from . import config
from .config import BackupOptions
from .errors import InvalidInputError
from .logging_utils import _scraper_event
from .utils import log_line


def _reject(name: str, reason: str, *, logger: Optional[logging.Logger]) -> None:
    _scraper_event(
        "error",
        phase="config",
        context="runtime_validation",
        field=name,
        error=reason,
        logger=logger,
    )
    raise InvalidInputError.from_invalid_option(name, reason)


def _adjust(name: str, value: object, adjusted: object, *, logger: Optional[logging.Logger]) -> None:
    _scraper_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=name,
        value=value,
        adjusted=adjusted,
        logger=logger,
    )
    log_line(f"[CONFIG] {name}={value!r} out of range; using {adjusted!r}.", logger=logger)


def validate_runtime_config(
    options: BackupOptions,
    *,
    logger: Optional[logging.Logger] = None,
) -> BackupOptions:
    """Return a validated copy of ``options``.

    Raises :class:`InvalidInputError` for values that cannot be interpreted.
    Values that are merely out of range are clamped and logged.
    """

    validated = replace(options)

    if validated.nav_timeout_seconds <= 0:
        _reject("timeout", "must be a positive number", logger=logger)
    if validated.nav_timeout_seconds > config.MAX_NAV_TIMEOUT_SECONDS:
        _adjust("timeout", validated.nav_timeout_seconds, config.MAX_NAV_TIMEOUT_SECONDS, logger=logger)
        validated.nav_timeout_seconds = config.MAX_NAV_TIMEOUT_SECONDS

    if validated.max_scroll_cycles < 1:
        _reject("max-scrolls", "must be at least 1", logger=logger)
    if validated.no_new_content_threshold < 1:
        _adjust("no_new_content_threshold", validated.no_new_content_threshold, 1, logger=logger)
        validated.no_new_content_threshold = 1

    if validated.max_items is not None and validated.max_items < 1:
        _reject("max-items", "must be at least 1", logger=logger)

    if validated.delay_min_seconds < 0 or validated.delay_max_seconds < 0:
        _reject("download delay", "must not be negative", logger=logger)
    if validated.delay_min_seconds > validated.delay_max_seconds:
        _reject("download delay", "minimum must not exceed maximum", logger=logger)

    if not 0.0 <= validated.failure_threshold <= 1.0:
        _reject("failure threshold", "must be between 0 and 1", logger=logger)

    policy = (validated.robots_fetch_failure_policy or "").strip().lower()
    if policy not in config.ROBOTS_FETCH_FAILURE_POLICIES:
        _reject(
            "robots fetch-failure policy",
            f"must be one of {sorted(config.ROBOTS_FETCH_FAILURE_POLICIES)}",
            logger=logger,
        )
    validated.robots_fetch_failure_policy = policy

    return validated


__all__ = ["validate_runtime_config"]
