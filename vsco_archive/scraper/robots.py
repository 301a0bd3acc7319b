"""Advisory robots.txt check for profile paths."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.robotparser import RobotFileParser

import requests

from . import config
from .logging_utils import _scraper_event

FETCH_FAILED_REASON = "robots.txt fetch failed, proceeding with conservative throttling"


@dataclass
class RobotsCheckResult:
    allowed: bool
    reason: str
    fetch_success: bool


def fetch_robots_txt(
    *,
    http_get: Optional[Callable[..., Any]] = None,
    timeout: float = 15,
    logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    """Return the robots.txt body, or ``None`` when it cannot be fetched."""

    getter = http_get or requests.get
    try:
        resp = getter(
            config.ROBOTS_URL,
            headers={"User-Agent": f"{config.ROBOTS_USER_AGENT}/{config.SCHEMA_VERSION}"},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        _scraper_event("robots", phase="fetch", status="error", error=str(exc), logger=logger)
        return None

    status = getattr(resp, "status_code", None)
    if status is None or not (200 <= int(status) < 300):
        _scraper_event("robots", phase="fetch", status="http_error", http_status=status, logger=logger)
        return None
    return resp.text


def is_crawl_allowed(robots_txt: str, path: str, *, agent: str = config.ROBOTS_USER_AGENT) -> bool:
    """Return whether ``agent`` may fetch ``path`` under ``robots_txt``.

    Groups naming several user agents apply to each of them; rules are matched
    in file order and the first match wins.
    """

    parser = RobotFileParser()
    parser.parse(robots_txt.splitlines())
    return parser.can_fetch(agent, path)


def check_robots_policy(
    username: str,
    *,
    http_get: Optional[Callable[..., Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> RobotsCheckResult:
    robots_txt = fetch_robots_txt(http_get=http_get, logger=logger)
    if robots_txt is None:
        return RobotsCheckResult(allowed=True, reason=FETCH_FAILED_REASON, fetch_success=False)

    allowed = is_crawl_allowed(robots_txt, f"/{username}")
    reason = (
        "robots.txt allows profile crawling"
        if allowed
        else "robots.txt disallows profile crawling"
    )
    _scraper_event("robots", phase="check", username=username, allowed=allowed, logger=logger)
    return RobotsCheckResult(allowed=allowed, reason=reason, fetch_success=True)


__all__ = [
    "FETCH_FAILED_REASON",
    "RobotsCheckResult",
    "fetch_robots_txt",
    "is_crawl_allowed",
    "check_robots_policy",
]
