"""Configuration constants for the profile archiver."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

SCHEMA_VERSION: str = "1.0.0"
PROFILE_HOST: str = "vsco.co"
PROFILE_BASE_URL: str = f"https://{PROFILE_HOST}"
ROBOTS_URL: str = f"{PROFILE_BASE_URL}/robots.txt"
ROBOTS_USER_AGENT: str = "vsco-archive"

# Layout under the archive root. Only paths.py should join these.
METADATA_DIR_NAME: str = ".vsco-backup"
MEDIA_DIR_NAME: str = "media"
LOGS_DIR_NAME: str = "logs"
MANIFEST_FILE_NAME: str = "manifest.json"
GALLERIES_DIR_NAME: str = "galleries"
BLOG_DIR_NAME: str = "blog"
INDEX_FILE_NAME: str = "index.html"

DEFAULT_OUT_ROOT: Path = Path(os.getenv("VSCO_ARCHIVE_OUT_ROOT", "."))

USER_AGENT: str = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

COMMON_HEADERS: dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Connection": "keep-alive",
}


def _parse_timeout_seconds(env_var: str, default: float, *, minimum: float = 1) -> float:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = float(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


# Navigation and selector waits. Playwright takes milliseconds; callers convert.
NAV_TIMEOUT_SECONDS: float = _parse_timeout_seconds("VSCO_ARCHIVE_NAV_TIMEOUT_SECONDS", 90)
MAX_NAV_TIMEOUT_SECONDS: float = 300
# Per-request timeout for the direct HTTP transport.
DOWNLOAD_TIMEOUT_SECONDS: float = _parse_timeout_seconds(
    "VSCO_ARCHIVE_DOWNLOAD_TIMEOUT_SECONDS", 60
)
# Gallery and journal pages visited after the profile scroll.
SUBPAGE_READY_TIMEOUT_SECONDS: float = _parse_timeout_seconds(
    "VSCO_ARCHIVE_SUBPAGE_READY_SECONDS", 10
)
MAX_SUBPAGES: int = int(os.getenv("VSCO_ARCHIVE_MAX_SUBPAGES", "100"))

# Scroll discovery stopping rule
NO_NEW_CONTENT_THRESHOLD: int = int(os.getenv("VSCO_ARCHIVE_NO_NEW_CONTENT_THRESHOLD", "3"))
MAX_SCROLL_CYCLES: int = int(os.getenv("VSCO_ARCHIVE_MAX_SCROLL_CYCLES", "50"))
SCROLL_SETTLE_SECONDS: float = float(os.getenv("VSCO_ARCHIVE_SCROLL_SETTLE_SECONDS", "1.5"))
NAVIGATION_MAX_ATTEMPTS: int = 3

# Shared retry policy
RETRY_MAX_ATTEMPTS: int = int(os.getenv("VSCO_ARCHIVE_RETRY_MAX_ATTEMPTS", "5"))
RETRY_BASE_DELAY_SECONDS: float = float(os.getenv("VSCO_ARCHIVE_RETRY_BASE_DELAY", "1.0"))
RETRY_MAX_DELAY_SECONDS: float = float(os.getenv("VSCO_ARCHIVE_RETRY_MAX_DELAY", "30.0"))
RETRY_JITTER_MAX_SECONDS: float = float(os.getenv("VSCO_ARCHIVE_RETRY_JITTER_MAX", "1.0"))

# Pause between consecutive downloads
DOWNLOAD_DELAY_MIN_SECONDS: float = float(os.getenv("VSCO_ARCHIVE_DELAY_MIN", "0.5"))
DOWNLOAD_DELAY_MAX_SECONDS: float = float(os.getenv("VSCO_ARCHIVE_DELAY_MAX", "1.5"))

# Failure report is written when failed/attempted exceeds this ratio.
FAILURE_REPORT_THRESHOLD: float = float(os.getenv("VSCO_ARCHIVE_FAILURE_THRESHOLD", "0.0"))

# What to do when robots.txt cannot be fetched: "proceed" (advisory) or "abort".
ROBOTS_FETCH_FAILURE_POLICY: str = (
    os.getenv("VSCO_ARCHIVE_ROBOTS_FETCH_FAILURE", "proceed").strip().lower() or "proceed"
)
ROBOTS_FETCH_FAILURE_POLICIES: frozenset[str] = frozenset({"proceed", "abort"})


@dataclass
class BackupOptions:
    """Per-run overrides, typically populated from the CLI."""

    out_root: Path = DEFAULT_OUT_ROOT
    verbose: bool = False
    ignore_robots: bool = False
    max_scroll_cycles: int = MAX_SCROLL_CYCLES
    max_items: Optional[int] = None
    no_new_content_threshold: int = NO_NEW_CONTENT_THRESHOLD
    nav_timeout_seconds: float = NAV_TIMEOUT_SECONDS
    headless: bool = True
    user_agent: str = USER_AGENT
    robots_fetch_failure_policy: str = ROBOTS_FETCH_FAILURE_POLICY
    failure_threshold: float = FAILURE_REPORT_THRESHOLD
    delay_min_seconds: float = DOWNLOAD_DELAY_MIN_SECONDS
    delay_max_seconds: float = DOWNLOAD_DELAY_MAX_SECONDS


def profile_gallery_url(username: str) -> str:
    """Return the content-listing URL for ``username``."""

    return f"{PROFILE_BASE_URL}/{username}/gallery"


def profile_journal_url(username: str) -> str:
    return f"{PROFILE_BASE_URL}/{username}/journal"


def profile_url(username: str) -> str:
    """Return the canonical profile URL for ``username``."""

    return f"{PROFILE_BASE_URL}/{username}"
