"""Process-boundary error taxonomy with stable exit codes.

Every class carries a short actionable ``message`` and optional verbose
``details``. The CLI logs the message, logs details only in verbose mode, and
exits with ``code``.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from .utils import log_line


class BackupError(Exception):
    code: int = 1

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def log(self, logger: Optional[logging.Logger] = None) -> None:
        log_line(f"ERROR: {self.message}", level=logging.ERROR, logger=logger)
        if self.details:
            log_line(f"Details: {self.details}", level=logging.DEBUG, logger=logger)


class InvalidInputError(BackupError):
    code = 1

    @classmethod
    def from_invalid_url(cls, url: str) -> "InvalidInputError":
        return cls(
            f'Invalid VSCO profile URL: "{url}". Expected format: https://vsco.co/<username>',
            "URL must be a valid VSCO profile URL. Example: https://vsco.co/myprofile",
        )

    @classmethod
    def from_missing_url(cls) -> "InvalidInputError":
        return cls(
            "Profile URL is required. Usage: vsco-archive <url> [--out-root <dir>] [--verbose]",
            "Provide a VSCO profile URL as the first argument",
        )

    @classmethod
    def from_invalid_out_root(cls, path: str) -> "InvalidInputError":
        return cls(
            f'Invalid output root path: "{path}". Path must be writable.',
            "Ensure the directory exists and you have write permissions",
        )

    @classmethod
    def from_invalid_option(cls, name: str, reason: str) -> "InvalidInputError":
        return cls(f"Invalid value for {name}: {reason}")


class RobotsDisallowedError(BackupError):
    code = 2
    # Decision snapshot (a manifest RobotsPolicy) that led to the veto.
    robots_policy: Optional[Any] = None

    @classmethod
    def from_robots_policy(cls, username: str) -> "RobotsDisallowedError":
        return cls(
            f'Profile "{username}" is disallowed by robots.txt policy. Backup cannot proceed.',
            "To override this check, use the --ignore-robots flag "
            "(use with caution and respect the site's policies)",
        )

    @classmethod
    def from_robots_fetch_failure(cls) -> "RobotsDisallowedError":
        return cls(
            "Failed to fetch robots.txt and the configured policy is to abort.",
            "Set VSCO_ARCHIVE_ROBOTS_FETCH_FAILURE=proceed to continue with conservative throttling",
        )


class ProfileNotFoundError(BackupError):
    code = 3

    @classmethod
    def from_not_found(cls, username: str) -> "ProfileNotFoundError":
        return cls(
            f'Profile "{username}" not found. Cannot proceed with backup.',
            "Verify the username is correct and the profile is public",
        )

    @classmethod
    def from_private(cls, username: str) -> "ProfileNotFoundError":
        return cls(
            f'Profile "{username}" is private or suspended. Backup requires a public profile.',
            "Only public VSCO profiles can be backed up",
        )


class ScrapeError(BackupError):
    code = 4

    def __init__(self, message: str, details: Optional[str] = None, *, phase: str = "") -> None:
        super().__init__(message, details)
        self.phase = phase

    @classmethod
    def from_discovery_failure(cls, phase: str, reason: str) -> "ScrapeError":
        return cls(
            f"Failed while scraping {phase}: {reason}",
            "The profile structure may have changed or the page timed out. "
            "Try again with --verbose to see detailed progress",
            phase=phase,
        )


class DownloadFailureError(BackupError):
    code = 5

    @classmethod
    def from_partial_download(cls, completed: int, total: int) -> "DownloadFailureError":
        return cls(
            f"Download incomplete: {completed}/{total} assets downloaded successfully.",
            "Run the command again to resume and download remaining assets",
        )


def exit_code_for(exc: BaseException) -> int:
    """Return the process exit code for ``exc`` (1 for anything uncategorised)."""

    if isinstance(exc, BackupError):
        return exc.code
    return InvalidInputError.code


__all__ = [
    "BackupError",
    "InvalidInputError",
    "RobotsDisallowedError",
    "ProfileNotFoundError",
    "ScrapeError",
    "DownloadFailureError",
    "exit_code_for",
]
