from __future__ import annotations

"""Command-line entry point: ``vsco-archive <profile-url> [options]``."""

import argparse
import logging
import re
from pathlib import Path
from typing import Sequence
from urllib.parse import urlsplit

from . import config
from .config import BackupOptions
from .config_validation import validate_runtime_config
from .errors import BackupError, InvalidInputError, exit_code_for
from .run import run_backup
from .urls import is_profile_host
from .utils import log_line

USERNAME_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


def parse_profile_url(value: str) -> str:
    """Return the username addressed by ``value`` or raise InvalidInputError.

    Accepts ``https://vsco.co/<user>``, ``https://vsco.co/<user>/gallery``,
    ``vsco.co/<user>`` without a scheme, and bare ``user`` / ``@user``.
    """

    raw = (value or "").strip()
    if not raw:
        raise InvalidInputError.from_missing_url()

    # A token without a slash is a username, optionally prefixed with "@".
    if "/" not in raw:
        candidate = raw[1:] if raw.startswith("@") else raw
        if is_profile_host(candidate) or not USERNAME_RE.match(candidate):
            raise InvalidInputError.from_invalid_url(value)
        return candidate

    text = raw if "://" in raw else f"https://{raw}"
    try:
        parts = urlsplit(text)
    except ValueError as exc:
        raise InvalidInputError.from_invalid_url(value) from exc
    if parts.scheme not in ("http", "https"):
        raise InvalidInputError.from_invalid_url(value)
    if not is_profile_host(parts.hostname or ""):
        raise InvalidInputError.from_invalid_url(value)

    segments = [segment for segment in parts.path.split("/") if segment]
    if not segments or len(segments) > 2:
        raise InvalidInputError.from_invalid_url(value)
    if len(segments) == 2 and segments[1] != "gallery":
        raise InvalidInputError.from_invalid_url(value)
    username = segments[0]
    if not USERNAME_RE.match(username):
        raise InvalidInputError.from_invalid_url(value)
    return username


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser for the archiver CLI."""

    parser = argparse.ArgumentParser(
        prog="vsco-archive",
        description="Incrementally back up a public VSCO profile.",
    )
    parser.add_argument("url", nargs="?", default=None, help="Profile URL, e.g. https://vsco.co/<username>")
    parser.add_argument(
        "--out-root",
        type=Path,
        default=config.DEFAULT_OUT_ROOT,
        help="Archive root directory (default: current directory).",
    )
    parser.add_argument("--verbose", action="store_true", help="Log debug detail.")
    parser.add_argument(
        "--ignore-robots",
        action="store_true",
        help="Skip the robots.txt advisory check.",
    )
    parser.add_argument(
        "--max-scrolls",
        type=int,
        default=config.MAX_SCROLL_CYCLES,
        help="Hard cap on scroll cycles during discovery.",
    )
    parser.add_argument(
        "--max-items",
        type=int,
        default=None,
        help="Stop after this many photos are discovered.",
    )
    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=int(config.NAV_TIMEOUT_SECONDS * 1000),
        help="Navigation timeout in milliseconds (max 300000).",
    )
    parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window instead of running headless.",
    )
    return parser


def options_from_args(args: argparse.Namespace) -> BackupOptions:
    return BackupOptions(
        out_root=args.out_root,
        verbose=args.verbose,
        ignore_robots=args.ignore_robots,
        max_scroll_cycles=args.max_scrolls,
        max_items=args.max_items,
        nav_timeout_seconds=args.timeout_ms / 1000,
        headless=not args.headful,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the archiver CLI. Returns the process exit code."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        if args.url is None:
            raise InvalidInputError.from_missing_url()
        username = parse_profile_url(args.url)
        options = validate_runtime_config(options_from_args(args))
        result = run_backup(username, options)
    except BackupError as exc:
        exc.log()
        return exc.code
    except Exception as exc:  # noqa: BLE001
        log_line(f"ERROR: Unexpected error: {exc}", level=logging.ERROR)
        return exit_code_for(exc)

    stats = result.download.stats
    log_line(
        f"Backup complete for {username}: {stats.downloaded} downloaded, "
        f"{stats.skipped} already present.",
    )
    return 0


__all__ = ["USERNAME_RE", "parse_profile_url", "options_from_args", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
