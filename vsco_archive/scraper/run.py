"""Top-level backup run: robots advisory, discovery, diff, download, manifest.

One call to :func:`run_backup` appends exactly one BackupRun to the manifest.
The run is opened before any network activity and closed on every exit path,
including failures, before the error propagates to the caller.
"""
from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from . import config, paths
from .browser import BrowserSession
from .config import BackupOptions
from .discovery import DiscoveryOptions, DiscoveryResult, TerminalState, discover_profile
from .downloader import DownloaderOptions, DownloadReport, download_assets
from .errors import (
    BackupError,
    DownloadFailureError,
    InvalidInputError,
    ProfileNotFoundError,
    RobotsDisallowedError,
    ScrapeError,
)
from .incremental import QueueStats, build_download_queue, detect_incremental_photos
from .logging_utils import _scraper_event
from .manifest import (
    Manifest,
    RobotsPolicy,
    RunCounts,
    RunStatus,
    load_manifest,
    merge_discovered_content,
    record_run_finish,
    record_run_start,
    save_manifest_atomic,
)
from .robots import RobotsCheckResult, check_robots_policy
from .session_transport import PlaywrightSessionTransport
from .utils import configure_run_logger, log_line

IGNORED_ROBOTS_REASON = "robots.txt check skipped (--ignore-robots)"


@dataclass
class BackupResult:
    run_id: str
    status: RunStatus
    discovery: DiscoveryResult
    download: DownloadReport
    queue_stats: QueueStats
    robots_policy: RobotsPolicy


def ensure_backup_root(backup_root: Path) -> None:
    """Create the metadata directories under ``backup_root`` or raise InvalidInputError."""

    try:
        paths.get_media_dir(backup_root).mkdir(parents=True, exist_ok=True)
        paths.get_logs_dir(backup_root).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        error = InvalidInputError.from_invalid_out_root(str(backup_root))
        error.details = f"{error.details}: {exc}"
        raise error from exc


def resolve_robots_policy(
    username: str,
    options: BackupOptions,
    *,
    checker: Callable[..., RobotsCheckResult] = check_robots_policy,
    logger: Optional[logging.Logger] = None,
) -> RobotsPolicy:
    """Evaluate robots.txt for ``username``; raise RobotsDisallowedError to stop the run."""

    if options.ignore_robots:
        log_line("[ROBOTS] Check skipped (--ignore-robots)", level=logging.WARNING, logger=logger)
        return RobotsPolicy(
            allowed=True, reason=IGNORED_ROBOTS_REASON, fetch_success=False, ignored=True
        )

    result = checker(username, logger=logger)
    policy = RobotsPolicy(
        allowed=result.allowed,
        reason=result.reason,
        fetch_success=result.fetch_success,
        ignored=False,
    )
    if not result.fetch_success:
        log_line(f"[ROBOTS] {result.reason}", level=logging.WARNING, logger=logger)
        if options.robots_fetch_failure_policy == "abort":
            error = RobotsDisallowedError.from_robots_fetch_failure()
            error.robots_policy = policy
            raise error
    if not result.allowed:
        error = RobotsDisallowedError.from_robots_policy(username)
        error.robots_policy = policy
        raise error
    return policy


def _run_status(report: DownloadReport) -> RunStatus:
    stats = report.stats
    if stats.failed == 0:
        return RunStatus.SUCCESS
    if stats.downloaded > 0 or stats.skipped > 0:
        return RunStatus.PARTIAL
    return RunStatus.FAILED


def _raise_for_terminal_state(discovery: DiscoveryResult, username: str) -> None:
    state = discovery.terminal_state
    if state == TerminalState.NOT_FOUND:
        raise ProfileNotFoundError.from_not_found(username)
    if state == TerminalState.PRIVATE:
        raise ProfileNotFoundError.from_private(username)
    if state == TerminalState.FAILED:
        raise ScrapeError.from_discovery_failure(
            "discovery", discovery.error_message or "unknown error"
        )


def run_backup(
    username: str,
    options: Optional[BackupOptions] = None,
    *,
    logger: Optional[logging.Logger] = None,
    robots_checker: Callable[..., RobotsCheckResult] = check_robots_policy,
    session_factory: Callable[..., Any] = BrowserSession,
    http_get: Optional[Callable[..., Any]] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> BackupResult:
    """Back up ``username`` into ``options.out_root``.

    Raises a :class:`BackupError` subclass when the run does not fully succeed;
    the manifest (with the closed run record) is saved before raising.
    """

    options = options or BackupOptions()
    backup_root = Path(options.out_root)
    ensure_backup_root(backup_root)
    if logger is None:
        logger = configure_run_logger(backup_root, verbose=options.verbose)

    profile_url = config.profile_url(username)
    manifest = load_manifest(backup_root, username, profile_url, logger=logger)
    run_id = record_run_start(manifest)
    save_manifest_atomic(backup_root, manifest)
    log_line(f"[RUN] Started run {run_id} for {username} into {backup_root}", logger=logger)

    robots_policy: Optional[RobotsPolicy] = None
    counts = RunCounts()
    try:
        robots_policy = resolve_robots_policy(
            username, options, checker=robots_checker, logger=logger
        )
        result = _execute(
            username,
            options,
            manifest,
            run_id,
            backup_root,
            robots_policy,
            counts,
            session_factory=session_factory,
            http_get=http_get,
            sleep=sleep,
            logger=logger,
        )
    except RobotsDisallowedError as exc:
        _close_failed_run(
            manifest, backup_root, run_id, counts, exc.message, exc.robots_policy, logger
        )
        raise
    except BackupError as exc:
        _close_failed_run(manifest, backup_root, run_id, counts, exc.message, robots_policy, logger)
        raise
    except Exception as exc:
        _close_failed_run(manifest, backup_root, run_id, counts, str(exc), robots_policy, logger)
        raise

    if result.status != RunStatus.SUCCESS:
        stats = result.download.stats
        raise DownloadFailureError.from_partial_download(stats.succeeded, stats.total)
    return result


def _close_failed_run(
    manifest: Manifest,
    backup_root: Path,
    run_id: str,
    counts: RunCounts,
    message: str,
    robots_policy: Optional[RobotsPolicy],
    logger: Optional[logging.Logger],
) -> None:
    record_run_finish(
        manifest,
        run_id,
        counts,
        RunStatus.FAILED,
        message,
        robots_policy=robots_policy,
    )
    try:
        save_manifest_atomic(backup_root, manifest)
    except OSError as exc:
        # Keep the run error for the caller.
        log_line(
            f"[RUN] Could not save manifest for failed run {run_id}: {exc}",
            level=logging.ERROR,
            logger=logger,
        )
    _scraper_event("run", phase="finish", run_id=run_id, status="failed", error=message, logger=logger)


def _execute(
    username: str,
    options: BackupOptions,
    manifest: Manifest,
    run_id: str,
    backup_root: Path,
    robots_policy: RobotsPolicy,
    counts: RunCounts,
    *,
    session_factory: Callable[..., Any],
    http_get: Optional[Callable[..., Any]],
    sleep: Optional[Callable[[float], None]],
    logger: Optional[logging.Logger],
) -> BackupResult:
    slug_registry = {post.slug: post.id for post in manifest.content.blog_posts}
    discovery_options = DiscoveryOptions(
        no_new_content_threshold=options.no_new_content_threshold,
        max_scroll_cycles=options.max_scroll_cycles,
        max_items=options.max_items,
        nav_timeout_seconds=options.nav_timeout_seconds,
        headless=options.headless,
        user_agent=options.user_agent,
        backup_root=backup_root,
        run_id=run_id,
    )
    downloader_options = DownloaderOptions(
        delay_min_seconds=options.delay_min_seconds,
        delay_max_seconds=options.delay_max_seconds,
        failure_threshold=options.failure_threshold,
    )

    with ExitStack() as stack:
        try:
            session = stack.enter_context(
                session_factory(
                    headless=options.headless, user_agent=options.user_agent, logger=logger
                )
            )
        except Exception as exc:
            raise ScrapeError.from_discovery_failure("browser startup", str(exc)) from exc

        discovery = discover_profile(
            username,
            discovery_options,
            page=session.page,
            slug_registry=slug_registry,
            sleep=sleep,
            logger=logger,
        )
        _raise_for_terminal_state(discovery, username)

        incremental = detect_incremental_photos(
            backup_root, discovery.photos, manifest, logger=logger
        )
        queue = build_download_queue(
            incremental, discovery.blog_assets, backup_root=backup_root
        )
        counts.new_content_count = queue.stats.new
        counts.missing_content_count = queue.stats.missing
        counts.invalid_content_count = queue.stats.invalid
        log_line(
            f"[RUN] Queue: {queue.stats.new} new, {queue.stats.missing} missing, "
            f"{queue.stats.invalid} invalid",
            logger=logger,
        )

        report = download_assets(
            queue.queue,
            backup_root,
            run_id=run_id,
            discovered_count=len(discovery.photos) + len(discovery.blog_assets),
            http_get=http_get,
            session_transport=PlaywrightSessionTransport(session.page, logger=logger),
            options=downloader_options,
            sleep=sleep,
            logger=logger,
        )
    merged = merge_discovered_content(
        manifest, discovery.photos, discovery.galleries, discovery.blog_posts
    )
    counts.downloaded_items = report.downloaded_ids
    status = _run_status(report)
    error_message = None
    if status != RunStatus.SUCCESS:
        error_message = f"{report.stats.failed} of {report.stats.attempted} downloads failed"
    record_run_finish(
        manifest,
        run_id,
        counts,
        status,
        error_message,
        robots_policy=robots_policy,
    )
    save_manifest_atomic(backup_root, manifest)

    _scraper_event(
        "run",
        phase="finish",
        run_id=run_id,
        status=status.value,
        photos_added=merged.photos_added,
        galleries_added=merged.galleries_added,
        blog_posts_added=merged.blog_posts_added,
        downloaded=report.stats.downloaded,
        skipped=report.stats.skipped,
        failed=report.stats.failed,
        logger=logger,
    )
    log_line(
        f"[RUN] Finished run {run_id}: status={status.value} "
        f"downloaded={report.stats.downloaded} skipped={report.stats.skipped} "
        f"failed={report.stats.failed}",
        logger=logger,
    )
    return BackupResult(
        run_id=run_id,
        status=status,
        discovery=discovery,
        download=report,
        queue_stats=queue.stats,
        robots_policy=robots_policy,
    )


__all__ = [
    "IGNORED_ROBOTS_REASON",
    "BackupResult",
    "ensure_backup_root",
    "resolve_robots_policy",
    "run_backup",
]
