"""Sequential, block-aware media download pipeline.

Each queue item goes through: URL preflight, a local need check, the primary
HTTP transport (wrapped in the shared retry policy), block detection, an
optional fallback through the live browser session, and an atomic write.
Per-item failures are recorded and never abort the run.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

import requests

from . import config, paths
from .block_detection import detect_block
from .error_codes import ErrorCode, classify_http_status
from .failure_report import (
    FailureEntry,
    FailureSummary,
    TransportAttempt,
    write_failure_report,
)
from .incremental import FILE_OK, QueueItem, classify_local_file
from .logging_utils import _scraper_event
from .ratelimit import InterItemDelay
from .retry_policy import HttpStatusError, RetryError, classify_failure, retry
from .session_transport import PlaywrightSessionTransport
from .urls import NormalizeOk, normalize_asset_url
from .utils import atomic_write_bytes, log_line

DOWNLOADED = "downloaded"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class DownloaderOptions:
    max_attempts: int = config.RETRY_MAX_ATTEMPTS
    base_delay: float = config.RETRY_BASE_DELAY_SECONDS
    max_delay: float = config.RETRY_MAX_DELAY_SECONDS
    jitter_max: float = config.RETRY_JITTER_MAX_SECONDS
    timeout_seconds: float = config.DOWNLOAD_TIMEOUT_SECONDS
    delay_min_seconds: float = config.DOWNLOAD_DELAY_MIN_SECONDS
    delay_max_seconds: float = config.DOWNLOAD_DELAY_MAX_SECONDS
    failure_threshold: float = config.FAILURE_REPORT_THRESHOLD


@dataclass
class PrimaryResponse:
    status: int
    content_type: str
    body: bytes
    content_length: Optional[int] = None


@dataclass
class DownloadOutcome:
    item: QueueItem
    status: str
    path: Optional[Path] = None
    size_bytes: Optional[int] = None
    transport: Optional[str] = None
    normalized_url: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    primary_attempt: TransportAttempt = field(default_factory=TransportAttempt)
    session_attempt: TransportAttempt = field(default_factory=TransportAttempt)

    @property
    def ok(self) -> bool:
        return self.status != FAILED


@dataclass
class DownloadStats:
    total: int = 0
    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    downloaded: int = 0
    failed: int = 0

    @property
    def fail_rate(self) -> float:
        return self.failed / self.attempted if self.attempted else 0.0


@dataclass
class DownloadReport:
    outcomes: List[DownloadOutcome] = field(default_factory=list)
    stats: DownloadStats = field(default_factory=DownloadStats)
    failure_report_path: Optional[Path] = None

    @property
    def downloaded_ids(self) -> List[str]:
        return [o.item.media_id for o in self.outcomes if o.status == DOWNLOADED]

    @property
    def failures(self) -> List[DownloadOutcome]:
        return [o for o in self.outcomes if o.status == FAILED]


def _header(headers: Any, name: str) -> str:
    if headers is None:
        return ""
    try:
        value = headers.get(name)
    except AttributeError:
        return ""
    return value or ""


def fetch_primary(
    url: str,
    *,
    http_get: Callable[..., Any],
    timeout: float,
) -> PrimaryResponse:
    """Fetch ``url`` once. Raises :class:`HttpStatusError` for unblocked error statuses.

    Block pages are returned, not raised, so the retry policy never spends its
    budget on them.
    """

    resp = http_get(url, headers=config.COMMON_HEADERS, timeout=timeout)
    try:
        status = int(resp.status_code)
        content_type = _header(resp.headers, "Content-Type")
        body = resp.content or b""
        raw_length = _header(resp.headers, "Content-Length")
    finally:
        close = getattr(resp, "close", None)
        if callable(close):
            close()

    content_length = int(raw_length) if str(raw_length).isdigit() else None
    response = PrimaryResponse(status, content_type, body, content_length)
    if detect_block(status, content_type, body).blocked:
        return response
    if status >= 400:
        raise HttpStatusError(status)
    return response


def _fail(
    outcome: DownloadOutcome,
    code: str,
    message: str,
    *,
    logger: Optional[logging.Logger],
) -> DownloadOutcome:
    outcome.status = FAILED
    outcome.error_code = code
    outcome.error_message = message
    log_line(
        f"[DOWNLOAD] Failed {outcome.item.media_id}: {message}",
        level=logging.WARNING,
        logger=logger,
    )
    _scraper_event(
        "download",
        phase="item",
        media_id=outcome.item.media_id,
        status=FAILED,
        error_code=code,
        error=message,
        level=logging.WARNING,
        logger=logger,
    )
    return outcome


def _persist(
    outcome: DownloadOutcome,
    target: Path,
    body: bytes,
    transport: str,
    *,
    logger: Optional[logging.Logger],
) -> DownloadOutcome:
    try:
        atomic_write_bytes(target, body)
    except OSError as exc:
        return _fail(outcome, ErrorCode.DISK, f"write failed: {exc}", logger=logger)

    outcome.status = DOWNLOADED
    outcome.path = target
    outcome.size_bytes = len(body)
    outcome.transport = transport
    _scraper_event(
        "download",
        phase="item",
        media_id=outcome.item.media_id,
        status=DOWNLOADED,
        transport=transport,
        bytes=len(body),
        logger=logger,
    )
    return outcome


def download_one(
    item: QueueItem,
    backup_root: Path,
    *,
    http_get: Callable[..., Any],
    session_transport: Optional[PlaywrightSessionTransport] = None,
    options: Optional[DownloaderOptions] = None,
    before_network: Optional[Callable[[], Any]] = None,
    sleep: Optional[Callable[[float], None]] = None,
    logger: Optional[logging.Logger] = None,
) -> DownloadOutcome:
    """Capture a single queue item. Never raises for per-item failures."""

    options = options or DownloaderOptions()
    outcome = DownloadOutcome(item=item, status=FAILED)
    target = paths.get_media_path(backup_root, item.filename)

    normalized = normalize_asset_url(item.url)
    if not isinstance(normalized, NormalizeOk):
        return _fail(outcome, ErrorCode.INVALID_URL, normalized.reason, logger=logger)
    url = normalized.url
    outcome.normalized_url = url

    if classify_local_file(target, item.expected_size) == FILE_OK:
        outcome.status = SKIPPED
        outcome.path = target
        outcome.size_bytes = target.stat().st_size
        _scraper_event(
            "download",
            phase="item",
            media_id=item.media_id,
            status=SKIPPED,
            reason="already_valid",
            logger=logger,
        )
        return outcome

    if before_network is not None:
        before_network()

    retry_kwargs: dict[str, Any] = {
        "max_attempts": options.max_attempts,
        "base_delay": options.base_delay,
        "max_delay": options.max_delay,
        "jitter_max": options.jitter_max,
        "logger": logger,
    }
    if sleep is not None:
        retry_kwargs["sleep"] = sleep

    try:
        response = retry(
            lambda: fetch_primary(url, http_get=http_get, timeout=options.timeout_seconds),
            **retry_kwargs,
        )
    except RetryError as exc:
        last = exc.last_error if exc.last_error is not None else exc
        status = getattr(last, "status", None)
        outcome.primary_attempt = TransportAttempt(status=status)
        code = classify_http_status(status) if status is not None else classify_failure(last)[1]
        if code == ErrorCode.INTERNAL and isinstance(last, requests.RequestException):
            code = ErrorCode.NETWORK
        return _fail(outcome, code, str(last), logger=logger)

    verdict = detect_block(response.status, response.content_type, response.body)
    outcome.primary_attempt = TransportAttempt(
        status=response.status,
        content_type=response.content_type or None,
        snippet_marker=verdict.marker,
    )

    if not verdict.blocked:
        if not response.body:
            return _fail(outcome, ErrorCode.EMPTY_BODY, "Downloaded file is empty (0 bytes)", logger=logger)
        if (
            item.expected_size
            and response.content_length is not None
            and response.content_length != item.expected_size
        ):
            log_line(
                f"[DOWNLOAD] Content-Length mismatch for {item.filename}: "
                f"expected {item.expected_size}, got {response.content_length}",
                level=logging.WARNING,
                logger=logger,
            )
        return _persist(outcome, target, response.body, "primary", logger=logger)

    _scraper_event(
        "download",
        phase="blocked",
        media_id=item.media_id,
        http_status=response.status,
        marker=verdict.marker,
        fallback=session_transport is not None,
        logger=logger,
    )
    if session_transport is None:
        return _fail(
            outcome,
            ErrorCode.BLOCKED,
            f"Primary transport blocked (status={response.status}) and no session transport is available",
            logger=logger,
        )

    fallback = session_transport.fetch(url)
    outcome.session_attempt = TransportAttempt(
        status=fallback.status,
        content_type=fallback.content_type or None,
        snippet_marker=fallback.block_marker,
    )
    if not fallback.ok or not fallback.body:
        code = ErrorCode.BLOCKED if fallback.blocked else (
            classify_http_status(fallback.status)
            if fallback.status is not None and fallback.status >= 400
            else ErrorCode.EMPTY_BODY
        )
        return _fail(outcome, code, fallback.error or "session transport failed", logger=logger)
    return _persist(outcome, target, fallback.body, "session", logger=logger)


def download_assets(
    items: Sequence[QueueItem],
    backup_root: Path,
    *,
    run_id: Optional[str] = None,
    discovered_count: Optional[int] = None,
    http_get: Optional[Callable[..., Any]] = None,
    session_transport: Optional[PlaywrightSessionTransport] = None,
    options: Optional[DownloaderOptions] = None,
    sleep: Optional[Callable[[float], None]] = None,
    logger: Optional[logging.Logger] = None,
) -> DownloadReport:
    """Download ``items`` strictly in order and summarise the outcome.

    A random pause separates consecutive network fetches. When the failure rate
    exceeds ``options.failure_threshold`` and a ``run_id`` is known, a failure
    report is written to the logs directory.
    """

    options = options or DownloaderOptions()
    report = DownloadReport(stats=DownloadStats(total=len(items)))

    own_session: Optional[requests.Session] = None
    if http_get is None:
        own_session = requests.Session()
        http_get = own_session.get

    delay_kwargs: dict[str, Any] = {"logger": logger}
    if sleep is not None:
        delay_kwargs["sleep"] = sleep
    delay = InterItemDelay(options.delay_min_seconds, options.delay_max_seconds, **delay_kwargs)

    log_line(f"[DOWNLOAD] Starting download of {len(items)} assets", logger=logger)
    try:
        for index, item in enumerate(items, start=1):
            outcome = download_one(
                item,
                backup_root,
                http_get=http_get,
                session_transport=session_transport,
                options=options,
                before_network=delay.wait,
                sleep=sleep,
                logger=logger,
            )
            report.outcomes.append(outcome)

            stats = report.stats
            if outcome.status == SKIPPED:
                stats.skipped += 1
                stats.succeeded += 1
            else:
                stats.attempted += 1
                if outcome.status == DOWNLOADED:
                    stats.downloaded += 1
                    stats.succeeded += 1
                else:
                    stats.failed += 1

            _scraper_event(
                "download",
                phase="progress",
                current=index,
                total=len(items),
                logger=logger,
            )
    finally:
        if own_session is not None:
            own_session.close()

    stats = report.stats
    log_line(
        f"[DOWNLOAD] {stats.succeeded}/{stats.total} successful "
        f"({stats.downloaded} downloaded, {stats.skipped} skipped, {stats.failed} failed)",
        logger=logger,
    )

    if stats.failed and stats.fail_rate > options.failure_threshold and run_id:
        summary = FailureSummary(
            discovered=discovered_count if discovered_count is not None else stats.total,
            attempted=stats.attempted,
            skipped_valid=stats.skipped,
            succeeded=stats.downloaded,
            failed=stats.failed,
            fail_threshold=options.failure_threshold,
        )
        entries = [
            FailureEntry(
                media_id=o.item.media_id,
                original_url=o.item.url,
                normalized_url=o.normalized_url or "",
                error_message=o.error_message or "",
                error_code=o.error_code or ErrorCode.INTERNAL,
                primary_attempt=o.primary_attempt,
                session_attempt=o.session_attempt,
            )
            for o in report.failures
        ]
        report.failure_report_path = write_failure_report(
            backup_root, run_id, summary, entries, logger=logger
        )
    return report


__all__ = [
    "DOWNLOADED",
    "SKIPPED",
    "FAILED",
    "DownloaderOptions",
    "PrimaryResponse",
    "DownloadOutcome",
    "DownloadStats",
    "DownloadReport",
    "fetch_primary",
    "download_one",
    "download_assets",
]
