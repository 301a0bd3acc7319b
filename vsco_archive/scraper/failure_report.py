"""JSON failure report for assets that could not be captured."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import paths
from .utils import atomic_write_json, log_line, utc_now_iso


@dataclass
class TransportAttempt:
    status: Optional[int] = None
    content_type: Optional[str] = None
    snippet_marker: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.status is not None:
            payload["status"] = self.status
        if self.content_type:
            payload["contentType"] = self.content_type
        if self.snippet_marker:
            payload["snippetMarker"] = self.snippet_marker
        return payload


@dataclass
class FailureEntry:
    media_id: str
    original_url: str
    normalized_url: str
    error_message: str
    error_code: str
    primary_attempt: TransportAttempt = field(default_factory=TransportAttempt)
    session_attempt: TransportAttempt = field(default_factory=TransportAttempt)
    timestamp: str = field(default_factory=utc_now_iso)

    def manual_recovery(self) -> List[str]:
        return [
            f"Open URL in browser: {self.original_url}",
            f"Open profile in browser → DevTools Network → filter by mediaId: {self.media_id}",
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mediaId": self.media_id,
            "originalUrl": self.original_url,
            "normalizedUrl": self.normalized_url,
            "primaryAttempt": self.primary_attempt.to_dict(),
            "sessionAttempt": self.session_attempt.to_dict(),
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
            "timestamp": self.timestamp,
            "manualRecovery": self.manual_recovery(),
        }


@dataclass
class FailureSummary:
    discovered: int
    attempted: int
    skipped_valid: int
    succeeded: int
    failed: int
    fail_threshold: float

    @property
    def fail_rate(self) -> float:
        if self.attempted <= 0:
            return 0.0
        return self.failed / self.attempted

    @property
    def verdict(self) -> str:
        return "FAIL" if self.fail_rate > self.fail_threshold else "PASS"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "discovered": self.discovered,
            "attempted": self.attempted,
            "skippedValid": self.skipped_valid,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failRate": round(self.fail_rate, 4),
            "failThreshold": self.fail_threshold,
            "verdict": self.verdict,
        }


def failure_report_path(backup_root: Path, run_id: str) -> Path:
    return paths.get_logs_dir(backup_root) / f"download-failures-{run_id}.json"


def write_failure_report(
    backup_root: Path,
    run_id: str,
    summary: FailureSummary,
    failures: List[FailureEntry],
    *,
    logger: Optional[logging.Logger] = None,
) -> Optional[Path]:
    """Write the report; a write failure is logged, never raised."""

    report_path = failure_report_path(backup_root, run_id)
    report = {
        "runId": run_id,
        "timestamp": utc_now_iso(),
        "summary": summary.to_dict(),
        "failures": [entry.to_dict() for entry in failures],
    }
    try:
        atomic_write_json(report_path, report)
    except OSError as exc:
        log_line(f"Failed to write failure report: {exc}", level=logging.WARNING, logger=logger)
        return None

    log_line(
        f"Failure report written: {report_path} ({summary.failed} failed of {summary.attempted})",
        level=logging.WARNING,
        logger=logger,
    )
    return report_path


__all__ = [
    "TransportAttempt",
    "FailureEntry",
    "FailureSummary",
    "failure_report_path",
    "write_failure_report",
]
