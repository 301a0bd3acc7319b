from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from . import paths
from .logging_utils import _scraper_event
from .utils import log_line


@dataclass
class CapturedArtifacts:
    screenshot_path: Path
    html_path: Path


def capture_artifacts(
    page: Any,
    backup_root: Path,
    phase: str,
    run_id: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> Optional[CapturedArtifacts]:
    """Save a screenshot and an HTML snapshot of ``page`` into the logs directory.

    Capture is best effort: any failure is logged and ``None`` is returned.
    """

    try:
        logs_dir = paths.get_logs_dir(backup_root)
        logs_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        base = f"{phase}-{run_id}-{stamp}"

        screenshot_path = logs_dir / f"{base}.png"
        page.screenshot(path=str(screenshot_path), full_page=True)

        html_path = logs_dir / f"{base}.html"
        html_path.write_text(page.content(), encoding="utf-8")
    except Exception as exc:  # noqa: BLE001
        log_line(f"Failed to capture artifacts: {exc}", level=logging.WARNING, logger=logger)
        _scraper_event(
            "error",
            phase="artifacts",
            step="capture_failed",
            run_id=run_id,
            error=str(exc),
            logger=logger,
        )
        return None

    log_line(f"Artifacts captured: {screenshot_path}", logger=logger)
    log_line(f"Artifacts captured: {html_path}", logger=logger)
    return CapturedArtifacts(screenshot_path=screenshot_path, html_path=html_path)


__all__ = ["CapturedArtifacts", "capture_artifacts"]
