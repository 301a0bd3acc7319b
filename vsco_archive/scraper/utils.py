from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from . import paths

LOGGER = logging.getLogger("vsco_archive")
_LOGGER_INITIALISED = False


def _configure_logger(log_path: Optional[Path], *, verbose: bool = False) -> logging.Logger:
    """Configure the shared application logger, optionally mirroring to ``log_path``."""

    global _LOGGER_INITIALISED

    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        try:
            handler.close()
        except Exception:  # noqa: BLE001
            continue

    formatter = logging.Formatter(
        fmt="[%(asctime)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    LOGGER.addHandler(stream_handler)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        LOGGER.addHandler(file_handler)

    LOGGER.setLevel(logging.DEBUG if verbose else logging.INFO)
    LOGGER.propagate = False

    _LOGGER_INITIALISED = True
    return LOGGER


def _ensure_logger() -> None:
    """Initialise a stdout-only logger lazily."""

    if _LOGGER_INITIALISED:
        return
    _configure_logger(None)


def configure_run_logger(backup_root: Path, *, verbose: bool = False) -> logging.Logger:
    """Rotate to a fresh timestamped log file for the current run and return the logger."""

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_path = paths.get_logs_dir(backup_root) / f"backup_{timestamp}.log"
    logger = _configure_logger(log_path, verbose=verbose)
    logger.info("Logging to %s", log_path)
    return logger


def log_line(
    message: str,
    *,
    level: int = logging.INFO,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Write a timestamped log line to the given logger (or the shared one)."""

    if logger is None:
        _ensure_logger()
        logger = LOGGER
    logger.log(level, message)


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string with milliseconds."""

    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def tmp_path_for(path: Path) -> Path:
    """Return the sibling temporary path used for atomic writes to ``path``."""

    return path.with_name(path.name + ".tmp")


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to a temporary sibling of ``path`` and rename it into place."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = tmp_path_for(path)
    try:
        with tmp_path.open("wb") as handle:
            handle.write(data)
        tmp_path.replace(path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_write_json(path: Path, payload: Any) -> None:
    """Serialise ``payload`` as pretty-printed UTF-8 JSON and write it atomically."""

    text = json.dumps(payload, ensure_ascii=False, indent=2)
    atomic_write_bytes(path, text.encode("utf-8"))


__all__ = [
    "LOGGER",
    "configure_run_logger",
    "log_line",
    "utc_now_iso",
    "tmp_path_for",
    "atomic_write_bytes",
    "atomic_write_json",
]
