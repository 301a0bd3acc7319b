from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from vsco_archive.scraper import artifacts, utils


def test_atomic_write_json_round_trips(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "data.json"
    utils.atomic_write_json(target, {"name": "Café"})

    assert json.loads(target.read_text(encoding="utf-8")) == {"name": "Café"}
    assert not utils.tmp_path_for(target).exists()


def test_atomic_write_bytes_removes_tmp_on_failure(tmp_path: Path, monkeypatch) -> None:
    target = tmp_path / "a.bin"
    target.write_bytes(b"old")

    def _crash(self, other):
        raise OSError("rename failed")

    monkeypatch.setattr(Path, "replace", _crash)
    with pytest.raises(OSError):
        utils.atomic_write_bytes(target, b"new")
    monkeypatch.undo()

    assert target.read_bytes() == b"old"
    assert not utils.tmp_path_for(target).exists()


def test_configure_run_logger_writes_log_file(tmp_path: Path) -> None:
    logger = utils.configure_run_logger(tmp_path, verbose=True)
    try:
        assert logger.level == logging.DEBUG
        utils.log_line("hello from test", logger=logger)
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        log_path = Path(file_handlers[0].baseFilename)
        assert log_path.parent == tmp_path / ".vsco-backup" / "logs"
        for handler in logger.handlers:
            handler.flush()
        assert "hello from test" in log_path.read_text(encoding="utf-8")
    finally:
        utils._configure_logger(None)


def test_utc_now_iso_format() -> None:
    stamp = utils.utc_now_iso()
    assert stamp.endswith("Z")
    assert len(stamp) == len("2024-01-01T00:00:00.000Z")


class _Page:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    def screenshot(self, path: str, full_page: bool = False) -> None:
        if self.fail:
            raise RuntimeError("Target page, context or browser has been closed")
        Path(path).write_bytes(b"png")

    def content(self) -> str:
        return "<html></html>"


def test_capture_artifacts_writes_screenshot_and_html(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(artifacts, "log_line", lambda msg, **kwargs: None)

    captured = artifacts.capture_artifacts(_Page(), tmp_path, "discovery", "run-1")

    assert captured is not None
    assert captured.screenshot_path.name.startswith("discovery-run-1-")
    assert captured.screenshot_path.read_bytes() == b"png"
    assert captured.html_path.read_text(encoding="utf-8") == "<html></html>"


def test_capture_artifacts_is_best_effort(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(artifacts, "log_line", lambda msg, **kwargs: None)
    monkeypatch.setattr(artifacts, "_scraper_event", lambda *a, **k: None)

    assert artifacts.capture_artifacts(_Page(fail=True), tmp_path, "discovery", "run-1") is None
