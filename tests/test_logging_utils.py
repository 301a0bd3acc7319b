import logging

from vsco_archive.scraper import logging_utils


def test_scraper_event_label_and_phase(monkeypatch):
    events: list[str] = []
    monkeypatch.setattr(logging_utils, "log_line", lambda msg, **kwargs: events.append(msg))

    logging_utils._scraper_event("state", phase="retry_decision", kind="capped")

    assert events
    line = events[-1]
    assert line.startswith("[SCRAPER][STATE]")
    assert "phase='retry_decision'" in line
    assert "kind='capped'" in line


def test_scraper_event_uses_phase_as_label_when_label_missing(monkeypatch):
    events: list[str] = []
    monkeypatch.setattr(logging_utils, "log_line", lambda msg, **kwargs: events.append(msg))

    logging_utils._scraper_event(phase="discovery", cycle=2)

    assert events == ["[SCRAPER][DISCOVERY] cycle=2"]


def test_scraper_event_forwards_level_and_logger(monkeypatch):
    calls: list[dict] = []
    monkeypatch.setattr(
        logging_utils, "log_line", lambda msg, **kwargs: calls.append(kwargs)
    )
    logger = logging.getLogger("test-events")

    logging_utils._scraper_event("error", level=logging.WARNING, logger=logger, error="boom")

    assert calls == [{"level": logging.WARNING, "logger": logger}]


def test_scraper_event_never_raises(monkeypatch):
    def _explode(msg, **kwargs):
        raise RuntimeError("handler closed")

    monkeypatch.setattr(logging_utils, "log_line", _explode)

    logging_utils._scraper_event("state", kind="summary")
