import logging

import pytest

from vsco_archive.scraper import errors
from vsco_archive.scraper.errors import (
    DownloadFailureError,
    InvalidInputError,
    ProfileNotFoundError,
    RobotsDisallowedError,
    ScrapeError,
)


@pytest.mark.parametrize(
    "exc, code",
    [
        (InvalidInputError.from_invalid_url("x"), 1),
        (RobotsDisallowedError.from_robots_policy("someone"), 2),
        (RobotsDisallowedError.from_robots_fetch_failure(), 2),
        (ProfileNotFoundError.from_not_found("someone"), 3),
        (ProfileNotFoundError.from_private("someone"), 3),
        (ScrapeError.from_discovery_failure("discovery", "timeout"), 4),
        (DownloadFailureError.from_partial_download(3, 5), 5),
        (RuntimeError("unexpected"), 1),
    ],
)
def test_exit_codes(exc, code):
    assert errors.exit_code_for(exc) == code


def test_scrape_error_carries_phase():
    exc = ScrapeError.from_discovery_failure("browser startup", "no chromium")
    assert exc.phase == "browser startup"
    assert "no chromium" in exc.message


def test_log_writes_message_and_debug_details(monkeypatch):
    lines = []
    monkeypatch.setattr(errors, "log_line", lambda msg, **kwargs: lines.append((msg, kwargs["level"])))

    DownloadFailureError.from_partial_download(3, 5).log()

    assert lines[0] == ("ERROR: Download incomplete: 3/5 assets downloaded successfully.", logging.ERROR)
    assert lines[1][1] == logging.DEBUG
