from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from playwright.sync_api import sync_playwright

from . import config
from .logging_utils import _scraper_event
from .utils import log_line

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]


@dataclass
class CapturedPayload:
    url: str
    data: Any


@dataclass
class NetworkCapture:
    """JSON payloads observed on ``/api/`` and ``/media/`` responses."""

    payloads: List[CapturedPayload] = field(default_factory=list)
    logger: Optional[logging.Logger] = None

    def attach(self, page: Any) -> None:
        page.on("response", self.on_response)

    def on_response(self, resp: Any) -> None:
        try:
            url = resp.url
        except Exception as exc:  # noqa: BLE001
            log_line(f"[NETWORK] error reading url: {exc}", level=logging.DEBUG, logger=self.logger)
            return

        if "/api/" not in url and "/media/" not in url:
            return
        try:
            headers = resp.headers or {}
            content_type = headers.get("content-type", "")
        except Exception:  # noqa: BLE001
            content_type = ""
        if ".json" not in url.lower() and "application/json" not in content_type:
            return
        try:
            data = resp.json()
        except Exception as exc:  # noqa: BLE001
            # Bodies of redirects and aborted requests cannot be read; skip them.
            _scraper_event("network", phase="json_parse", url=url, error=str(exc), logger=self.logger)
            return
        self.payloads.append(CapturedPayload(url=url, data=data))
        _scraper_event("network", phase="capture", url=url, logger=self.logger)


class BrowserSession:
    """Scoped Chromium session: playwright → browser → context → page.

    Used as a context manager. Release happens in reverse order and each close
    is failure-tolerant, so an error raised inside the block is never masked.
    If acquisition fails partway, whatever was already acquired is released
    before the error propagates.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        user_agent: str = config.USER_AGENT,
        playwright_factory: Callable[[], Any] = sync_playwright,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.headless = headless
        self.user_agent = user_agent
        self._factory = playwright_factory
        self._logger = logger
        self._manager: Any = None
        self._playwright: Any = None
        self.browser: Any = None
        self.context: Any = None
        self.page: Any = None

    def __enter__(self) -> "BrowserSession":
        try:
            self._manager = self._factory()
            self._playwright = self._manager.start()
            self.browser = self._playwright.chromium.launch(
                headless=self.headless,
                args=LAUNCH_ARGS,
            )
            self.context = self.browser.new_context(
                user_agent=self.user_agent,
                locale="en-US",
                viewport={"width": 1368, "height": 900},
            )
            self.page = self.context.new_page()
            if self.page is None:
                raise RuntimeError("Failed to create Playwright page")
        except BaseException:
            self.close()
            raise
        _scraper_event("browser", phase="open", headless=self.headless, logger=self._logger)
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    def close(self) -> None:
        for closable in (self.page, self.context, self.browser):
            try:
                if closable is None:
                    continue
                closable.close()
            except Exception as exc:  # noqa: BLE001
                name = type(closable).__name__
                log_line(f"Error closing Playwright object {name}: {exc}", logger=self._logger)
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except Exception as exc:  # noqa: BLE001
                log_line(f"Error stopping Playwright: {exc}", logger=self._logger)
        self.page = self.context = self.browser = None
        self._playwright = self._manager = None


__all__ = ["LAUNCH_ARGS", "CapturedPayload", "NetworkCapture", "BrowserSession"]
