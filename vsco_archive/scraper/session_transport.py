"""Fallback transport that rides on the live browser session.

The page's own network stack is used (``page.route`` + ``route.fetch``) so the
request carries the cookies and TLS fingerprint established during discovery.
The body is captured inside the route handler; navigation is only the trigger.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from playwright.sync_api import Error as PWError
from playwright.sync_api import TimeoutError as PWTimeout

from .block_detection import detect_block
from .logging_utils import _scraper_event

SESSION_FETCH_TIMEOUT_MS = 30_000


@dataclass
class SessionFetchResult:
    ok: bool
    status: Optional[int] = None
    content_type: Optional[str] = None
    body: Optional[bytes] = None
    error: Optional[str] = None
    blocked: bool = False
    block_marker: Optional[str] = None


class PlaywrightSessionTransport:
    def __init__(
        self,
        page: Any,
        *,
        timeout_ms: int = SESSION_FETCH_TIMEOUT_MS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.page = page
        self.timeout_ms = timeout_ms
        self._logger = logger

    def fetch(self, url: str) -> SessionFetchResult:
        captured: dict[str, Any] = {}

        def handle(route: Any) -> None:
            try:
                response = route.fetch(timeout=self.timeout_ms)
                status = response.status
                headers = {k.lower(): v for k, v in (response.headers or {}).items()}
                content_type = headers.get("content-type", "")
                body = response.body()
                captured["status"] = status
                captured["content_type"] = content_type

                verdict = detect_block(status, content_type, body)
                if verdict.blocked:
                    captured["blocked"] = True
                    captured["marker"] = verdict.marker
                    captured["error"] = (
                        f"Block page detected: status={status}, content-type={content_type}"
                    )
                    route.abort()
                    return
                if not response.ok:
                    captured["error"] = f"HTTP {status}: {response.status_text}"
                    route.abort()
                    return

                captured["body"] = body
                route.fulfill(status=status, headers=response.headers, body=body)
            except Exception as exc:  # noqa: BLE001
                captured.setdefault("error", str(exc))
                try:
                    route.abort()
                except Exception as abort_exc:  # noqa: BLE001
                    _scraper_event(
                        "session",
                        phase="route_abort_failed",
                        url=url,
                        error=str(abort_exc),
                        logger=self._logger,
                    )

        # String route patterns are globs; match the exact URL.
        def matches(candidate: str) -> bool:
            return candidate == url

        try:
            self.page.route(matches, handle)
        except PWError as exc:
            return SessionFetchResult(ok=False, error=f"route setup failed: {exc}")

        try:
            self.page.goto(url, timeout=self.timeout_ms, wait_until="domcontentloaded")
        except (PWTimeout, PWError) as exc:
            # The handler may already hold the body; navigation errors are expected
            # for binary responses.
            _scraper_event(
                "session",
                phase="navigate",
                url=url,
                error=str(exc),
                logger=self._logger,
            )
        finally:
            try:
                self.page.unroute(matches, handle)
            except PWError as exc:
                _scraper_event(
                    "session",
                    phase="unroute_failed",
                    url=url,
                    error=str(exc),
                    logger=self._logger,
                )

        status = captured.get("status")
        content_type = captured.get("content_type")
        if captured.get("error"):
            return SessionFetchResult(
                ok=False,
                status=status,
                content_type=content_type,
                error=captured["error"],
                blocked=bool(captured.get("blocked")),
                block_marker=captured.get("marker"),
            )

        body = captured.get("body")
        if not body:
            return SessionFetchResult(
                ok=False,
                status=status,
                content_type=content_type,
                error="No response data captured",
            )
        return SessionFetchResult(ok=True, status=status, content_type=content_type, body=bytes(body))


__all__ = ["SESSION_FETCH_TIMEOUT_MS", "SessionFetchResult", "PlaywrightSessionTransport"]
