"""Profile discovery: navigate, wait for readiness, scroll, extract.

Discovery never raises. Every exit path yields a :class:`DiscoveryResult` whose
``terminal_state`` tells the caller what happened, and the browser session is
released on every path.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Set
from urllib.parse import urldefrag, urljoin, urlsplit

from playwright.sync_api import Error as PWError

from . import config
from .artifacts import capture_artifacts
from .blog import BlogAsset
from .browser import BrowserSession, NetworkCapture
from .entities import (
    PhotoCandidate,
    build_blog_posts,
    build_galleries,
    build_photos,
    photo_candidate_from_dom,
)
from .json_visitor import collect_ids, collect_photo_candidates
from .logging_utils import _scraper_event
from .manifest import BlogPost, Gallery, Photo
from .retry_policy import HttpStatusError, retry
from .urls import is_profile_host
from .utils import log_line, utc_now_iso

CONTENT_SELECTORS = ("[data-id]", "[data-image-id]", 'a[href*="/media/"]')
# Quoted text markers match an element's whole text, not a bio or caption
# that happens to contain the words.
PRIVATE_SELECTORS = (
    'text="This profile is private"',
    'text="Private profile"',
    'text="Account suspended"',
    'text="This account has been suspended"',
    '[data-test="private-profile"]',
)
NOT_FOUND_SELECTORS = (
    'text="Page not found"',
    'text="This page could not be found"',
    'h1:text-is("404")',
)
EMPTY_SELECTORS = ('text="No images yet"', 'text="No content yet"')
GALLERY_PHOTO_SELECTORS = (
    "[data-photo-id]",
    "[data-id]",
    "[data-medusa-id]",
    'a[href*="/media/"]',
)
JOURNAL_SELECTORS = ("article", ".journal-entry", "[data-journal-entry]", 'a[href*="/journal/"]')
POST_SELECTORS = ("article", ".journal-post", '[role="article"]')

READY_CONTENT = "content"
READY_PRIVATE = "private"
READY_NOT_FOUND = "not_found"
READY_EMPTY = "empty"
READY_TIMEOUT = "timeout"

# Checked in this order; the first visible group decides the page state.
READINESS_GROUPS = (
    (READY_CONTENT, CONTENT_SELECTORS),
    (READY_PRIVATE, PRIVATE_SELECTORS),
    (READY_NOT_FOUND, NOT_FOUND_SELECTORS),
    (READY_EMPTY, EMPTY_SELECTORS),
)


def _subpage_groups(selectors: tuple[str, ...]) -> tuple[tuple[str, tuple[str, ...]], ...]:
    return (
        (READY_CONTENT, selectors),
        (READY_NOT_FOUND, NOT_FOUND_SELECTORS),
        (READY_EMPTY, EMPTY_SELECTORS),
    )


READINESS_POLL_SECONDS = 0.25

SCROLL_SCRIPT = "() => window.scrollTo(0, document.body.scrollHeight)"

DOM_IDS_SCRIPT = r"""
() => {
  const ids = new Set();
  document.querySelectorAll('[data-id]').forEach((el) => {
    const id = el.getAttribute('data-id');
    if (id) ids.add(id);
  });
  document.querySelectorAll('[data-image-id]').forEach((el) => {
    const id = el.getAttribute('data-image-id');
    if (id) ids.add(id);
  });
  document.querySelectorAll('a[href*="/media/"]').forEach((el) => {
    const match = (el.getAttribute('href') || '').match(/\/media\/([a-zA-Z0-9]+)/);
    if (match) ids.add(match[1]);
  });
  return Array.from(ids);
}
"""

DOM_PHOTOS_SCRIPT = r"""
() => {
  const records = [];
  document.querySelectorAll('a[href*="/media/"]').forEach((el) => {
    const img = el.querySelector('img');
    records.push({
      href: el.getAttribute('href') || '',
      id: el.getAttribute('data-image-id') || el.getAttribute('data-id') || '',
      imageUrl: img ? (img.getAttribute('src') || '') : '',
      srcset: img ? (img.getAttribute('srcset') || '') : '',
      width: img ? (img.naturalWidth || img.getAttribute('width') || null) : null,
      height: img ? (img.naturalHeight || img.getAttribute('height') || null) : null,
      caption: img ? (img.getAttribute('alt') || '') : '',
    });
  });
  return records;
}
"""

DOM_GALLERIES_SCRIPT = r"""
() => {
  const nodes = document.querySelectorAll(
    'a[href*="/collection/"], a[href*="/gallery/"], [data-collection-id]'
  );
  return Array.from(nodes).map((el) => {
    const img = el.querySelector('img');
    return {
      id: el.getAttribute('data-collection-id') || '',
      href: el.getAttribute('href') || '',
      name: (el.textContent || '').trim(),
      coverUrl: img ? (img.getAttribute('src') || '') : '',
    };
  });
}
"""

DOM_BLOG_SCRIPT = r"""
() => {
  const nodes = document.querySelectorAll('a[href*="/journal/"], article, [data-post-id]');
  return Array.from(nodes).map((el) => {
    const link = el.matches('a') ? el : el.querySelector('a[href*="/journal/"]');
    const heading = el.querySelector('h1, h2, h3, [role="heading"]');
    const time = el.querySelector('time[datetime], time, [class*="date"]');
    const body = el.querySelector('.content, [class*="content"], .body, [class*="body"]') || el;
    return {
      id: el.getAttribute('data-post-id') || '',
      href: link ? (link.getAttribute('href') || '') : '',
      title: heading ? (heading.textContent || '').trim() : '',
      publishedAt: time ? (time.getAttribute('datetime') || (time.textContent || '').trim()) : '',
      html: el.matches('a') ? '' : body.innerHTML,
    };
  });
}
"""

GALLERY_PHOTO_IDS_SCRIPT = r"""
() => {
  const ids = [];
  const add = (id) => { if (id && !ids.includes(id)) ids.push(id); };
  document.querySelectorAll('[data-photo-id], [data-id], [data-medusa-id]').forEach((el) => {
    add(
      el.getAttribute('data-photo-id') ||
      el.getAttribute('data-id') ||
      el.getAttribute('data-medusa-id')
    );
  });
  document.querySelectorAll('a[href*="/media/"]').forEach((el) => {
    const match = (el.getAttribute('href') || '').match(/\/media\/([a-zA-Z0-9]+)/);
    if (match) add(match[1]);
  });
  return ids;
}
"""

DOM_POST_SCRIPT = r"""
() => {
  const article = document.querySelector('article, .journal-post, [role="article"]');
  if (!article) return null;
  const heading = article.querySelector('h1, h2, [class*="title"]');
  const time = article.querySelector('time[datetime], time, [class*="date"]');
  const body = article.querySelector('.content, [class*="content"], .body, [class*="body"]') || article;
  return {
    title: heading ? (heading.textContent || '').trim() : '',
    publishedAt: time ? (time.getAttribute('datetime') || (time.textContent || '').trim()) : '',
    html: body.innerHTML,
  };
}
"""


class TerminalState(str, Enum):
    COMPLETE = "complete"
    EMPTY = "empty"
    NOT_FOUND = "not_found"
    PRIVATE = "private"
    FAILED = "failed"


@dataclass
class DiscoveryOptions:
    no_new_content_threshold: int = config.NO_NEW_CONTENT_THRESHOLD
    max_scroll_cycles: int = config.MAX_SCROLL_CYCLES
    max_items: Optional[int] = None
    nav_timeout_seconds: float = config.NAV_TIMEOUT_SECONDS
    scroll_settle_seconds: float = config.SCROLL_SETTLE_SECONDS
    subpage_ready_timeout_seconds: float = config.SUBPAGE_READY_TIMEOUT_SECONDS
    max_subpages: int = config.MAX_SUBPAGES
    headless: bool = True
    user_agent: str = config.USER_AGENT
    backup_root: Optional[Path] = None
    run_id: Optional[str] = None


@dataclass
class ScrollState:
    cycle: int = 0
    ids: Set[str] = field(default_factory=set)
    cycles_without_new: int = 0


@dataclass
class DiscoveryResult:
    username: str
    profile_url: str
    terminal_state: TerminalState
    photos: List[Photo] = field(default_factory=list)
    galleries: List[Gallery] = field(default_factory=list)
    blog_posts: List[BlogPost] = field(default_factory=list)
    blog_assets: List[BlogAsset] = field(default_factory=list)
    stopping_reason: Optional[str] = None
    error_message: Optional[str] = None
    scroll_cycles: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.photos or self.galleries or self.blog_posts)


def _any_visible(page: Any, selectors: tuple[str, ...]) -> bool:
    for selector in selectors:
        try:
            if page.locator(selector).first.is_visible():
                return True
        except PWError:
            continue
    return False


def wait_for_readiness(
    page: Any,
    timeout_seconds: float,
    *,
    groups: tuple[tuple[str, tuple[str, ...]], ...] = READINESS_GROUPS,
    poll_seconds: float = READINESS_POLL_SECONDS,
    clock: Callable[[], float] = time.monotonic,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Poll page markers until one group is visible or the timeout passes.

    Returns the winning group name, or ``timeout``. Never waits on network idle.
    """

    deadline = clock() + max(0.0, timeout_seconds)
    while True:
        for state, selectors in groups:
            if _any_visible(page, selectors):
                _scraper_event("discovery", phase="ready", state=state, logger=logger)
                return state
        if clock() >= deadline:
            _scraper_event("discovery", phase="ready", state=READY_TIMEOUT, logger=logger)
            return READY_TIMEOUT
        page.wait_for_timeout(int(poll_seconds * 1000))


def _navigate(
    page: Any,
    url: str,
    timeout_seconds: float,
    *,
    sleep: Optional[Callable[[float], None]],
    logger: Optional[logging.Logger],
) -> int:
    def attempt() -> int:
        _scraper_event("nav", step="goto", url=url, logger=logger)
        response = page.goto(url, timeout=timeout_seconds * 1000, wait_until="domcontentloaded")
        if response is None:
            raise RuntimeError("Navigation failed: no response received")
        status = int(response.status)
        if status == 404:
            return status
        if status >= 400:
            raise HttpStatusError(status, f"HTTP {status}: Failed to load profile")
        return status

    kwargs: dict[str, Any] = {"max_attempts": config.NAVIGATION_MAX_ATTEMPTS, "logger": logger}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return retry(attempt, **kwargs)


def _dom_records(page: Any, script: str) -> List[Any]:
    records = page.evaluate(script)
    return list(records) if isinstance(records, list) else []


def _collect_ids(page: Any, capture: NetworkCapture) -> Set[str]:
    ids: Set[str] = set()
    for payload in capture.payloads:
        ids |= collect_ids(payload.data)
    ids |= {str(i) for i in _dom_records(page, DOM_IDS_SCRIPT) if i}
    return ids


def _stopping_reason(state: ScrollState, options: DiscoveryOptions) -> str:
    if options.max_items is not None and len(state.ids) >= options.max_items:
        return f"Reached max items limit: {options.max_items}"
    if state.cycle >= options.max_scroll_cycles:
        return f"Reached max scroll cycles: {options.max_scroll_cycles}"
    return f"No new content for {options.no_new_content_threshold} consecutive cycles"


def scroll_until_stable(
    page: Any,
    capture: NetworkCapture,
    options: DiscoveryOptions,
    *,
    logger: Optional[logging.Logger] = None,
) -> ScrollState:
    """Scroll to the bottom repeatedly until no new IDs appear or a cap is hit."""

    state = ScrollState()
    max_cycles = max(1, options.max_scroll_cycles)
    while (
        state.cycle < max_cycles
        and state.cycles_without_new < options.no_new_content_threshold
        and (options.max_items is None or len(state.ids) < options.max_items)
    ):
        state.cycle += 1
        page.evaluate(SCROLL_SCRIPT)
        page.wait_for_timeout(int(options.scroll_settle_seconds * 1000))

        before = len(state.ids)
        state.ids |= _collect_ids(page, capture)
        added = len(state.ids) - before
        if added == 0:
            state.cycles_without_new += 1
        else:
            state.cycles_without_new = 0
        _scraper_event(
            "discovery",
            phase="scroll",
            cycle=state.cycle,
            new_ids=added,
            total_ids=len(state.ids),
            idle_cycles=state.cycles_without_new,
            logger=logger,
        )
    return state


def _records(page: Any, script: str) -> List[Dict[str, Any]]:
    return [dict(r) for r in _dom_records(page, script) if isinstance(r, dict)]


def _extract_photos(
    page: Any,
    capture: NetworkCapture,
    *,
    max_items: Optional[int],
    logger: Optional[logging.Logger],
) -> List[Photo]:
    candidates: List[PhotoCandidate] = []
    for payload in capture.payloads:
        candidates.extend(collect_photo_candidates(payload.data))
    candidates.extend(photo_candidate_from_dom(r) for r in _records(page, DOM_PHOTOS_SCRIPT))

    photos = build_photos(candidates, captured_at=utc_now_iso(), logger=logger)
    if max_items is not None:
        photos = photos[:max_items]
    return photos


def _subpage_url(href: Any) -> Optional[str]:
    """Absolute profile-host URL for ``href``, or ``None`` when it points elsewhere."""

    if not isinstance(href, str) or not href.strip():
        return None
    url, _ = urldefrag(urljoin(f"{config.PROFILE_BASE_URL}/", href.strip()))
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not is_profile_host(parts.hostname or ""):
        return None
    return url


def _open_subpage(
    page: Any,
    url: str,
    selectors: tuple[str, ...],
    options: DiscoveryOptions,
    *,
    sleep: Optional[Callable[[float], None]],
    clock: Callable[[], float],
    logger: Optional[logging.Logger],
) -> bool:
    """Navigate to ``url`` and wait for ``selectors``. False when there is nothing to read."""

    try:
        status = _navigate(page, url, options.nav_timeout_seconds, sleep=sleep, logger=logger)
    except Exception as exc:  # noqa: BLE001
        log_line(f"Could not load {url}: {exc}", level=logging.WARNING, logger=logger)
        _scraper_event("error", phase="subpage", url=url, error=str(exc), logger=logger)
        return False
    if status == 404:
        _scraper_event("discovery", phase="subpage", url=url, state=READY_NOT_FOUND, logger=logger)
        return False

    ready = wait_for_readiness(
        page,
        options.subpage_ready_timeout_seconds,
        groups=_subpage_groups(selectors),
        clock=clock,
        logger=logger,
    )
    return ready in (READY_CONTENT, READY_TIMEOUT)


def collect_gallery_members(
    page: Any,
    gallery_records: List[Dict[str, Any]],
    options: DiscoveryOptions,
    *,
    sleep: Optional[Callable[[float], None]] = None,
    clock: Callable[[], float] = time.monotonic,
    logger: Optional[logging.Logger] = None,
) -> List[Dict[str, Any]]:
    """Visit each gallery page and store the photo IDs it shows under ``photoIds``.

    A gallery that fails to load keeps whatever membership it already had.
    """

    visited: Set[str] = set()
    for record in gallery_records:
        url = _subpage_url(record.get("href"))
        if url is None or url in visited:
            continue
        if len(visited) >= options.max_subpages:
            log_line(
                f"Gallery page limit reached ({options.max_subpages}); remaining galleries keep "
                "their known membership",
                level=logging.WARNING,
                logger=logger,
            )
            break
        visited.add(url)
        if not _open_subpage(
            page, url, GALLERY_PHOTO_SELECTORS, options, sleep=sleep, clock=clock, logger=logger
        ):
            continue
        try:
            ids = [str(i) for i in _dom_records(page, GALLERY_PHOTO_IDS_SCRIPT) if i]
        except PWError as exc:
            _scraper_event("error", phase="gallery_members", url=url, error=str(exc), logger=logger)
            continue
        known = [pid for pid in record.get("photoIds") or [] if isinstance(pid, str)]
        record["photoIds"] = list(dict.fromkeys(known + ids))
        _scraper_event("discovery", phase="gallery_members", url=url, photos=len(ids), logger=logger)
    return gallery_records


def collect_journal_records(
    page: Any,
    username: str,
    options: DiscoveryOptions,
    *,
    sleep: Optional[Callable[[float], None]] = None,
    clock: Callable[[], float] = time.monotonic,
    logger: Optional[logging.Logger] = None,
) -> List[Dict[str, Any]]:
    """Read the journal index, then each post page for its full content."""

    journal_url = config.profile_journal_url(username)
    if not _open_subpage(
        page, journal_url, JOURNAL_SELECTORS, options, sleep=sleep, clock=clock, logger=logger
    ):
        return []
    try:
        entries = _records(page, DOM_BLOG_SCRIPT)
    except PWError as exc:
        _scraper_event("error", phase="journal", url=journal_url, error=str(exc), logger=logger)
        return []

    records: List[Dict[str, Any]] = []
    visited: Set[str] = set()
    for entry in entries:
        url = _subpage_url(entry.get("href"))
        if url is None or "/journal/" not in url or url in visited:
            records.append(entry)
            continue
        if len(visited) >= options.max_subpages:
            records.append(entry)
            continue
        visited.add(url)
        if _open_subpage(page, url, POST_SELECTORS, options, sleep=sleep, clock=clock, logger=logger):
            try:
                post = page.evaluate(DOM_POST_SCRIPT)
            except PWError as exc:
                _scraper_event("error", phase="journal_post", url=url, error=str(exc), logger=logger)
                post = None
            if isinstance(post, dict):
                entry.update({key: value for key, value in post.items() if value})
        records.append(entry)

    _scraper_event(
        "discovery", phase="journal", entries=len(entries), posts_opened=len(visited), logger=logger
    )
    return records


def _discover_on_page(
    page: Any,
    username: str,
    options: DiscoveryOptions,
    *,
    slug_registry: Optional[MutableMapping[str, str]],
    sleep: Optional[Callable[[float], None]],
    clock: Callable[[], float],
    logger: Optional[logging.Logger],
) -> DiscoveryResult:
    url = config.profile_gallery_url(username)
    capture = NetworkCapture(logger=logger)

    try:
        capture.attach(page)
        status = _navigate(page, url, options.nav_timeout_seconds, sleep=sleep, logger=logger)
        if status == 404:
            log_line(f"Profile not found: {username}", level=logging.WARNING, logger=logger)
            return DiscoveryResult(
                username, url, TerminalState.NOT_FOUND, error_message="Profile not found"
            )

        ready = wait_for_readiness(page, options.nav_timeout_seconds, clock=clock, logger=logger)
        if ready == READY_PRIVATE:
            log_line(f"Profile is private or suspended: {username}", level=logging.WARNING, logger=logger)
            return DiscoveryResult(
                username, url, TerminalState.PRIVATE, error_message="Profile is private or suspended"
            )
        if ready == READY_NOT_FOUND:
            log_line(f"Profile not found: {username}", level=logging.WARNING, logger=logger)
            return DiscoveryResult(
                username, url, TerminalState.NOT_FOUND, error_message="Profile not found"
            )

        scroll = scroll_until_stable(page, capture, options, logger=logger)
        reason = _stopping_reason(scroll, options)
        log_line(f"Stopping reason: {reason}", level=logging.DEBUG, logger=logger)

        photos = _extract_photos(page, capture, max_items=options.max_items, logger=logger)
        gallery_records = _records(page, DOM_GALLERIES_SCRIPT)
        blog_records = _records(page, DOM_BLOG_SCRIPT)

        subpage_kwargs: dict[str, Any] = {"sleep": sleep, "clock": clock, "logger": logger}
        gallery_records = collect_gallery_members(page, gallery_records, options, **subpage_kwargs)
        # Journal records carry full post bodies, so they win over profile-page teasers.
        journal_records = collect_journal_records(page, username, options, **subpage_kwargs)

        galleries = build_galleries(gallery_records, logger=logger)
        blog = build_blog_posts(
            journal_records + blog_records, slug_registry=slug_registry, logger=logger
        )
        posts, assets = blog.posts, blog.assets
    except Exception as exc:  # noqa: BLE001
        message = str(exc)
        log_line(f"Profile discovery failed: {message}", level=logging.ERROR, logger=logger)
        _scraper_event("error", phase="discovery", url=url, error=message, logger=logger)
        if options.backup_root is not None and options.run_id:
            capture_artifacts(page, options.backup_root, "discovery", options.run_id, logger=logger)
        return DiscoveryResult(username, url, TerminalState.FAILED, error_message=message)

    result = DiscoveryResult(
        username=username,
        profile_url=url,
        terminal_state=TerminalState.COMPLETE,
        photos=photos,
        galleries=galleries,
        blog_posts=posts,
        blog_assets=assets,
        stopping_reason=reason,
        scroll_cycles=scroll.cycle,
    )
    if result.is_empty:
        result.terminal_state = TerminalState.EMPTY
    log_line(
        f"Discovery complete: {len(photos)} photos, {len(galleries)} galleries, "
        f"{len(posts)} blog posts",
        logger=logger,
    )
    return result


def discover_profile(
    username: str,
    options: Optional[DiscoveryOptions] = None,
    *,
    page: Any = None,
    session_factory: Callable[..., BrowserSession] = BrowserSession,
    slug_registry: Optional[MutableMapping[str, str]] = None,
    sleep: Optional[Callable[[float], None]] = None,
    clock: Callable[[], float] = time.monotonic,
    logger: Optional[logging.Logger] = None,
) -> DiscoveryResult:
    """Discover the content of ``username``'s profile.

    When ``page`` is given it is used as-is and left open for the caller (the
    download fallback reuses it). Otherwise a browser session is opened for the
    duration of the call.
    """

    options = options or DiscoveryOptions()
    log_line(f"Discovering profile: {username}", logger=logger)
    kwargs: dict[str, Any] = {
        "slug_registry": slug_registry,
        "sleep": sleep,
        "clock": clock,
        "logger": logger,
    }

    if page is not None:
        return _discover_on_page(page, username, options, **kwargs)

    try:
        with session_factory(
            headless=options.headless, user_agent=options.user_agent, logger=logger
        ) as session:
            return _discover_on_page(session.page, username, options, **kwargs)
    except Exception as exc:  # noqa: BLE001
        message = f"Browser session failed: {exc}"
        log_line(message, level=logging.ERROR, logger=logger)
        return DiscoveryResult(
            username,
            config.profile_gallery_url(username),
            TerminalState.FAILED,
            error_message=message,
        )


__all__ = [
    "CONTENT_SELECTORS",
    "PRIVATE_SELECTORS",
    "NOT_FOUND_SELECTORS",
    "EMPTY_SELECTORS",
    "GALLERY_PHOTO_SELECTORS",
    "JOURNAL_SELECTORS",
    "POST_SELECTORS",
    "TerminalState",
    "DiscoveryOptions",
    "ScrollState",
    "DiscoveryResult",
    "wait_for_readiness",
    "scroll_until_stable",
    "collect_gallery_members",
    "collect_journal_records",
    "discover_profile",
]
