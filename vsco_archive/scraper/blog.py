"""Offline normalisation of journal post HTML."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from . import paths
from .urls import NormalizeOk, normalize_asset_url, url_hash

_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")

_DATE_FORMATS: Iterable[str] = (
    "%Y-%m-%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%m/%d/%Y",
)

_EXTENSION_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


@dataclass(frozen=True)
class BlogAsset:
    media_id: str
    url: str
    content_type: str = paths.DEFAULT_CONTENT_TYPE

    @property
    def filename(self) -> str:
        return paths.generate_media_filename(self.media_id, self.content_type)


@dataclass
class NormalizedBlogHtml:
    html: str
    assets: List[BlogAsset] = field(default_factory=list)


def blog_asset_id(normalized_url: str) -> str:
    return f"blog-{url_hash(normalized_url)}"


def guess_content_type(url: str) -> str:
    """Guess an image content type from the URL path extension (JPEG by default)."""

    path = urlsplit(url).path.lower()
    ext = path.rsplit(".", 1)[-1] if "." in path.rsplit("/", 1)[-1] else ""
    return _EXTENSION_CONTENT_TYPES.get(ext, paths.DEFAULT_CONTENT_TYPE)


def _strip_active_content(soup: BeautifulSoup) -> None:
    for tag in soup.find_all(["script", "noscript"]):
        tag.decompose()
    for tag in soup.find_all("link"):
        rel = tag.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "stylesheet" in [r.lower() for r in rel]:
            tag.decompose()

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower().startswith("on"):
                del tag[attr]
        for attr in ("href", "src"):
            value = tag.get(attr)
            if isinstance(value, str) and value.strip().lower().startswith("javascript:"):
                if attr == "href":
                    tag[attr] = "#"
                else:
                    del tag[attr]


def normalize_blog_html(html: Optional[str]) -> NormalizedBlogHtml:
    """Sanitise ``html`` and point embedded images at their local media files.

    Scripts, ``noscript`` blocks, stylesheet links, ``on*`` handlers and
    ``javascript:`` URLs are removed. Every remote ``img[src]`` is rewritten to
    ``../../.vsco-backup/media/blog-<hash>.<ext>`` and reported as an asset so
    the download queue can fetch it. ``data:`` images are left in place.
    """

    if not html or not html.strip():
        return NormalizedBlogHtml(html="")

    soup = BeautifulSoup(html, "html5lib")
    _strip_active_content(soup)

    assets: List[BlogAsset] = []
    seen: set[str] = set()
    for img in soup.find_all("img"):
        src = img.get("src")
        if not isinstance(src, str) or not src.strip():
            continue
        if src.strip().lower().startswith("data:"):
            continue
        result = normalize_asset_url(src)
        if not isinstance(result, NormalizeOk):
            del img["src"]
            continue
        asset = BlogAsset(
            media_id=blog_asset_id(result.url),
            url=result.url,
            content_type=guess_content_type(result.url),
        )
        img["src"] = paths.media_href_from_page(asset.filename)
        if img.has_attr("srcset"):
            del img["srcset"]
        if asset.media_id not in seen:
            seen.add(asset.media_id)
            assets.append(asset)

    body = soup.body
    rendered = body.decode_contents() if body is not None else str(soup)
    return NormalizedBlogHtml(html=rendered.strip(), assets=assets)


def normalize_published_at(value: Optional[str], *, now: Optional[datetime] = None) -> str:
    """Return ``value`` as ISO 8601, falling back to ``now`` when unparseable."""

    fallback = (now or datetime.now(timezone.utc)).isoformat(timespec="milliseconds")
    fallback = fallback.replace("+00:00", "Z")

    candidate = (value or "").strip()
    if not candidate:
        return fallback
    if _ISO_PREFIX.match(candidate):
        return candidate

    for fmt in _DATE_FORMATS:
        try:
            parsed = datetime.strptime(candidate, fmt).replace(tzinfo=timezone.utc)
            return parsed.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        except ValueError:
            continue

    try:
        parsed = parsedate_to_datetime(candidate)
    except (TypeError, ValueError):
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = [
    "BlogAsset",
    "NormalizedBlogHtml",
    "blog_asset_id",
    "guess_content_type",
    "normalize_blog_html",
    "normalize_published_at",
]
