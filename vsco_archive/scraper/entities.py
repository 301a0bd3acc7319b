"""Turn raw discovery records into manifest entities.

Raw records come from two places: intercepted JSON payloads and DOM snapshots
returned by ``page.evaluate``. Both are plain dicts; anything missing or
malformed is skipped with a logged reason rather than raised.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, MutableMapping, Optional

from . import paths
from .blog import BlogAsset, normalize_blog_html, normalize_published_at
from .logging_utils import _scraper_event
from .manifest import BlogPost, Gallery, Photo
from .urls import (
    ImageCandidate,
    NormalizeOk,
    generate_stable_id,
    normalize_asset_url,
    parse_srcset,
    select_highest_resolution,
)
from .utils import utc_now_iso

MEDIA_ID_RE = re.compile(r"/media/([a-zA-Z0-9]+)")
GALLERY_ID_RE = re.compile(r"/(collection|gallery)/([a-zA-Z0-9]+)")
JOURNAL_ID_RE = re.compile(r"/journal/([a-zA-Z0-9-]+)")


@dataclass
class PhotoCandidate:
    """A photo sighting before URL selection and normalisation."""

    id: Optional[str]
    image_url: Optional[str] = None
    srcset: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    caption: Optional[str] = None
    gallery_id: Optional[str] = None
    permalink: Optional[str] = None
    source: str = "dom"


@dataclass
class BlogEntities:
    posts: List[BlogPost] = field(default_factory=list)
    assets: List[BlogAsset] = field(default_factory=list)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def media_id_from_href(href: Optional[str]) -> Optional[str]:
    match = MEDIA_ID_RE.search(href or "")
    return match.group(1) if match else None


def gallery_id_from_href(href: Optional[str]) -> Optional[str]:
    match = GALLERY_ID_RE.search(href or "")
    return match.group(2) if match else None


def journal_id_from_href(href: Optional[str]) -> Optional[str]:
    match = JOURNAL_ID_RE.search(href or "")
    return match.group(1) if match else None


def photo_candidate_from_dom(record: Mapping[str, Any]) -> PhotoCandidate:
    href = _as_text(record.get("href"))
    return PhotoCandidate(
        id=_as_text(record.get("id")) or media_id_from_href(href),
        image_url=_as_text(record.get("imageUrl")),
        srcset=_as_text(record.get("srcset")),
        width=_as_int(record.get("width")),
        height=_as_int(record.get("height")),
        caption=_as_text(record.get("caption")),
        gallery_id=_as_text(record.get("galleryId")),
        permalink=href,
        source="dom",
    )


def _best_url(candidate: PhotoCandidate) -> Optional[ImageCandidate]:
    options: List[ImageCandidate] = parse_srcset(candidate.srcset)
    if candidate.image_url:
        options.append(
            ImageCandidate(url=candidate.image_url, width=candidate.width, height=candidate.height)
        )
    return select_highest_resolution(options)


def build_photos(
    candidates: Iterable[PhotoCandidate],
    *,
    captured_at: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> List[Photo]:
    """Select, normalise and de-duplicate photo sightings (first sighting wins)."""

    captured_at = captured_at or utc_now_iso()
    photos: List[Photo] = []
    seen: set[str] = set()

    for candidate in candidates:
        best = _best_url(candidate)
        if best is None:
            _scraper_event(
                "discovery",
                phase="skip_photo",
                id=candidate.id,
                reason="no image candidates",
                source=candidate.source,
                logger=logger,
            )
            continue

        result = normalize_asset_url(best.url)
        if not isinstance(result, NormalizeOk):
            _scraper_event(
                "discovery",
                phase="skip_photo",
                id=candidate.id,
                reason=result.reason,
                input=result.input,
                source=candidate.source,
                logger=logger,
            )
            continue

        photo_id = generate_stable_id(candidate.id, result.url, prefix="photo")
        if photo_id in seen:
            continue
        seen.add(photo_id)
        photos.append(
            Photo(
                id=photo_id,
                url_highres=result.url,
                downloaded_at=captured_at,
                width=best.width if best.width is not None else candidate.width,
                height=best.height if best.height is not None else candidate.height,
                caption=candidate.caption,
                source_gallery_id=candidate.gallery_id,
            )
        )
    return photos


def build_galleries(
    records: Iterable[Mapping[str, Any]],
    *,
    logger: Optional[logging.Logger] = None,
) -> List[Gallery]:
    galleries: List[Gallery] = []
    seen: set[str] = set()

    for record in records:
        href = _as_text(record.get("href"))
        gallery_id = _as_text(record.get("id")) or gallery_id_from_href(href)
        if not gallery_id:
            if href:
                gallery_id = generate_stable_id(None, href, prefix="gallery")
            else:
                continue
        if gallery_id in seen:
            continue
        seen.add(gallery_id)

        cover_url: Optional[str] = None
        raw_cover = _as_text(record.get("coverUrl"))
        if raw_cover:
            cover = normalize_asset_url(raw_cover)
            if isinstance(cover, NormalizeOk):
                cover_url = cover.url
            else:
                # Cover art is optional; the gallery itself is kept.
                _scraper_event(
                    "discovery",
                    phase="skip_cover",
                    id=gallery_id,
                    reason=cover.reason,
                    logger=logger,
                )

        photo_ids = [pid for pid in record.get("photoIds") or [] if isinstance(pid, str) and pid]
        galleries.append(
            Gallery(
                id=gallery_id,
                name=_as_text(record.get("name")) or f"Gallery {gallery_id}",
                photo_ids=list(dict.fromkeys(photo_ids)),
                description=_as_text(record.get("description")),
                cover_photo_url=cover_url,
            )
        )
    return galleries


def build_blog_posts(
    records: Iterable[Mapping[str, Any]],
    *,
    slug_registry: Optional[MutableMapping[str, str]] = None,
    logger: Optional[logging.Logger] = None,
) -> BlogEntities:
    """Build journal posts with sanitised HTML and collect their embedded assets.

    ``slug_registry`` should be pre-seeded with slugs already owned by archived
    posts so a re-run never hands an existing slug to a different post.
    """

    registry: MutableMapping[str, str] = slug_registry if slug_registry is not None else {}
    entities = BlogEntities()
    seen_posts: set[str] = set()
    seen_assets: set[str] = set()

    for record in records:
        href = _as_text(record.get("href"))
        post_id = _as_text(record.get("id")) or journal_id_from_href(href)
        if not post_id:
            if not href:
                continue
            post_id = generate_stable_id(None, href, prefix="post")
        if post_id in seen_posts:
            continue
        seen_posts.add(post_id)

        title = _as_text(record.get("title")) or f"Post {post_id}"
        normalized = normalize_blog_html(_as_text(record.get("html")) or "")
        entities.posts.append(
            BlogPost(
                id=post_id,
                slug=paths.generate_slug(title, post_id, registry),
                title=title,
                content_html=normalized.html,
                published_at=normalize_published_at(_as_text(record.get("publishedAt"))),
            )
        )
        for asset in normalized.assets:
            if asset.media_id not in seen_assets:
                seen_assets.add(asset.media_id)
                entities.assets.append(asset)

        _scraper_event(
            "discovery",
            phase="blog_post",
            id=post_id,
            assets=len(normalized.assets),
            logger=logger,
        )
    return entities


__all__ = [
    "PhotoCandidate",
    "BlogEntities",
    "media_id_from_href",
    "gallery_id_from_href",
    "journal_id_from_href",
    "photo_candidate_from_dom",
    "build_photos",
    "build_galleries",
    "build_blog_posts",
]
