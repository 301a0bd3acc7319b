"""Diff discovered content against the manifest and the media directory."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from . import paths
from .blog import BlogAsset
from .logging_utils import _scraper_event
from .manifest import Manifest, Photo

PHOTO = "photo"
BLOG_ASSET = "blog-asset"

FILE_OK = "ok"
FILE_MISSING = "missing"
FILE_INVALID = "invalid"


@dataclass
class IncrementalOptions:
    expected_sizes: Mapping[str, int] = field(default_factory=dict)
    content_types: Mapping[str, str] = field(default_factory=dict)
    filenames: Mapping[str, str] = field(default_factory=dict)


@dataclass
class IncrementalResult:
    new_items: List[Photo] = field(default_factory=list)
    missing_items: List[Photo] = field(default_factory=list)
    invalid_items: List[Photo] = field(default_factory=list)


def media_path_for(backup_root: Path, media_id: str, options: IncrementalOptions) -> Path:
    filename = options.filenames.get(media_id) or paths.generate_media_filename(
        media_id, options.content_types.get(media_id)
    )
    return paths.get_media_path(backup_root, filename)


def classify_local_file(path: Path, expected_size: Optional[int] = None) -> str:
    """Return ``ok``, ``missing`` or ``invalid`` for a captured media file."""

    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return FILE_MISSING
    except OSError:
        return FILE_INVALID

    if size == 0:
        return FILE_INVALID
    if expected_size is not None and expected_size > 0 and size != expected_size:
        return FILE_INVALID
    return FILE_OK


def detect_incremental_photos(
    backup_root: Path,
    discovered: Iterable[Photo],
    manifest: Manifest,
    options: Optional[IncrementalOptions] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> IncrementalResult:
    """Split work into new, missing and invalid photos. Intact files are skipped."""

    options = options or IncrementalOptions()
    result = IncrementalResult()
    known = manifest.photo_ids()

    queued_new: set[str] = set()
    for photo in discovered:
        if photo.id not in known and photo.id not in queued_new:
            queued_new.add(photo.id)
            result.new_items.append(photo)

    for photo in manifest.content.photos:
        state = classify_local_file(
            media_path_for(backup_root, photo.id, options),
            options.expected_sizes.get(photo.id),
        )
        if state == FILE_MISSING:
            result.missing_items.append(photo)
        elif state == FILE_INVALID:
            result.invalid_items.append(photo)

    _scraper_event(
        "incremental",
        phase="detect",
        new=len(result.new_items),
        missing=len(result.missing_items),
        invalid=len(result.invalid_items),
        logger=logger,
    )
    return result


@dataclass
class QueueItem:
    url: str
    media_id: str
    kind: str
    category: str
    content_type: Optional[str] = None
    expected_size: Optional[int] = None

    @property
    def filename(self) -> str:
        return paths.generate_media_filename(
            self.media_id, self.content_type or paths.DEFAULT_CONTENT_TYPE
        )


@dataclass
class QueueStats:
    new: int = 0
    missing: int = 0
    invalid: int = 0

    @property
    def total(self) -> int:
        return self.new + self.missing + self.invalid


@dataclass
class QueueResult:
    queue: List[QueueItem] = field(default_factory=list)
    stats: QueueStats = field(default_factory=QueueStats)


def build_download_queue(
    photos: IncrementalResult,
    blog_assets: Iterable[BlogAsset] = (),
    *,
    content_types: Optional[Mapping[str, str]] = None,
    expected_sizes: Optional[Mapping[str, int]] = None,
    backup_root: Optional[Path] = None,
) -> QueueResult:
    """Merge photo work and blog assets into one queue, de-duplicated by media ID.

    The first occurrence of an ID wins, in the order new, missing, invalid, blog
    assets. Blog assets count as new. When ``backup_root`` is given, blog assets
    whose local file is already intact are left out.
    """

    content_types = content_types or {}
    expected_sizes = expected_sizes or {}
    result = QueueResult()
    seen: set[str] = set()
    counters: Dict[str, int] = {"new": 0, "missing": 0, "invalid": 0}

    def add(url: str, media_id: str, kind: str, category: str, content_type: Optional[str]) -> None:
        if media_id in seen:
            return
        seen.add(media_id)
        result.queue.append(
            QueueItem(
                url=url,
                media_id=media_id,
                kind=kind,
                category=category,
                content_type=content_type or content_types.get(media_id),
                expected_size=expected_sizes.get(media_id),
            )
        )
        counters[category] += 1

    for photo in photos.new_items:
        add(photo.url_highres, photo.id, PHOTO, "new", None)
    for photo in photos.missing_items:
        add(photo.url_highres, photo.id, PHOTO, "missing", None)
    for photo in photos.invalid_items:
        add(photo.url_highres, photo.id, PHOTO, "invalid", None)
    for asset in blog_assets:
        if backup_root is not None and classify_local_file(
            paths.get_media_path(backup_root, asset.filename)
        ) == FILE_OK:
            continue
        add(asset.url, asset.media_id, BLOG_ASSET, "new", asset.content_type)

    result.stats = QueueStats(**counters)
    return result


__all__ = [
    "PHOTO",
    "BLOG_ASSET",
    "IncrementalOptions",
    "IncrementalResult",
    "media_path_for",
    "classify_local_file",
    "detect_incremental_photos",
    "QueueItem",
    "QueueStats",
    "QueueResult",
    "build_download_queue",
]
