"""Persistent archive manifest: schema, validation and atomic IO.

The manifest lives at ``<root>/.vsco-backup/manifest.json`` and is the only
record of what has been captured. Everything here is append-only: runs are
added, entities are added, gallery membership grows. Nothing is removed.
"""
from __future__ import annotations

import json
import logging
import secrets
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from . import config, paths
from .logging_utils import _scraper_event
from .utils import atomic_write_json, log_line, utc_now_iso


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ManifestError(ValueError):
    """Raised when a manifest document does not match the schema."""


def _require(obj: Mapping[str, Any], key: str, kind: type, where: str) -> Any:
    value = obj.get(key)
    # bool is an int subclass; counts must be real numbers
    if not isinstance(value, kind) or (kind in (int, float) and isinstance(value, bool)):
        raise ManifestError(f"{where}.{key} must be {kind.__name__}")
    return value


def _optional(obj: Mapping[str, Any], key: str, kind: Any, where: str) -> Any:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ManifestError(f"{where}.{key} has the wrong type")
    return value


def _mapping(value: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ManifestError(f"{where} must be an object")
    return value


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


@dataclass
class Profile:
    username: str
    profile_url: str
    last_backup_ts: str
    backup_version: str = config.SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "profile_url": self.profile_url,
            "last_backup_ts": self.last_backup_ts,
            "backup_version": self.backup_version,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Profile":
        obj = _mapping(data, "profile")
        return cls(
            username=_require(obj, "username", str, "profile"),
            profile_url=_require(obj, "profile_url", str, "profile"),
            last_backup_ts=_require(obj, "last_backup_ts", str, "profile"),
            backup_version=_require(obj, "backup_version", str, "profile"),
        )


@dataclass
class Photo:
    id: str
    url_highres: str
    downloaded_at: str
    width: Optional[int] = None
    height: Optional[int] = None
    caption: Optional[str] = None
    source_gallery_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "url_highres": self.url_highres,
                "width": self.width,
                "height": self.height,
                "caption": self.caption,
                "source_gallery_id": self.source_gallery_id,
                "downloaded_at": self.downloaded_at,
            }
        )

    @classmethod
    def from_dict(cls, data: Any) -> "Photo":
        obj = _mapping(data, "photo")
        return cls(
            id=_require(obj, "id", str, "photo"),
            url_highres=_require(obj, "url_highres", str, "photo"),
            downloaded_at=_require(obj, "downloaded_at", str, "photo"),
            width=_optional(obj, "width", (int, float), "photo"),
            height=_optional(obj, "height", (int, float), "photo"),
            caption=_optional(obj, "caption", str, "photo"),
            source_gallery_id=_optional(obj, "source_gallery_id", str, "photo"),
        )


@dataclass
class Gallery:
    id: str
    name: str
    photo_ids: List[str] = field(default_factory=list)
    description: Optional[str] = None
    cover_photo_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "name": self.name,
                "description": self.description,
                "cover_photo_url": self.cover_photo_url,
                "photo_ids": list(self.photo_ids),
            }
        )

    @classmethod
    def from_dict(cls, data: Any) -> "Gallery":
        obj = _mapping(data, "gallery")
        photo_ids = _require(obj, "photo_ids", list, "gallery")
        if not all(isinstance(pid, str) for pid in photo_ids):
            raise ManifestError("gallery.photo_ids must contain strings")
        return cls(
            id=_require(obj, "id", str, "gallery"),
            name=_require(obj, "name", str, "gallery"),
            photo_ids=list(photo_ids),
            description=_optional(obj, "description", str, "gallery"),
            cover_photo_url=_optional(obj, "cover_photo_url", str, "gallery"),
        )


@dataclass
class BlogPost:
    id: str
    slug: str
    title: str
    content_html: str
    published_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "content_html": self.content_html,
            "published_at": self.published_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "BlogPost":
        obj = _mapping(data, "blog_post")
        return cls(
            id=_require(obj, "id", str, "blog_post"),
            slug=_require(obj, "slug", str, "blog_post"),
            title=_require(obj, "title", str, "blog_post"),
            content_html=_require(obj, "content_html", str, "blog_post"),
            published_at=_require(obj, "published_at", str, "blog_post"),
        )


@dataclass
class RobotsPolicy:
    allowed: bool
    reason: str
    fetch_success: bool
    ignored: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "fetch_success": self.fetch_success,
            "ignored": self.ignored,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "RobotsPolicy":
        obj = _mapping(data, "robots_policy")
        return cls(
            allowed=_require(obj, "allowed", bool, "robots_policy"),
            reason=_require(obj, "reason", str, "robots_policy"),
            fetch_success=_require(obj, "fetch_success", bool, "robots_policy"),
            ignored=_require(obj, "ignored", bool, "robots_policy"),
        )


@dataclass
class RunCounts:
    new_content_count: int = 0
    missing_content_count: int = 0
    invalid_content_count: int = 0
    downloaded_items: List[str] = field(default_factory=list)


@dataclass
class BackupRun:
    run_id: str
    ts: str
    new_content_count: int = 0
    missing_content_count: int = 0
    invalid_content_count: int = 0
    downloaded_items: List[str] = field(default_factory=list)
    status: RunStatus = RunStatus.SUCCESS
    error_message: Optional[str] = None
    robots_policy: Optional[RobotsPolicy] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "run_id": self.run_id,
                "ts": self.ts,
                "new_content_count": self.new_content_count,
                "missing_content_count": self.missing_content_count,
                "invalid_content_count": self.invalid_content_count,
                "downloaded_items": list(self.downloaded_items),
                "status": RunStatus(self.status).value,
                "error_message": self.error_message,
                "robots_policy": self.robots_policy.to_dict() if self.robots_policy else None,
            }
        )

    @classmethod
    def from_dict(cls, data: Any) -> "BackupRun":
        obj = _mapping(data, "backup_run")
        status_value = _require(obj, "status", str, "backup_run")
        try:
            status = RunStatus(status_value)
        except ValueError as exc:
            raise ManifestError(f"backup_run.status {status_value!r} is not recognised") from exc
        downloaded = _require(obj, "downloaded_items", list, "backup_run")
        robots = obj.get("robots_policy")
        return cls(
            run_id=_require(obj, "run_id", str, "backup_run"),
            ts=_require(obj, "ts", str, "backup_run"),
            new_content_count=_require(obj, "new_content_count", int, "backup_run"),
            missing_content_count=_require(obj, "missing_content_count", int, "backup_run"),
            invalid_content_count=_require(obj, "invalid_content_count", int, "backup_run"),
            downloaded_items=[str(item) for item in downloaded],
            status=status,
            error_message=_optional(obj, "error_message", str, "backup_run"),
            robots_policy=RobotsPolicy.from_dict(robots) if robots is not None else None,
        )


@dataclass
class BackupContent:
    photos: List[Photo] = field(default_factory=list)
    galleries: List[Gallery] = field(default_factory=list)
    blog_posts: List[BlogPost] = field(default_factory=list)


@dataclass
class Manifest:
    profile: Profile
    content: BackupContent = field(default_factory=BackupContent)
    backup_runs: List[BackupRun] = field(default_factory=list)
    schema_version: str = config.SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "profile": self.profile.to_dict(),
            "content": {
                "photos": [photo.to_dict() for photo in self.content.photos],
                "galleries": [gallery.to_dict() for gallery in self.content.galleries],
                "blog_posts": [post.to_dict() for post in self.content.blog_posts],
            },
            "backup_runs": [run.to_dict() for run in self.backup_runs],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Manifest":
        obj = _mapping(data, "manifest")
        schema_version = _require(obj, "schemaVersion", str, "manifest")
        content = _mapping(obj.get("content"), "content")
        photos = _require(content, "photos", list, "content")
        galleries = _require(content, "galleries", list, "content")
        blog_posts = _require(content, "blog_posts", list, "content")
        runs = _require(obj, "backup_runs", list, "manifest")
        return cls(
            schema_version=schema_version,
            profile=Profile.from_dict(obj.get("profile")),
            content=BackupContent(
                photos=[Photo.from_dict(item) for item in photos],
                galleries=[Gallery.from_dict(item) for item in galleries],
                blog_posts=[BlogPost.from_dict(item) for item in blog_posts],
            ),
            backup_runs=[BackupRun.from_dict(item) for item in runs],
        )

    def find_run(self, run_id: str) -> Optional[BackupRun]:
        for run in self.backup_runs:
            if run.run_id == run_id:
                return run
        return None

    def photo_ids(self) -> set[str]:
        return {photo.id for photo in self.content.photos}


def new_manifest(username: str, profile_url: str) -> Manifest:
    return Manifest(
        profile=Profile(
            username=username,
            profile_url=profile_url,
            last_backup_ts=utc_now_iso(),
            backup_version=config.SCHEMA_VERSION,
        )
    )


def read_manifest(backup_root: Path) -> Manifest:
    """Read and validate the manifest; raise on a missing or invalid file."""

    manifest_path = paths.get_manifest_path(backup_root)
    with manifest_path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    return Manifest.from_dict(data)


def _set_aside_invalid(manifest_path: Path, logger: Optional[logging.Logger]) -> None:
    # Keep the unreadable file next to the fresh one so nothing is silently lost.
    stamp = time.strftime("%Y%m%d_%H%M%S", time.gmtime())
    target = manifest_path.with_name(f"{manifest_path.stem}.invalid-{stamp}.json")
    try:
        shutil.copy2(manifest_path, target)
        log_line(
            f"[MANIFEST] Invalid manifest preserved as {target.name}",
            level=logging.WARNING,
            logger=logger,
        )
    except OSError as exc:
        log_line(
            f"[MANIFEST] Could not preserve invalid manifest: {exc}",
            level=logging.WARNING,
            logger=logger,
        )


def load_manifest(
    backup_root: Path,
    username: str,
    profile_url: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> Manifest:
    """Load the manifest, or synthesise a fresh one if it is missing or invalid.

    Other IO errors (permissions, a directory in the manifest's place) propagate.
    """

    manifest_path = paths.get_manifest_path(backup_root)
    try:
        manifest = read_manifest(backup_root)
    except FileNotFoundError:
        log_line(f"[MANIFEST] No manifest at {manifest_path}; starting fresh", logger=logger)
        return new_manifest(username, profile_url)
    except (json.JSONDecodeError, UnicodeDecodeError, ManifestError) as exc:
        _scraper_event(
            "manifest",
            phase="load",
            status="invalid",
            path=str(manifest_path),
            error=str(exc),
            level=logging.WARNING,
            logger=logger,
        )
        _set_aside_invalid(manifest_path, logger)
        return new_manifest(username, profile_url)

    _scraper_event(
        "manifest",
        phase="load",
        status="ok",
        photos=len(manifest.content.photos),
        galleries=len(manifest.content.galleries),
        blog_posts=len(manifest.content.blog_posts),
        runs=len(manifest.backup_runs),
        logger=logger,
    )
    return manifest


def save_manifest_atomic(backup_root: Path, manifest: Manifest) -> None:
    """Write the manifest to ``manifest.json.tmp`` and rename it into place."""

    atomic_write_json(paths.get_manifest_path(backup_root), manifest.to_dict())


def generate_run_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def record_run_start(manifest: Manifest) -> str:
    """Append an open run record and stamp the profile; return the run ID."""

    run_id = generate_run_id()
    now = utc_now_iso()
    manifest.backup_runs.append(BackupRun(run_id=run_id, ts=now))
    manifest.profile.last_backup_ts = now
    return run_id


def record_run_finish(
    manifest: Manifest,
    run_id: str,
    counts: RunCounts,
    status: RunStatus | str = RunStatus.SUCCESS,
    error_message: Optional[str] = None,
    *,
    robots_policy: Optional[RobotsPolicy] = None,
) -> BackupRun:
    """Close the run identified by ``run_id``.

    Raises :class:`KeyError` when no such run exists.
    """

    run = manifest.find_run(run_id)
    if run is None:
        raise KeyError(f"Run {run_id} not found in manifest")

    run.new_content_count = counts.new_content_count
    run.missing_content_count = counts.missing_content_count
    run.invalid_content_count = counts.invalid_content_count
    run.downloaded_items = list(counts.downloaded_items)
    run.status = RunStatus(status)
    if error_message:
        run.error_message = error_message
    if robots_policy is not None:
        run.robots_policy = robots_policy
    return run


@dataclass
class MergeResult:
    photos_added: int = 0
    galleries_added: int = 0
    blog_posts_added: int = 0
    gallery_members_added: int = 0


def _extend_membership(gallery: Gallery, photo_ids: Iterable[str]) -> int:
    existing = set(gallery.photo_ids)
    added = 0
    for pid in photo_ids:
        if pid not in existing:
            gallery.photo_ids.append(pid)
            existing.add(pid)
            added += 1
    return added


def merge_discovered_content(
    manifest: Manifest,
    photos: Iterable[Photo] = (),
    galleries: Iterable[Gallery] = (),
    blog_posts: Iterable[BlogPost] = (),
) -> MergeResult:
    """Append unseen entities and grow gallery membership. Never removes anything."""

    result = MergeResult()
    content = manifest.content

    known_photos = {photo.id for photo in content.photos}
    new_photos: List[Photo] = []
    for photo in photos:
        if photo.id in known_photos:
            continue
        content.photos.append(photo)
        known_photos.add(photo.id)
        new_photos.append(photo)
        result.photos_added += 1

    galleries_by_id = {gallery.id: gallery for gallery in content.galleries}
    for gallery in galleries:
        existing = galleries_by_id.get(gallery.id)
        if existing is None:
            copy = Gallery(
                id=gallery.id,
                name=gallery.name,
                photo_ids=[],
                description=gallery.description,
                cover_photo_url=gallery.cover_photo_url,
            )
            content.galleries.append(copy)
            galleries_by_id[copy.id] = copy
            result.galleries_added += 1
            _extend_membership(copy, gallery.photo_ids)
            continue
        result.gallery_members_added += _extend_membership(existing, gallery.photo_ids)

    # Photos that name a known gallery join it.
    for photo in new_photos:
        if photo.source_gallery_id and photo.source_gallery_id in galleries_by_id:
            result.gallery_members_added += _extend_membership(
                galleries_by_id[photo.source_gallery_id], [photo.id]
            )

    known_posts = {post.id for post in content.blog_posts}
    for post in blog_posts:
        if post.id in known_posts:
            continue
        content.blog_posts.append(post)
        known_posts.add(post.id)
        result.blog_posts_added += 1

    return result


__all__ = [
    "RunStatus",
    "ManifestError",
    "Profile",
    "Photo",
    "Gallery",
    "BlogPost",
    "RobotsPolicy",
    "RunCounts",
    "BackupRun",
    "BackupContent",
    "Manifest",
    "MergeResult",
    "new_manifest",
    "read_manifest",
    "load_manifest",
    "save_manifest_atomic",
    "generate_run_id",
    "record_run_start",
    "record_run_finish",
    "merge_discovered_content",
]
