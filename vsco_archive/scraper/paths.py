"""Output layout and naming policy for the archive.

All on-disk locations (manifest, media, logs, generated pages) are derived here
so the site generator never has to re-implement naming rules.
"""
from __future__ import annotations

import hashlib
import re
import unicodedata
from pathlib import Path
from typing import MutableMapping, Optional

from . import config

MAX_FILENAME_CHARS = 255
MAX_SLUG_CHARS = 200

CONTENT_TYPE_EXTENSIONS: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "application/octet-stream": "bin",
}
DEFAULT_CONTENT_TYPE = "image/jpeg"

_WHITESPACE_RUN = re.compile(r"[\s_]+")
_UNSAFE_SLUG_CHARS = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUN = re.compile(r"-+")
_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9-]")
_VALID_FILENAME = re.compile(r"^[A-Za-z0-9._-]+$")
_VALID_SLUG = re.compile(r"^[a-z0-9-]+$")


def get_metadata_dir(backup_root: Path) -> Path:
    return Path(backup_root) / config.METADATA_DIR_NAME


def get_manifest_path(backup_root: Path) -> Path:
    return get_metadata_dir(backup_root) / config.MANIFEST_FILE_NAME


def get_media_dir(backup_root: Path) -> Path:
    return get_metadata_dir(backup_root) / config.MEDIA_DIR_NAME


def get_media_path(backup_root: Path, filename: str) -> Path:
    return get_media_dir(backup_root) / filename


def get_logs_dir(backup_root: Path) -> Path:
    return get_metadata_dir(backup_root) / config.LOGS_DIR_NAME


def get_galleries_dir(backup_root: Path) -> Path:
    return Path(backup_root) / config.GALLERIES_DIR_NAME


def get_gallery_path(backup_root: Path, gallery_slug: str) -> Path:
    return get_galleries_dir(backup_root) / gallery_slug / config.INDEX_FILE_NAME


def get_blog_dir(backup_root: Path) -> Path:
    return Path(backup_root) / config.BLOG_DIR_NAME


def get_blog_path(backup_root: Path, post_slug: str) -> Path:
    return get_blog_dir(backup_root) / post_slug / config.INDEX_FILE_NAME


def get_index_path(backup_root: Path) -> Path:
    return Path(backup_root) / config.INDEX_FILE_NAME


def media_href_from_page(filename: str) -> str:
    """Relative href from a ``blog/<slug>/index.html`` page to a media file."""

    return f"../../{config.METADATA_DIR_NAME}/{config.MEDIA_DIR_NAME}/{filename}"


def short_hash(value: str, length: int = 6) -> str:
    """Return the first ``length`` hex chars of the sha256 of ``value``."""

    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def normalize_slug(text: Optional[str]) -> str:
    """Normalise ``text`` into a URL-safe slug (may return an empty string)."""

    if not text or not isinstance(text, str):
        return ""

    slug = unicodedata.normalize("NFKD", text).lower()
    slug = _WHITESPACE_RUN.sub("-", slug)
    slug = _UNSAFE_SLUG_CHARS.sub("", slug)
    slug = _HYPHEN_RUN.sub("-", slug)
    return slug.strip("-")


def generate_slug(
    name: Optional[str],
    item_id: str,
    registry: Optional[MutableMapping[str, str]] = None,
) -> str:
    """Return a collision-proof slug for ``name`` owned by ``item_id``.

    ``registry`` maps already-assigned slugs to the ID that owns them and must be
    threaded through a whole generation pass; call order determines which ID
    keeps the bare slug.
    """

    if registry is None:
        registry = {}

    base = normalize_slug(name)
    if not base:
        return f"item-{short_hash(item_id)}"

    owner = registry.get(base)
    if owner is None:
        registry[base] = item_id
        return base
    if owner == item_id:
        return base

    hashed = f"{base}-{short_hash(item_id)}"
    hashed_owner = registry.get(hashed)
    if hashed_owner is None:
        registry[hashed] = item_id
        return hashed
    if hashed_owner == item_id:
        return hashed

    counter = 2
    while f"{base}-{counter}" in registry:
        if registry[f"{base}-{counter}"] == item_id:
            return f"{base}-{counter}"
        counter += 1
    numeric = f"{base}-{counter}"
    registry[numeric] = item_id
    return numeric


def extension_for_content_type(content_type: Optional[str]) -> str:
    """Return the file extension for ``content_type`` (``bin`` when unknown)."""

    if not content_type:
        return CONTENT_TYPE_EXTENSIONS[DEFAULT_CONTENT_TYPE]
    mime = content_type.split(";", 1)[0].strip().lower()
    return CONTENT_TYPE_EXTENSIONS.get(mime, "bin")


def generate_media_filename(media_id: str, content_type: Optional[str] = DEFAULT_CONTENT_TYPE) -> str:
    """Return a deterministic, filesystem-safe media filename for ``media_id``."""

    ext = extension_for_content_type(content_type)
    safe_id = _UNSAFE_ID_CHARS.sub("", media_id or "")
    if not safe_id:
        safe_id = f"item-{short_hash(media_id or '')}"
    elif safe_id != media_id:
        # Stripping is lossy, so the hash keeps distinct IDs on distinct files.
        safe_id = f"{safe_id}-{short_hash(media_id)}"
    # Leave headroom below 255 for the ".tmp" suffix used during atomic writes.
    max_id_length = MAX_FILENAME_CHARS - 15 - len(ext) - 1
    if len(safe_id) > max_id_length:
        suffix = f"-{short_hash(media_id)}"
        safe_id = safe_id[: max_id_length - len(suffix)] + suffix
    return f"{safe_id}.{ext}"


def is_valid_filename(filename: str) -> bool:
    if not filename or len(filename) > MAX_FILENAME_CHARS:
        return False
    if ".." in filename or "/" in filename or "\\" in filename:
        return False
    return bool(_VALID_FILENAME.match(filename))


def is_valid_slug(slug: str) -> bool:
    if not slug or len(slug) > MAX_SLUG_CHARS:
        return False
    if slug.startswith("-") or slug.endswith("-"):
        return False
    return bool(_VALID_SLUG.match(slug))


__all__ = [
    "CONTENT_TYPE_EXTENSIONS",
    "get_metadata_dir",
    "get_manifest_path",
    "get_media_dir",
    "get_media_path",
    "get_logs_dir",
    "get_galleries_dir",
    "get_gallery_path",
    "get_blog_dir",
    "get_blog_path",
    "get_index_path",
    "media_href_from_page",
    "short_hash",
    "normalize_slug",
    "generate_slug",
    "extension_for_content_type",
    "generate_media_filename",
    "is_valid_filename",
    "is_valid_slug",
]
