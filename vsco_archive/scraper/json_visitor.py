from __future__ import annotations

from typing import Any, Iterator, List, Mapping, Set

from .entities import PhotoCandidate

# Guards against pathological nesting in captured payloads.
MAX_DEPTH = 64

IMAGE_URL_KEYS = ("imageUrl", "responsiveUrl", "responsive_url", "image_url")
PHOTO_MARKER_KEYS = IMAGE_URL_KEYS + ("permalink",)


def iter_objects(payload: Any) -> Iterator[Mapping[str, Any]]:
    """Yield every JSON object nested in ``payload``, parents before children."""

    stack: List[tuple[Any, int]] = [(payload, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > MAX_DEPTH:
            continue
        if isinstance(node, Mapping):
            yield node
            children = list(node.values())
        elif isinstance(node, list):
            children = node
        else:
            continue
        for child in reversed(children):
            if isinstance(child, (Mapping, list)):
                stack.append((child, depth + 1))


def collect_ids(payload: Any) -> Set[str]:
    """Return every string ``id`` or ``_id`` value found anywhere in ``payload``."""

    ids: Set[str] = set()
    for obj in iter_objects(payload):
        for key in ("id", "_id"):
            value = obj.get(key)
            if isinstance(value, str) and value:
                ids.add(value)
    return ids


def _first_str(obj: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _image_url(obj: Mapping[str, Any]) -> str | None:
    url = _first_str(obj, IMAGE_URL_KEYS)
    # The API returns responsive URLs as "host/path" with no scheme.
    if url and not url.startswith(("/", "http:", "https:")) and "/" in url:
        host = url.split("/", 1)[0]
        if "." in host and ":" not in host:
            return f"//{url}"
    return url


def _dimension(obj: Mapping[str, Any], key: str) -> int | None:
    value = obj.get(key)
    meta = obj.get("image_meta") or obj.get("imageMeta")
    if value is None and isinstance(meta, Mapping):
        value = meta.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return int(value)


def collect_photo_candidates(payload: Any) -> List[PhotoCandidate]:
    """Return a candidate for every object that carries an ``id`` plus an image reference."""

    candidates: List[PhotoCandidate] = []
    for obj in iter_objects(payload):
        photo_id = obj.get("id") if isinstance(obj.get("id"), str) else obj.get("_id")
        if not isinstance(photo_id, str) or not photo_id:
            continue
        if _first_str(obj, PHOTO_MARKER_KEYS) is None:
            continue
        caption = _first_str(obj, ("description", "caption"))
        gallery_id = _first_str(obj, ("galleryId", "gallery_id", "collectionId"))
        candidates.append(
            PhotoCandidate(
                id=photo_id,
                image_url=_image_url(obj),
                width=_dimension(obj, "width"),
                height=_dimension(obj, "height"),
                caption=caption.strip() if caption else None,
                gallery_id=gallery_id,
                permalink=_first_str(obj, ("permalink",)),
                source="json",
            )
        )
    return candidates


__all__ = ["MAX_DEPTH", "iter_objects", "collect_ids", "collect_photo_candidates"]
