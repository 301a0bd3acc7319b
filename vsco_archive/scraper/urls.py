"""URL normalisation, resolution selection and stable identity helpers."""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union
from urllib.parse import urlsplit, urlunsplit

from . import config


@dataclass(frozen=True)
class NormalizeOk:
    url: str
    ok: bool = True


@dataclass(frozen=True)
class NormalizeErr:
    reason: str
    input: Any
    ok: bool = False


NormalizeResult = Union[NormalizeOk, NormalizeErr]

_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*):")
_HOST_RE = re.compile(r"^[A-Za-z0-9.\-\[\]:]+$")


def _parse_http_url(candidate: str) -> Optional[str]:
    """Validate an absolute http(s) URL and return it with an https scheme.

    Only the scheme and host case change; path, query and fragment are kept
    verbatim so repeated normalisation is a no-op.
    """

    try:
        parts = urlsplit(candidate)
        parts.port  # raises ValueError on a non-numeric port
    except ValueError:
        return None
    hostname = parts.hostname or ""
    if not parts.netloc or not hostname or not _HOST_RE.match(hostname):
        return None
    if any(ch.isspace() for ch in candidate):
        return None
    netloc = parts.netloc if "@" in parts.netloc else parts.netloc.lower()
    return urlunsplit(("https", netloc, parts.path or "/", parts.query, parts.fragment))


def normalize_asset_url(value: Any) -> NormalizeResult:
    """Normalise a remote asset URL for download.

    - ``//host/path`` becomes ``https://host/path``
    - ``http:`` is upgraded to ``https:``; ``https:`` is left alone
    - query strings and fragments are preserved exactly
    - ``data:``, ``blob:`` and every other non-http(s) scheme are rejected

    Returns :class:`NormalizeOk` or :class:`NormalizeErr`; never raises.
    """

    if not isinstance(value, str) or not value.strip():
        return NormalizeErr("Invalid URL: empty input", value)

    trimmed = value.strip()

    if trimmed.startswith("//"):
        normalized = _parse_http_url(f"https:{trimmed}")
        if normalized is None:
            return NormalizeErr("Invalid URL: malformed protocol-relative URL", value)
        return NormalizeOk(normalized)

    match = _SCHEME_RE.match(trimmed)
    if not match:
        return NormalizeErr("Invalid URL: failed to parse", value)

    scheme = match.group(1).lower()
    if scheme not in {"http", "https"}:
        return NormalizeErr(f"Unsupported protocol: {scheme}:", value)

    normalized = _parse_http_url(trimmed)
    if normalized is None:
        return NormalizeErr("Invalid URL: failed to parse", value)
    return NormalizeOk(normalized)


@dataclass
class ImageCandidate:
    url: str
    width: Optional[int] = None
    height: Optional[int] = None


def parse_srcset(srcset: Optional[str]) -> List[ImageCandidate]:
    """Parse a ``srcset`` attribute into candidates.

    A density descriptor (``2x``) has no absolute width, so it is scaled to
    ``density * 1000``. Only the relative ordering of those values means anything.
    """

    if not srcset or not srcset.strip():
        return []

    candidates: List[ImageCandidate] = []
    for entry in srcset.split(","):
        parts = entry.strip().split()
        if not parts:
            continue
        url = parts[0]
        descriptor = parts[1] if len(parts) > 1 else ""
        width: Optional[int] = None
        if descriptor.endswith("w"):
            try:
                width = int(descriptor[:-1])
            except ValueError:
                width = None
        elif descriptor.endswith("x"):
            try:
                density = float(descriptor[:-1])
            except ValueError:
                density = 0.0
            if density > 0:
                width = round(density * 1000)
        candidates.append(ImageCandidate(url=url, width=width))
    return candidates


def _resolution_key(candidate: ImageCandidate) -> tuple:
    # Present dimensions sort ahead of missing ones; URL length is the last resort.
    width = candidate.width
    height = candidate.height
    return (
        width is not None,
        width if width is not None else 0,
        height is not None,
        height if height is not None else 0,
        len(candidate.url or ""),
    )


def select_highest_resolution(
    candidates: Sequence[ImageCandidate],
) -> Optional[ImageCandidate]:
    """Return the highest-resolution candidate, or ``None`` for an empty list."""

    if not candidates:
        return None
    return max(candidates, key=_resolution_key)


def url_hash(value: str, length: int = 16) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def generate_stable_id(
    provider_id: Optional[str],
    canonical_url: str,
    prefix: str = "photo",
) -> str:
    """Prefer the remote-provided ID; otherwise hash the canonical URL."""

    if isinstance(provider_id, str) and provider_id.strip():
        return provider_id.strip()
    return f"{prefix}-{url_hash(canonical_url)}"


def is_profile_host(host: str) -> bool:
    host = (host or "").lower()
    return host == config.PROFILE_HOST or host == f"www.{config.PROFILE_HOST}"


__all__ = [
    "NormalizeOk",
    "NormalizeErr",
    "NormalizeResult",
    "normalize_asset_url",
    "ImageCandidate",
    "parse_srcset",
    "select_highest_resolution",
    "url_hash",
    "generate_stable_id",
    "is_profile_host",
]
