from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

# Matched case-insensitively against the start of an HTML body.
BLOCK_MARKERS = (
    "Attention Required! | Cloudflare",
    "Sorry, you have been blocked",
    "__cf_bm=",
    "cf-ray",
)

MAX_SCAN_BYTES = 8192


@dataclass
class BlockVerdict:
    blocked: bool
    marker: Optional[str] = None


def detect_block(
    status: Optional[int],
    content_type: Optional[str],
    body: Union[bytes, str, None],
) -> BlockVerdict:
    """Classify a response as an interstitial block page.

    A 403 is always a block. Otherwise only ``text/html`` bodies are scanned,
    and only their first :data:`MAX_SCAN_BYTES` bytes. Anything unreadable is
    treated as not blocked.
    """

    if status == 403:
        return BlockVerdict(True, "status_403")

    if "text/html" not in (content_type or "").lower():
        return BlockVerdict(False)

    if body is None:
        return BlockVerdict(False)

    if isinstance(body, str):
        head = body.encode("utf-8", errors="ignore")[:MAX_SCAN_BYTES]
    else:
        head = bytes(body[:MAX_SCAN_BYTES])
    text = head.decode("utf-8", errors="ignore").lower()

    for marker in BLOCK_MARKERS:
        if marker.lower() in text:
            return BlockVerdict(True, marker)
    return BlockVerdict(False)


__all__ = ["BLOCK_MARKERS", "MAX_SCAN_BYTES", "BlockVerdict", "detect_block"]
