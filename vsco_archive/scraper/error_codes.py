from __future__ import annotations

"""Error code taxonomy for per-item download failures.

These codes are written to the failure report and included in structured logs
so that we can explain why an asset was not captured. They should stay stable
for reporting.
"""


class ErrorCode:
    NETWORK = "network_error"
    HTTP_4XX = "http_4xx"
    HTTP_403 = "http_403_forbidden"
    HTTP_404 = "http_404_not_found"
    HTTP_429 = "http_429_rate_limited"
    HTTP_5XX = "http_5xx"
    BLOCKED = "blocked"
    INVALID_URL = "invalid_url"
    EMPTY_BODY = "empty_body"
    DISK = "disk_error"
    NO_SESSION = "no_session_transport"
    INTERNAL = "internal_error"


def classify_http_status(status: int | None) -> str:
    """Map an HTTP status to an :class:`ErrorCode` value."""

    if status is None:
        return ErrorCode.INTERNAL
    if status == 403:
        return ErrorCode.HTTP_403
    if status == 404:
        return ErrorCode.HTTP_404
    if status == 429:
        return ErrorCode.HTTP_429
    if 400 <= status < 500:
        return ErrorCode.HTTP_4XX
    if status >= 500:
        return ErrorCode.HTTP_5XX
    return ErrorCode.INTERNAL


__all__ = ["ErrorCode", "classify_http_status"]
