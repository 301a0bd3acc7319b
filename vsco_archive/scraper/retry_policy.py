from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, Tuple, TypeVar

from . import config
from .error_codes import ErrorCode, classify_http_status
from .logging_utils import _scraper_event

T = TypeVar("T")

TRANSIENT_MESSAGE_MARKERS = (
    "timeout",
    "timed out",
    "econnrefused",
    "econnreset",
    "connection refused",
    "connection reset",
)


class HttpStatusError(Exception):
    """Raised by transports for a non-2xx response so the policy can classify it."""

    def __init__(self, status: int, message: str | None = None) -> None:
        super().__init__(message or f"HTTP {status}")
        self.status = status


class RetryError(Exception):
    def __init__(
        self,
        message: str,
        *,
        is_transient: bool,
        attempts: int,
        last_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.is_transient = is_transient
        self.attempts = attempts
        self.last_error = last_error


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def classify_failure(error: BaseException) -> Tuple[bool, str]:
    """Return ``(is_transient, error_code)`` for a failed attempt.

    Unknown errors are treated as transient so a flaky dependency gets the
    benefit of the doubt.
    """

    status = _status_of(error)
    if status is not None:
        code = classify_http_status(status)
        if status == 429 or status >= 500:
            return True, code
        if 400 <= status < 500:
            return False, code

    message = str(error).lower()
    if any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS):
        return True, ErrorCode.NETWORK

    # json.JSONDecodeError is a ValueError
    if isinstance(error, ValueError):
        return False, ErrorCode.INTERNAL

    if isinstance(error, (ConnectionError, TimeoutError, OSError)):
        return True, ErrorCode.NETWORK

    return True, ErrorCode.INTERNAL


def compute_backoff_seconds(
    attempt_index: int,
    base_delay: float = config.RETRY_BASE_DELAY_SECONDS,
    max_delay: float = config.RETRY_MAX_DELAY_SECONDS,
) -> float:
    """Return a capped exponential backoff for the given attempt (0-based), without jitter."""

    return float(min(base_delay * (2 ** max(0, attempt_index)), max_delay))


def decide_retry(
    attempt_index: int,
    max_attempts: int,
    error: BaseException,
    *,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Decide whether a failed attempt (0-based) should be retried."""

    is_transient, code = classify_failure(error)
    http_status = _status_of(error)

    if not is_transient:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="non_retryable",
            error_code=code,
            attempt=attempt_index,
            max_attempts=max_attempts,
            http_status=http_status,
            will_retry=False,
            logger=logger,
        )
        return False

    if attempt_index + 1 >= max_attempts:
        _scraper_event(
            "state",
            phase="retry_decision",
            kind="capped",
            error_code=code,
            attempt=attempt_index,
            max_attempts=max_attempts,
            http_status=http_status,
            will_retry=False,
            logger=logger,
        )
        return False

    _scraper_event(
        "state",
        phase="retry_decision",
        kind="retryable",
        error_code=code,
        attempt=attempt_index,
        max_attempts=max_attempts,
        http_status=http_status,
        will_retry=True,
        logger=logger,
    )
    return True


def retry(
    operation: Callable[[], T],
    *,
    max_attempts: int = config.RETRY_MAX_ATTEMPTS,
    base_delay: float = config.RETRY_BASE_DELAY_SECONDS,
    max_delay: float = config.RETRY_MAX_DELAY_SECONDS,
    jitter_max: float = config.RETRY_JITTER_MAX_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    jitter: Callable[[float, float], float] = random.uniform,
    logger: Optional[logging.Logger] = None,
) -> T:
    """Run ``operation`` until it succeeds or the retry budget is spent.

    Deterministic failures raise :class:`RetryError` with ``is_transient=False``
    after a single attempt. Exhausting the budget on transient failures raises
    :class:`RetryError` with ``is_transient=True``.
    """

    max_attempts = max(1, int(max_attempts))
    last_error: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return operation()
        except Exception as exc:  # noqa: BLE001
            last_error = exc
            if not decide_retry(attempt, max_attempts, exc, logger=logger):
                is_transient, _ = classify_failure(exc)
                if not is_transient:
                    raise RetryError(
                        f"Non-retryable error: {exc}",
                        is_transient=False,
                        attempts=attempt + 1,
                        last_error=exc,
                    ) from exc
                break
            delay = compute_backoff_seconds(attempt, base_delay, max_delay)
            if jitter_max > 0:
                delay += jitter(0.0, jitter_max)
            _scraper_event(
                "retry",
                phase="backoff",
                attempt=attempt + 1,
                max_attempts=max_attempts,
                delay_seconds=round(delay, 3),
                error=str(exc),
                logger=logger,
            )
            sleep(delay)

    raise RetryError(
        f"Max retries ({max_attempts}) exceeded. Last error: {last_error}",
        is_transient=True,
        attempts=max_attempts,
        last_error=last_error,
    ) from last_error


__all__ = [
    "HttpStatusError",
    "RetryError",
    "classify_failure",
    "compute_backoff_seconds",
    "decide_retry",
    "retry",
]
