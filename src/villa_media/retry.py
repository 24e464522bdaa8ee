"""Retry policies for uploads and record persistence.

Both policies are bounded tenacity loops. Uploads retry any failure
immediately; persistence only retries errors that look transient (lock
contention or a generic server fault) and backs off exponentially.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Iterable, Optional, Tuple

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_none,
)

from .config import Settings, get_settings
from .errors import ApiError
from .logging import get_logger

LOGGER = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def _status_and_message(exc: BaseException) -> Tuple[Optional[int], str]:
    if isinstance(exc, ApiError):
        return exc.status_code, str(exc)
    if isinstance(exc, httpx.HTTPStatusError):
        message = str(exc)
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            message = f"{message} {body['message']}"
        return exc.response.status_code, message
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    return (status if isinstance(status, int) else None), str(exc)


def is_transient_error(
    exc: BaseException,
    lock_keywords: Optional[Iterable[str]] = None,
    transient_status_codes: Optional[Iterable[int]] = None,
) -> bool:
    """Whether a persist failure is likely to succeed when tried again."""
    if lock_keywords is None or transient_status_codes is None:
        settings = get_settings()
        if lock_keywords is None:
            lock_keywords = settings.lock_keywords
        if transient_status_codes is None:
            transient_status_codes = settings.transient_status_codes
    keywords = [k.lower() for k in lock_keywords]
    statuses = set(transient_status_codes)

    status, message = _status_and_message(exc)
    if status is not None and status in statuses:
        return True
    lowered = message.lower()
    return any(keyword in lowered for keyword in keywords)


def _log_persist_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    LOGGER.warning(
        "Transient persist failure, backing off",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


def persist_retrying(
    settings: Optional[Settings] = None,
    sleep: Optional[SleepFn] = None,
) -> AsyncRetrying:
    """Bounded retry loop for the persist step (1s, 2s, ... between attempts)."""
    settings = settings or get_settings()
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return AsyncRetrying(
        stop=stop_after_attempt(settings.persist_max_attempts),
        wait=wait_exponential(multiplier=settings.persist_backoff_base, min=0),
        retry=retry_if_exception(
            lambda exc: is_transient_error(
                exc, settings.lock_keywords, settings.transient_status_codes
            )
        ),
        before_sleep=_log_persist_retry,
        reraise=True,
        **kwargs,
    )


def upload_retrying(
    max_attempts: int,
    before_sleep: Optional[Callable[[RetryCallState], None]] = None,
) -> AsyncRetrying:
    """Bounded immediate-retry loop for a single attachment upload."""
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_none(),
        retry=retry_if_exception_type(Exception),
        before_sleep=before_sleep,
        reraise=True,
    )


__all__ = ["is_transient_error", "persist_retrying", "upload_retrying"]
