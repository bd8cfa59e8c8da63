"""Retryable error classification and backoff for backend calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import backoff
import httpx

from bulk_transfer_engine.domain.errors import BackendError, BackendErrorCode

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_CODES = frozenset(
    {
        BackendErrorCode.RATE_LIMIT_EXCEEDED.value,
        BackendErrorCode.SERVER_ERROR.value,
        BackendErrorCode.SERVICE_UNAVAILABLE.value,
        BackendErrorCode.TRANSPORT_ERROR.value,
    }
)
_RETRYABLE_HINTS = ("temporarily", "retry", "rate limit")


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """Exponential backoff parameters for transient backend failures."""

    max_tries: int = 5
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    jitter: bool = True


def is_retryable_error(exc: BaseException) -> bool:
    """Return whether ``exc`` is a transient failure worth retrying."""

    if isinstance(exc, BackendError):
        if exc.code in _RETRYABLE_CODES:
            return True
        if exc.status_code is not None and (exc.status_code == 429 or exc.status_code >= 500):
            return True
        message = exc.message.lower()
        return any(hint in message for hint in _RETRYABLE_HINTS)
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return True
    return False


def _log_backoff(details: dict[str, Any]) -> None:
    logger.warning(
        "Backing off %.1fs after transient backend error (attempt %s): %s",
        details["wait"],
        details["tries"],
        details.get("exception"),
    )


async def call_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    retryable: Callable[[BaseException], bool] = is_retryable_error,
) -> T:
    """Await ``operation`` retrying transient errors; permanent errors propagate at once."""

    async def attempt() -> T:
        return await operation()

    decorated = backoff.on_exception(
        backoff.expo,
        Exception,
        max_tries=policy.max_tries,
        giveup=lambda exc: not retryable(exc),
        jitter=backoff.full_jitter if policy.jitter else None,
        on_backoff=_log_backoff,
        factor=policy.base_delay_seconds,
        max_value=policy.max_delay_seconds,
    )(attempt)
    return await decorated()


__all__ = ["BackoffPolicy", "call_with_backoff", "is_retryable_error"]
