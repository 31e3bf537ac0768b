"""Resilience utilities for primary-store calls.

Classifies backend failures once, at the storage boundary, and retries
transient ones with exponential backoff. Fatal-class failures are never
retried: the gateway's one-way breaker handles them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from ..exceptions import ErrorClass
from .base import AccessDeniedError, AuthenticationError, SchemaMissingError, StorageIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})
# 449 is Cosmos "retry with"; 408 request timeout
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 429, 449, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff."""

    max_retries: int = 3
    backoff_base: float = 0.5  # seconds
    backoff_max: float = 8.0  # cap
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return min(self.backoff_base * (self.backoff_multiplier**attempt), self.backoff_max)


def _extract_status_code(exc: Exception) -> int | None:
    """Try to extract an HTTP status code from common SDK exceptions."""
    # Azure SDK: CosmosHttpResponseError, azure.core.exceptions.HttpResponseError
    status = getattr(exc, "status_code", None)
    if status is not None:
        try:
            return int(status)
        except (TypeError, ValueError):
            return None
    response = getattr(exc, "response", None)
    if response is not None:
        code = getattr(response, "status_code", None) or getattr(response, "status", None)
        if code is not None:
            try:
                return int(code)
            except (TypeError, ValueError):
                return None
    return None


def _is_credential_unavailable(exc: Exception) -> bool:
    # azure.identity raises CredentialUnavailableError (a ClientAuthenticationError)
    # when no principal can be resolved at all
    return type(exc).__name__ in ("CredentialUnavailableError", "ClientAuthenticationError")


def classify_error(exc: BaseException) -> ErrorClass:
    """Decide how the gateway should treat a backend failure."""
    if isinstance(exc, SchemaMissingError):
        return ErrorClass.FATAL_SCHEMA
    if isinstance(exc, (AuthenticationError, AccessDeniedError)):
        return ErrorClass.FATAL_AUTH
    if isinstance(exc, Exception) and _is_credential_unavailable(exc):
        return ErrorClass.FATAL_AUTH

    status_code = _extract_status_code(exc) if isinstance(exc, Exception) else None
    if status_code in AUTH_STATUS_CODES:
        return ErrorClass.FATAL_AUTH
    if status_code in TRANSIENT_STATUS_CODES:
        return ErrorClass.TRANSIENT

    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError, StorageIOError)):
        return ErrorClass.TRANSIENT
    if isinstance(exc, OSError):
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT


async def retry_with_backoff(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    config: RetryConfig | None = None,
    context_msg: str = "",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """Execute an async function, retrying transient failures.

    Args:
        fn: Async callable to execute
        *args: Positional args for fn
        config: Retry configuration (uses defaults if None)
        context_msg: Extra context for log messages (e.g. operation and diagram id)
        sleep: Awaitable used between attempts
        **kwargs: Keyword args for fn

    Returns:
        Result of fn

    Raises:
        Exception: The first non-transient exception, or the last transient
            one after all retries are exhausted
    """
    cfg = config or RetryConfig()
    ctx = f" [{context_msg}]" if context_msg else ""

    for attempt in range(cfg.max_retries + 1):
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            error_class = classify_error(exc)
            is_retryable = error_class == ErrorClass.TRANSIENT

            if not is_retryable or attempt >= cfg.max_retries:
                if is_retryable:
                    logger.error(
                        "RETRY_EXHAUSTED: attempt=%d/%d class=%s%s: %s",
                        attempt + 1,
                        cfg.max_retries + 1,
                        error_class.value,
                        ctx,
                        exc,
                    )
                raise

            delay = cfg.delay_for(attempt)
            logger.warning(
                "RETRYING: attempt=%d/%d status=%s delay=%.1fs%s: %s",
                attempt + 1,
                cfg.max_retries + 1,
                _extract_status_code(exc),
                delay,
                ctx,
                exc,
            )
            await sleep(delay)
        else:
            if attempt > 0:
                logger.warning(
                    "RETRY_RECOVERED: succeeded on attempt %d/%d%s",
                    attempt + 1,
                    cfg.max_retries + 1,
                    ctx,
                )
            return result

    raise RuntimeError("retry_with_backoff exhausted without raising")  # pragma: no cover
