"""Resilience utilities for remote store calls.

Provides failure classification (network-class vs everything else) and
retry with linear backoff: the delay after failed attempt N is
``base_delay * N``, so delays strictly increase.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Gateway errors mean the node behind the API is unreachable, not that it refused us.
RETRYABLE_STATUS_CODES = (502, 503, 504)

NETWORK_ERROR_PATTERNS = (
    "network",
    "timeout",
    "timed out",
    "econnrefused",
    "etimedout",
    "connection refused",
    "unreachable",
    "fetch failed",
    "failed to fetch",
)

NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
    OSError,
)


@dataclass
class RetryConfig:
    """Configuration for retry with linear backoff."""

    attempts: int = 3  # total tries, including the first
    base_delay: float = 2.0  # seconds

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt after ``attempt`` (1-based)."""
        return self.base_delay * attempt


async def backoff_sleep(delay: float) -> None:
    """Wait between attempts."""
    await asyncio.sleep(delay)


def _extract_status_code(exc: BaseException) -> int | None:
    """Try to extract an HTTP status code from transport or aiohttp exceptions."""
    for attr in ("status_code", "status"):
        status = getattr(exc, attr, None)
        if isinstance(status, int):
            return status
    return None


def is_network_error(exc: BaseException) -> bool:
    """True for failures worth retrying: timeouts, refused or unreachable hosts."""
    if isinstance(exc, NETWORK_EXCEPTIONS):
        return True
    status_code = _extract_status_code(exc)
    if status_code is not None:
        return status_code in RETRYABLE_STATUS_CODES
    message = str(exc).lower()
    return any(pattern in message for pattern in NETWORK_ERROR_PATTERNS)


async def retry_with_backoff(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    config: RetryConfig | None = None,
    is_retryable: Callable[[BaseException], bool] = is_network_error,
    context_msg: str = "",
    **kwargs: Any,
) -> T:
    """Execute an async function with retry and linear backoff.

    Args:
        fn: Async callable to execute
        *args: Positional args for fn
        config: Retry configuration (uses defaults if None)
        is_retryable: Classifier deciding whether a failure is retried
        context_msg: Extra context for log messages (e.g. the CID)
        **kwargs: Keyword args for fn

    Returns:
        Result of fn

    Raises:
        Exception: The first non-retryable exception, or the last one after
            all attempts are exhausted
    """
    cfg = config or RetryConfig()
    ctx = f" [{context_msg}]" if context_msg else ""

    for attempt in range(1, cfg.attempts + 1):
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            retryable = is_retryable(exc)
            if not retryable or attempt >= cfg.attempts:
                logger.error(
                    "RETRY_EXHAUSTED: attempt=%d/%d retryable=%s%s: %s",
                    attempt,
                    cfg.attempts,
                    retryable,
                    ctx,
                    exc,
                )
                raise

            delay = cfg.delay_for(attempt)
            logger.warning(
                "RETRYING: attempt=%d/%d delay=%.1fs%s: %s",
                attempt,
                cfg.attempts,
                delay,
                ctx,
                exc,
            )
            await backoff_sleep(delay)
        else:
            if attempt > 1:
                logger.warning(
                    "RETRY_RECOVERED: succeeded on attempt %d/%d after %d retries%s",
                    attempt,
                    cfg.attempts,
                    attempt - 1,
                    ctx,
                )
            return result

    # Unreachable, but satisfies type checker
    raise RuntimeError("retry_with_backoff exhausted without raising")  # pragma: no cover
