# FILE: codeagent/llm/retry.py
"""
Retry/backoff driver for outbound calls.

Policy by error class:
  - RateLimitError: wait (server-provided retry_after if any, else the
    current backoff) and retry
  - NetworkError: bounded exponential backoff
  - LlmTimeoutError and everything else: propagate immediately

classify_error() maps raw provider exceptions/messages onto categories so
adapters can raise the right BackendError subclass.

v1.1 (2026-09-10): classify_error keyword table
v1.0 (2026-09-02): Initial implementation
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from codeagent.errors import (
    AuthenticationError,
    BackendError,
    InvalidRequestError,
    NetworkError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================


class ErrorCategory(str, Enum):
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTHENTICATION = "authentication"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    MODEL_UNAVAILABLE = "model_unavailable"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


# Ordered: first match wins
_CATEGORY_KEYWORDS = (
    (ErrorCategory.QUOTA_EXCEEDED, ("quota", "insufficient_quota", "billing")),
    (ErrorCategory.RATE_LIMIT, ("rate limit", "rate_limit", "ratelimit", "429", "too many requests", "rpm", "rpd")),
    (ErrorCategory.AUTHENTICATION, ("401", "403", "unauthorized", "invalid api key", "authentication", "permission denied")),
    (ErrorCategory.MODEL_UNAVAILABLE, ("model not found", "does not exist", "no such model", "decommissioned")),
    (ErrorCategory.SERVER_ERROR, ("503", "502", "500", "overloaded", "unavailable", "internal server error", "bad gateway")),
    (ErrorCategory.TIMEOUT, ("timed out", "timeout", "deadline exceeded")),
    (ErrorCategory.NETWORK, ("connection", "network", "dns", "reset by peer", "unreachable", "ssl", "eof occurred")),
    (ErrorCategory.INVALID_REQUEST, ("400", "invalid request", "bad request", "context length", "invalid_request")),
)


def classify_error(error: object) -> ErrorCategory:
    text = str(error).lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in text for k in keywords):
            return category
    return ErrorCategory.UNKNOWN


def to_backend_error(error: BaseException, provider: Optional[str] = None) -> BackendError:
    """Wrap an arbitrary provider exception into the backend taxonomy."""
    if isinstance(error, BackendError):
        return error
    category = classify_error(error)
    message = f"{type(error).__name__}: {error}"
    status = getattr(error, "status_code", None)
    if category in (ErrorCategory.RATE_LIMIT, ErrorCategory.SERVER_ERROR):
        # 503/overloaded behaves like rate limiting: wait and retry
        return RateLimitError(message, provider=provider, status_code=status)
    if category in (ErrorCategory.NETWORK, ErrorCategory.TIMEOUT):
        return NetworkError(message, provider=provider, status_code=status)
    if category is ErrorCategory.AUTHENTICATION:
        return AuthenticationError(message, provider=provider, status_code=status)
    if category is ErrorCategory.INVALID_REQUEST:
        return InvalidRequestError(message, provider=provider, status_code=status)
    return BackendError(message, provider=provider, status_code=status)


# =============================================================================
# BACKOFF DRIVER
# =============================================================================


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    initial_delay_s: float = 1.0
    max_delay_s: float = 10.0
    multiplier: float = 2.0


async def with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    label: str = "call",
) -> T:
    """Run `operation` until it succeeds or the policy gives up.

    Only RateLimitError and NetworkError are retried. The last error is
    re-raised once attempts are exhausted.
    """
    policy = policy or RetryPolicy()
    do_sleep = sleep or asyncio.sleep
    backoff = policy.initial_delay_s

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except (RateLimitError, NetworkError) as e:
            if attempt >= policy.max_attempts:
                logger.warning(f"[retry] {label} failed after {attempt} attempts: {e}")
                raise
            delay = backoff
            if isinstance(e, RateLimitError) and e.retry_after:
                delay = min(max(e.retry_after, 0.0), policy.max_delay_s)
            logger.info(
                f"[retry] {label} {type(e).__name__} on attempt {attempt}/{policy.max_attempts}, "
                f"backing off {delay:.2f}s"
            )
            await do_sleep(delay)
            backoff = min(backoff * policy.multiplier, policy.max_delay_s)

    raise RuntimeError("unreachable: retry loop exited without result")


__all__ = [
    "ErrorCategory",
    "classify_error",
    "to_backend_error",
    "RetryPolicy",
    "with_backoff",
]
