"""
Retry logic for blockchain transactions and RPC calls.
Implements exponential backoff with error classification: only errors whose
message matches a known transient pattern are retried.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Backoff parameters.

    Args:
        max_retries: Retries after the first attempt
        initial_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay, in seconds
        backoff_multiplier: Growth factor per attempt
    """
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0


DEFAULT_RETRY = RetryConfig()

TRANSACTION_RETRY = RetryConfig(
    max_retries=3,
    initial_delay=2.0,
    max_delay=15.0,
    backoff_multiplier=2.0,
)

RPC_RETRY = RetryConfig(
    max_retries=5,
    initial_delay=0.5,
    max_delay=5.0,
    backoff_multiplier=1.5,
)

# Transient failures worth another attempt
RETRYABLE_ERROR_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"nonce too low",
        r"replacement transaction underpriced",
        r"transaction underpriced",
        r"intrinsic gas too low",
        r"timeout",
        r"timed out",
        r"network error",
        r"connection refused",
        r"ECONNRESET",
        r"ETIMEDOUT",
        r"rate limit",
        r"too many requests",
        r"\b502\b",
        r"\b503\b",
        r"\b504\b",
    )
]

# Checked first: these never succeed on a second try
NON_RETRYABLE_ERROR_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"insufficient funds",
        r"insufficient balance",
        r"execution reverted",
        r"user rejected",
        r"user denied",
        r"invalid signature",
        r"invalid address",
    )
]


def is_retryable_error(error: BaseException | str) -> bool:
    """
    Classify an error by its message.
    Unknown errors are not retried.
    """
    # Errors that know they must not be retried say so explicitly
    if getattr(error, "retryable", None) is False:
        return False

    message = error if isinstance(error, str) else f"{type(error).__name__}: {error}"

    if any(p.search(message) for p in NON_RETRYABLE_ERROR_PATTERNS):
        return False

    return any(p.search(message) for p in RETRYABLE_ERROR_PATTERNS)


def calculate_delay(attempt: int, config: RetryConfig = DEFAULT_RETRY) -> float:
    """
    Delay before retry number `attempt` (0-indexed):
    min(initial_delay * multiplier^attempt, max_delay).
    """
    delay = config.initial_delay * (config.backoff_multiplier ** attempt)
    return min(delay, config.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig = DEFAULT_RETRY,
    context: str = "operation",
) -> T:
    """
    Run `operation`, retrying classified-retryable failures with backoff.

    Args:
        operation: Zero-argument coroutine factory
        config: Backoff parameters
        context: Label used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        The last error once retries are exhausted, or the first
        non-retryable error immediately
    """
    attempts = config.max_retries + 1

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as e:
            if attempt >= config.max_retries:
                logger.error(f"{context}: All {attempts} attempts failed: {e}")
                raise

            if not is_retryable_error(e):
                logger.error(
                    f"{context}: Non-retryable error on attempt {attempt + 1}: {e}"
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                f"{context}: Attempt {attempt + 1}/{attempts} failed: {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"{context}: retry loop exited without a result")


def with_retry(config: RetryConfig = DEFAULT_RETRY, context: str | None = None, **overrides: Any):
    """
    Decorator for adding classified retry logic to async functions.

    Usage:
        @with_retry(RPC_RETRY, max_retries=2)
        async def fetch_block():
            ...
    """
    effective = replace(config, **overrides) if overrides else config

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        label = context or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_async(lambda: func(*args, **kwargs), effective, label)
        return wrapper
    return decorator
