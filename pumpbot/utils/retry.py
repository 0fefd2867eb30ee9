"""
Retry decorator for robust async operations.

Provides automatic retry with fixed or exponential backoff for network and RPC
operations.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def async_retry(
    max_attempts: int = 3,
    delay: float = 0.5,
    backoff: float = 1.0,
    exceptions: tuple = (Exception,)
):
    """
    Retry async function, sleeping between attempts.

    Args:
        max_attempts: Maximum number of attempts
        delay: Delay before the first retry (seconds)
        backoff: Multiplier for delay on each retry (1.0 = fixed delay)
        exceptions: Tuple of exception types to catch

    Example:
        @async_retry(max_attempts=3, delay=0.5)
        async def fetch_data():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_call(
                func, *args,
                max_attempts=max_attempts,
                delay=delay,
                backoff=backoff,
                exceptions=exceptions,
                **kwargs,
            )
        return wrapper
    return decorator


async def retry_call(
    func: Callable[..., Any],
    *args,
    max_attempts: int = 3,
    delay: float = 0.5,
    backoff: float = 1.0,
    exceptions: tuple = (Exception,),
    **kwargs,
) -> Any:
    """Call ``func`` with retries; budgets chosen at runtime instead of decoration time."""
    name = getattr(func, "__qualname__", repr(func))

    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except exceptions as e:
            if attempt == max_attempts - 1:
                logger.error(
                    "%s failed after %d attempts: %s", name, max_attempts, e,
                    extra={"function": name, "attempts": max_attempts, "error": str(e)},
                )
                raise

            current_delay = delay * (backoff ** attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                name, attempt + 1, max_attempts, current_delay, e,
            )
            await asyncio.sleep(current_delay)

    raise RuntimeError(f"{name}: max_attempts must be >= 1")
