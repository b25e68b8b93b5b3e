"""Retry logic with exponential backoff for upstream calls."""

import logging
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from multichain_portfolio.core.exceptions import TransientFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig:
    """
    Configuration for retry behavior.

    Parameters
    ----------
    max_retries : int
        Maximum number of retry attempts after the first call
    base_delay : float
        Initial delay in seconds before first retry
    max_delay : float
        Maximum delay between retries
    exponential_base : float
        Base for exponential backoff calculation
    retry_on : tuple[type[BaseException], ...]
        Exception types that trigger a retry; anything else propagates immediately

    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        retry_on: tuple[type[BaseException], ...] = (TransientFetchError,),
    ) -> None:
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.retry_on = retry_on

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay for a given retry attempt using exponential backoff.

        Parameters
        ----------
        attempt : int
            Current attempt number (0-indexed)

        Returns
        -------
        float
            Delay in seconds

        """
        delay = self.base_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    config: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """
    Call ``func`` and retry retryable failures with exponential backoff.

    Parameters
    ----------
    func : Callable
        Function to call
    config : RetryConfig | None
        Retry configuration. Uses default config if None.
    sleep : Callable[[float], None]
        Sleep function, replaceable in tests

    Returns
    -------
    T
        Result of the first successful call

    Raises
    ------
    Exception
        The last retryable error once retries are exhausted, or the first
        non-retryable error

    """
    if config is None:
        config = RetryConfig()

    name = getattr(func, "__name__", repr(func))
    last_exception: BaseException | None = None

    for attempt in range(config.max_retries + 1):
        try:
            return func(*args, **kwargs)
        except config.retry_on as e:
            last_exception = e

            # Don't retry on last attempt
            if attempt == config.max_retries:
                break

            delay = config.get_delay(attempt)
            logger.debug(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                name,
                attempt + 1,
                config.max_retries + 1,
                delay,
                e,
            )
            sleep(delay)

    logger.debug("%s failed after %d attempts", name, config.max_retries + 1)
    raise last_exception  # type: ignore[misc]


def with_retry(config: RetryConfig | None = None) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator to add retry logic with exponential backoff to a function.

    Parameters
    ----------
    config : RetryConfig | None
        Retry configuration. Uses default config if None.

    Returns
    -------
    Callable
        Decorated function with retry logic

    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return call_with_retry(func, *args, config=config, **kwargs)

        return wrapper

    return decorator
