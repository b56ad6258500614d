"""
Retry policy for Trello API requests.

Trello answers bursts with 429 and the occasional 5xx. Board calls are
retried in place so a reconcile only fails once the budget is spent:

    attempt:  0    1    2    3
    delay:    2s   4s   8s   16s   (doubling, capped at max_delay)

A ``Retry-After`` header on a 429 or 503 replaces the computed delay (still
capped). 501 Not Implemented is permanent and never retried.

Example:
    >>> policy = BackoffPolicy(max_retries=4, min_delay=2.0, max_delay=30.0)
    >>> @with_retry(policy)
    ... def archive(client: httpx.Client, card_id: str) -> httpx.Response:
    ...     response = client.delete(f"/cards/{card_id}")
    ...     response.raise_for_status()
    ...     return response
"""

import functools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Statuses whose Retry-After header is honoured
THROTTLE_STATUS_CODES = frozenset({429, 503})


@dataclass(frozen=True)
class BackoffPolicy:
    """
    How often and how long to wait before retrying a board request.

    Attributes:
        max_retries: Retries after the first attempt
        min_delay: Delay before the first retry, in seconds
        max_delay: Upper bound on any single delay, in seconds
    """

    max_retries: int = 4
    min_delay: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.min_delay <= 0:
            raise ValueError("min_delay must be positive")
        if self.max_delay < self.min_delay:
            raise ValueError("max_delay must be >= min_delay")

    def delay(self, attempt: int, error: Exception | None = None) -> float:
        """
        Seconds to wait before retry number ``attempt`` (0-indexed).

        A throttling response's Retry-After wins over the doubling schedule.
        """
        hinted = retry_after_seconds(error) if error is not None else None
        if hinted is not None:
            return min(hinted, self.max_delay)
        return min(self.min_delay * (2**attempt), self.max_delay)


def retry_after_seconds(error: Exception) -> float | None:
    """
    Read the Retry-After hint from a throttling HTTP error.

    Accepts both delta-seconds and HTTP-date forms.

    Returns:
        Non-negative seconds, or None if there is no usable hint
    """
    if not isinstance(error, httpx.HTTPStatusError):
        return None
    if error.response.status_code not in THROTTLE_STATUS_CODES:
        return None
    value = error.response.headers.get("Retry-After")
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def should_retry(error: Exception) -> bool:
    """
    True for failures worth another attempt.

    Retried: connection and timeout errors, 429 and every 5xx except 501.
    Other 4xx answers and non-HTTP exceptions are raised at once.
    """
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        if status_code == 429:
            return True
        return 500 <= status_code < 600 and status_code != 501
    return isinstance(error, httpx.TransportError)


def with_retry(
    policy: BackoffPolicy | None = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator retrying a request function according to ``policy``.

    Args:
        policy: Backoff settings (defaults to :class:`BackoffPolicy`)
        sleep: Function used to wait between attempts

    Returns:
        Decorator wrapping the request function
    """
    policy = policy if policy is not None else BackoffPolicy()

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not should_retry(e):
                        raise
                    if attempt >= policy.max_retries:
                        logger.warning(f"Giving up after {policy.max_retries} retries: {e}")
                        raise
                    wait = policy.delay(attempt, e)
                    attempt += 1
                    logger.info(
                        f"Retrying board request ({attempt}/{policy.max_retries}) "
                        f"in {wait:.2f}s: {e}"
                    )
                    sleep(wait)

        return wrapper

    return decorator


__all__ = [
    "THROTTLE_STATUS_CODES",
    "BackoffPolicy",
    "retry_after_seconds",
    "should_retry",
    "with_retry",
]
