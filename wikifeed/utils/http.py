"""
HTTP utilities for WikiFeed.
"""
import asyncio
import time
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import aiohttp
import backoff

# Configure logging
logger = logging.getLogger(__name__)

T = TypeVar('T')

MIN_REQUEST_INTERVAL = 0.3  # seconds between requests to the same host
REQUEST_TIMEOUT = 10  # seconds
MAX_ATTEMPTS = 3
BASE_DELAY = 1.0  # seconds, doubled after every failed attempt

RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (aiohttp.ClientError, asyncio.TimeoutError)


class RateLimiter:
    """
    Keeps a minimum spacing between requests to the same host.
    Hosts that keep failing get an increasing backoff.
    """
    def __init__(self, min_interval: float = MIN_REQUEST_INTERVAL):
        self.min_interval = min_interval
        self.last_requests = defaultdict(lambda: 0.0)
        self.locks = defaultdict(asyncio.Lock)
        self.failure_counts = defaultdict(int)
        self.backoff_times = defaultdict(lambda: self.min_interval)
        self.max_backoff = 60.0  # Maximum backoff in seconds
        self.failure_threshold = 3  # Number of failures before increasing backoff

    async def acquire(self, domain: str):
        """
        Wait until a request to ``domain`` is allowed.

        Args:
            domain: The host to rate limit
        """
        try:
            async with self.locks[domain]:
                now = time.monotonic()
                time_passed = now - self.last_requests[domain]

                wait_time = max(self.min_interval, self.backoff_times[domain]) - time_passed

                if wait_time > 0:
                    logger.debug(f"Rate limiting {domain}, waiting {wait_time:.2f}s")
                    await asyncio.sleep(wait_time)

                self.last_requests[domain] = time.monotonic()
        except asyncio.CancelledError:
            logger.warning(f"Rate limiter acquisition for {domain} was cancelled")
            raise

    def report_success(self, domain: str):
        """
        Report a successful request to a domain.
        This will gradually reduce the backoff time for the domain.

        Args:
            domain: The domain that had a successful request
        """
        self.failure_counts[domain] = 0
        if self.backoff_times[domain] > self.min_interval:
            self.backoff_times[domain] = max(self.min_interval, self.backoff_times[domain] * 0.8)

    def report_failure(self, domain: str):
        """
        Report a failed request to a domain.
        This will increase the backoff time for the domain.

        Args:
            domain: The domain that had a failed request
        """
        self.failure_counts[domain] += 1

        if self.failure_counts[domain] >= self.failure_threshold:
            current = max(self.backoff_times[domain], BASE_DELAY)
            self.backoff_times[domain] = min(self.max_backoff, current * 2.0)
            logger.warning(
                f"Increased backoff for {domain} to {self.backoff_times[domain]:.2f}s "
                f"after {self.failure_counts[domain]} failures"
            )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = MAX_ATTEMPTS,
    base_delay: float = BASE_DELAY,
    exceptions: Tuple[Type[BaseException], ...] = RETRYABLE_EXCEPTIONS,
    giveup: Optional[Callable[[Exception], bool]] = None,
) -> T:
    """
    Run ``operation`` until it succeeds or ``max_attempts`` is reached.

    Delays between attempts grow as ``base_delay * 2 ** n``. This is the only
    retry policy in the package; every upstream call goes through it.

    Args:
        operation: Zero-argument coroutine function to call
        max_attempts: Total number of attempts
        base_delay: First delay in seconds
        exceptions: Exception types that trigger a retry
        giveup: Predicate returning True for errors that must not be retried

    Returns:
        The operation's result

    Raises:
        The last exception once attempts are exhausted
    """
    @backoff.on_exception(
        backoff.expo,
        exceptions,
        max_tries=max_attempts,
        giveup=giveup or (lambda e: False),
        jitter=None,
        factor=base_delay,
        logger=logger,
    )
    async def attempt():
        return await operation()

    return await attempt()
