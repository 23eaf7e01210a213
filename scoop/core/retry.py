"""Retry policy shared by the external clients."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Tuple, Type

from .errors import TransientSourceError

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Exponential backoff for retryable errors.

    ``max_attempts`` counts the first call, so ``max_attempts=4`` means one
    call plus three retries.
    """

    max_attempts: int = 4
    base_delay: float = 2.0
    multiplier: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = (TransientSourceError,)
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def with_retries(cls, retries: int, base_delay: float = 2.0, **kwargs) -> "RetryPolicy":
        """Build a policy from a retry count rather than an attempt count."""
        return cls(max_attempts=retries + 1, base_delay=base_delay, **kwargs)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return self.base_delay * (self.multiplier ** (attempt - 1))

    async def run(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func`` and retry retryable failures with backoff.

        Raises:
            The last error once attempts are exhausted, or any
            non-retryable error immediately.
        """
        attempt = 1
        while True:
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.warning(f"Giving up after {attempt} attempts: {e}")
                    raise
                delay = self.delay_for(attempt)
                logger.info(
                    f"Attempt {attempt}/{self.max_attempts} failed ({e}), "
                    f"retrying in {delay:.1f}s"
                )
                await self.sleep(delay)
                attempt += 1
