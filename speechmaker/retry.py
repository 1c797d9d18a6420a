"""Exponential-backoff retry shared by voice discovery, ffmpeg probing and jobs."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from speechmaker.constants import RETRY_BASE_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry configuration.

    After failed attempt n (1-based) the policy waits base_delay * 2 ** n
    seconds: 2s after the first failure, 4s after the second. There is no
    wait after the final attempt. `sleep` is injectable for tests.
    """

    max_attempts: int = 3
    base_delay: float = RETRY_BASE_DELAY
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        should_retry: Callable[[Exception], bool] = lambda exc: True,
        on_retry: Callable[[int, float, Exception], None] | None = None,
        name: str = "operation",
    ) -> T:
        """Await operation(attempt) until it succeeds or attempts run out.

        Raises the last exception when attempts are exhausted or when
        should_retry() rejects it. CancelledError is never retried.
        """
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation(attempt)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt >= self.max_attempts or not should_retry(e):
                    logger.debug("%s failed on attempt %d, giving up: %s", name, attempt, e)
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    name, attempt, self.max_attempts, delay, e,
                )
                if on_retry is not None:
                    on_retry(attempt, delay, e)
                await self.sleep(delay)

        raise RuntimeError("unreachable")  # pragma: no cover
