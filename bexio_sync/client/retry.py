from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from bexio_sync.constants import CLIENT_LOGGER
from bexio_sync.errors import is_transient

T = TypeVar("T")


class RetryPolicy:
    """Exponential backoff: ``base_delay * 2**(attempt - 1)`` plus up to ``jitter`` seconds."""

    def __init__(
        self,
        max_attempts: int,
        base_delay: float,
        jitter: float = 0.0,
        *,
        retry_on: Callable[[BaseException], bool] = is_transient,
        sleep=asyncio.sleep,
        rand: Callable[[float, float], float] = random.uniform,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.jitter = jitter
        self.retry_on = retry_on
        self._sleep = sleep
        self._rand = rand
        self._logger = logger or CLIENT_LOGGER

    def delay(self, attempt: int) -> float:
        backoff = self.base_delay * 2 ** (attempt - 1)
        if self.jitter > 0:
            backoff += self._rand(0, self.jitter)
        return backoff

    async def run(self, operation: Callable[[], Awaitable[T]], *, description: str = "request") -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as error:
                if attempt >= self.max_attempts or not self.retry_on(error):
                    raise
                wait_seconds = self.delay(attempt)
                self._logger.warning(
                    "Retrying %s after %.2fs (attempt %s/%s): %s",
                    description,
                    wait_seconds,
                    attempt + 1,
                    self.max_attempts,
                    error,
                )
                await self._sleep(wait_seconds)
                attempt += 1


REFRESH_RETRY = dict(max_attempts=3, base_delay=1.0, jitter=0.0)
WRITE_RETRY = dict(max_attempts=3, base_delay=0.4, jitter=0.2)
