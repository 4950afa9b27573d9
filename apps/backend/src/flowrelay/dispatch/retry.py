"""Bounded retry on rate-limit responses, using the server's backoff hint."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from ..errors import RateLimited, RetriesExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry only on ``RateLimited``; anything else propagates immediately.

    ``max_attempts`` counts the first try. Once it is used up the last
    rate-limit turns into ``RetriesExhausted``, which callers must not retry.
    """

    max_attempts: int = 3
    default_delay: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "request") -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except RateLimited as exc:
                if attempt >= self.max_attempts:
                    raise RetriesExhausted(
                        f"{description}: rate limited {attempt} times, giving up",
                        attempts=attempt,
                    ) from exc
                delay = exc.retry_after if exc.retry_after is not None else self.default_delay
                logger.info(
                    "Rate limited, retrying",
                    extra={"operation": description, "attempt": attempt, "retry_after": delay},
                )
                await self.sleep(delay)
