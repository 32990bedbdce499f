"""Bounded retry policy for read-path chain polling.

The policy owns its sleep and clock functions so tests can substitute a
fake clock and run a full retry schedule instantly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterator, Optional, TypeVar

from ping_pay.config import VerificationConfig

logger = logging.getLogger("ping_pay.chain.retry")

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Max attempts, backoff between attempts, and an overall deadline.

    ``deadline`` bounds the whole poll, including time spent inside the
    fetch calls themselves; ``None`` disables it.
    """

    max_attempts: int = 10
    delay: float = 2.0
    backoff: float = 1.0
    max_delay: float = 30.0
    deadline: Optional[float] = 60.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    @classmethod
    def from_config(cls, config: VerificationConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.lookup_attempts,
            delay=config.lookup_delay_seconds,
            backoff=config.lookup_backoff,
            deadline=config.lookup_deadline_seconds,
        )

    def delays(self) -> Iterator[float]:
        """Yield the pause before each retry (``max_attempts - 1`` values)."""
        current = self.delay
        for _ in range(max(self.max_attempts - 1, 0)):
            yield min(current, self.max_delay)
            current *= self.backoff

    async def poll(
        self,
        fetch: Callable[[], Awaitable[Optional[T]]],
        *,
        label: str = "poll",
        retry_on: tuple[type[BaseException], ...] = (),
    ) -> Optional[T]:
        """Call *fetch* until it returns non-``None`` or the budget runs out.

        Exceptions listed in *retry_on* count as a miss (transient RPC
        trouble); anything else propagates.  Returns ``None`` once attempts
        or the deadline are exhausted.
        """
        started = self.clock()
        delays = self.delays()
        attempt = 0
        while True:
            attempt += 1
            remaining = self._remaining(started)
            if remaining is not None and remaining <= 0:
                logger.warning(f"{label}: deadline reached after {attempt - 1} attempt(s)")
                return None
            try:
                if remaining is None:
                    result = await fetch()
                else:
                    result = await asyncio.wait_for(fetch(), timeout=remaining)
            except asyncio.TimeoutError:
                logger.warning(f"{label}: deadline reached during attempt {attempt}")
                return None
            except retry_on as exc:
                logger.warning(f"{label}: attempt {attempt} failed: {exc}")
                result = None

            if result is not None:
                return result

            pause = next(delays, None)
            if pause is None:
                logger.warning(f"{label}: gave up after {attempt} attempt(s)")
                return None
            remaining = self._remaining(started)
            if remaining is not None:
                pause = min(pause, max(remaining, 0))
            logger.info(f"{label}: not yet available, retrying in {pause:.1f}s ({attempt}/{self.max_attempts})")
            await self.sleep(pause)

    def _remaining(self, started: float) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - (self.clock() - started)
