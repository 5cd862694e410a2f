"""RetryPolicy: bounded retries with a fixed (optionally growing) delay."""

from __future__ import annotations

import asyncio
import random


class RetryPolicy:
    """Retry budget shared by reconnects, publishes and consumer requeues.

    ``max_retries`` counts retries *after* the first attempt, so a policy
    allows ``max_retries + 1`` attempts in total. With the default
    ``backoff=1.0`` every pause equals ``delay``.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        delay: float = 1.0,
        backoff: float = 1.0,
        max_delay: float | None = None,
        jitter: bool = False,
    ) -> None:
        """Configure retry behavior.

        Args:
            max_retries: Retries allowed after the first attempt.
            delay: Pause in seconds before the first retry.
            backoff: Multiplier applied to the pause for each further retry.
            max_delay: Cap on the pause in seconds (None for no cap).
            jitter: If True, scale each pause by a random factor in [0.5, 1.5].
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if delay < 0:
            raise ValueError("delay must be >= 0")
        if backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")
        if max_delay is not None and max_delay < delay:
            raise ValueError("max_delay must be >= delay")
        self.max_retries = max_retries
        self.delay = delay
        self.backoff = backoff
        self.max_delay = max_delay
        self.jitter = jitter

    @property
    def attempts(self) -> int:
        """Total number of attempts, first one included."""
        return self.max_retries + 1

    def should_retry(self, retries_done: int) -> bool:
        """Return True while fewer than ``max_retries`` retries were spent."""
        return 0 <= retries_done < self.max_retries

    def delay_for(self, retry: int) -> float:
        """Return the pause in seconds before the given 1-based retry."""
        if retry < 1:
            return 0.0
        pause = self.delay * (self.backoff ** (retry - 1))
        if self.max_delay is not None:
            pause = min(pause, self.max_delay)
        if self.jitter:
            pause = pause * (0.5 + random.random())  # noqa: S311
        return float(max(0.0, pause))

    async def wait(self, retry: int) -> None:
        """Sleep for the pause preceding the given retry."""
        pause = self.delay_for(retry)
        if pause > 0:
            await asyncio.sleep(pause)
