"""Transfer concurrency policy and throttling.

The storage transfers in phase 2 run strictly one at a time by default.
A :class:`TransferPolicy` can widen that to a bounded number of concurrent
transfers and/or space transfer starts by a minimum interval; the
orchestrator collects results by index, so outcomes do not depend on the
policy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Policy dataclass
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransferPolicy:
    """Concurrency settings for storage transfers.

    Attributes:
        max_concurrency: Transfers allowed in flight at once (1 = sequential).
        min_interval: Minimum seconds between consecutive transfer starts.
    """

    max_concurrency: int = 1
    min_interval: float = 0.0

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError(
                f"max_concurrency must be >= 1, got {self.max_concurrency}"
            )
        if self.min_interval < 0:
            raise ValueError(f"min_interval must be >= 0, got {self.min_interval}")

    @property
    def sequential(self) -> bool:
        """True when transfers run strictly one after another."""
        return self.max_concurrency == 1


SEQUENTIAL = TransferPolicy()


# ---------------------------------------------------------------------------
# Throttle
# ---------------------------------------------------------------------------


class TransferThrottle:
    """Enforces a :class:`TransferPolicy` for one orchestrator run.

    Usage::

        throttle = TransferThrottle(TransferPolicy(max_concurrency=3))
        async with throttle.slot():
            await storage.transfer(slot, file)
    """

    def __init__(self, policy: TransferPolicy = SEQUENTIAL) -> None:
        self._policy = policy
        self._semaphore = asyncio.Semaphore(policy.max_concurrency)
        self._start_lock = asyncio.Lock()
        self._last_start: float | None = None

    async def wait_if_needed(self) -> None:
        """Sleep until *min_interval* has passed since the previous start."""
        interval = self._policy.min_interval
        async with self._start_lock:
            if interval > 0 and self._last_start is not None:
                delay = interval - (time.monotonic() - self._last_start)
                if delay > 0:
                    logger.debug("Transfer throttle: sleeping %.2fs", delay)
                    await asyncio.sleep(delay)
            self._last_start = time.monotonic()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one concurrency slot for the duration of a transfer."""
        async with self._semaphore:
            await self.wait_if_needed()
            yield
