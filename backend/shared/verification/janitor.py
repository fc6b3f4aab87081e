"""Token Janitor: periodic eviction of expired credentials."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from shared.models.credential import Platform
from shared.repositories import CredentialRepository

logger = logging.getLogger(__name__)


class TokenJanitor:
    """Delete every credential whose expiry has passed, on a fixed period.

    A failing sweep is logged and the loop carries on; the next run retries
    naturally since the sweep is idempotent.
    """

    def __init__(
        self,
        credentials: CredentialRepository,
        interval: float = 3600,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.credentials = credentials
        self.interval = interval
        self._clock = clock or (lambda: datetime.now(UTC))
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self, now: datetime | None = None) -> dict[Platform, int]:
        counts = await self.credentials.sweep_expired(now or self._clock())
        total = sum(counts.values())
        if total:
            detail = ", ".join(f"{p.value}={n}" for p, n in counts.items())
            logger.info(f"Token sweep removed {total} expired credentials ({detail})")
        else:
            logger.debug("Token sweep removed nothing")
        return counts

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(f"Token sweep failed: {type(e).__name__}: {e}")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Token janitor started (interval={self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Token janitor stopped")
