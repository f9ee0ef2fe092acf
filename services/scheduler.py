"""Periodic sampling trigger driven from the application lifespan."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from services.coordinator import SamplingCoordinator
from services.errors import PersistenceError, SynthesisError

logger = logging.getLogger(__name__)


class SamplingTimer:
    """Calls :meth:`SamplingCoordinator.sample` every ``interval`` seconds."""

    def __init__(self, coordinator: SamplingCoordinator, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.coordinator = coordinator
        self.interval = interval
        self.completed = 0
        self.failed = 0
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="sampling-timer")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            try:
                await self.coordinator.sample()
            except (SynthesisError, PersistenceError) as exc:
                self.failed += 1
                logger.warning("Scheduled sample failed", extra={"reason": str(exc)})
            else:
                self.completed += 1
            await asyncio.sleep(self.interval)
