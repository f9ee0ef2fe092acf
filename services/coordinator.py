"""End-to-end orchestration of one telemetry sample."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import lru_cache, partial
from typing import Callable, Optional

from app.schemas import MessageType, Reading, push_message
from datastore.readings_table import ReadingsTable, build_default_table
from models.records import MotorState
from services.alerts import AlertEvaluator
from services.broadcaster import BroadcastChannel, build_default_channel
from services.errors import PersistenceError, SynthesisError
from services.synthesizer import NOMINAL_STEP_SECONDS, ReadingSynthesizer
from settings import get_settings

logger = logging.getLogger(__name__)

MAX_STEP_SECONDS = 3600.0


def machine_group(machine_id: str) -> str:
    return f"motor-{machine_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SamplingCoordinator:
    """Owns one motor's carry-over state and runs synthesize, persist, publish.

    Overlapping calls to :meth:`sample` are serialized.  Readings are handed to
    the channel inside the critical section, so subscribers see them in the
    order they were stored.
    """

    def __init__(
        self,
        table: ReadingsTable,
        channel: BroadcastChannel,
        synthesizer: ReadingSynthesizer,
        machine_id: str = "MOTOR-001",
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utcnow,
        alerts: Optional[AlertEvaluator] = None,
        workers: int = 1,
    ) -> None:
        self.table = table
        self.channel = channel
        self.synthesizer = synthesizer
        self.machine_id = machine_id
        self.rng = rng or random.Random()
        self.clock = clock
        self.alerts = alerts
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="readings-store")
        self._lock = asyncio.Lock()
        restored = table.load_state()
        self._state = restored if restored is not None else MotorState()
        if restored is not None:
            logger.info(
                "Resumed motor state from store",
                extra={"machine_id": machine_id, "value": round(restored.operating_seconds, 2)},
            )

    @property
    def state(self) -> MotorState:
        return self._state

    async def sample(self) -> Reading:
        """Produce, persist and broadcast exactly one reading."""

        async with self._lock:
            started = time.perf_counter()
            now = self.clock()
            elapsed = self._elapsed_since(now)
            try:
                result = self.synthesizer.synthesize(
                    self._state, elapsed, self.rng, timestamp=now, machine_id=self.machine_id
                )
            except SynthesisError as exc:
                logger.error(
                    "Synthesis produced an invalid value",
                    extra={"machine_id": self.machine_id, "field": exc.field, "value": exc.value},
                )
                raise

            loop = asyncio.get_running_loop()
            persisting = loop.run_in_executor(
                self.executor, partial(self.table.append, result.draft, result.state)
            )
            try:
                reading = await asyncio.shield(persisting)
            except asyncio.CancelledError:
                # The worker commits the row even when the caller goes away.
                settled = await _settle(persisting)
                if settled is not None:
                    self._commit(settled, result.state, started)
                raise
            except PersistenceError as exc:
                logger.error(
                    "Failed to persist reading",
                    extra={"machine_id": self.machine_id, "reason": str(exc)},
                )
                raise

            self._commit(reading, result.state, started)
        return reading

    async def service(self) -> MotorState:
        """Maintenance reset: new bearings and fresh oil, running time kept."""

        async with self._lock:
            serviced = self._state.serviced()
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(self.executor, self.table.save_state, serviced)
            self._state = serviced
        logger.info(
            "Motor serviced",
            extra={"machine_id": self.machine_id, "value": round(serviced.operating_seconds / 3600.0, 2)},
        )
        return serviced

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _elapsed_since(self, now: datetime) -> float:
        previous = self._state.last_sample_at
        if previous is None:
            return NOMINAL_STEP_SECONDS
        elapsed = (now - previous).total_seconds()
        return min(max(elapsed, 0.0), MAX_STEP_SECONDS)

    def _commit(self, reading: Reading, state: MotorState, started: float) -> None:
        self._state = state
        report = self.channel.publish(push_message(MessageType.new_reading, reading))
        logger.info(
            "Sample persisted and published",
            extra={
                "reading_id": reading.id,
                "machine_id": reading.machine_id,
                "status": reading.status.value,
                "delivered": report.delivered,
                "failed": len(report.dropped) or None,
                "elapsed_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        self._publish_alerts(reading)

    def _publish_alerts(self, reading: Reading) -> None:
        if self.alerts is None:
            return
        group = machine_group(reading.machine_id)
        for alert in self.alerts.evaluate(reading):
            self.channel.publish(push_message(MessageType.new_alert, alert), group=group)
            logger.warning(
                alert.message,
                extra={"reading_id": reading.id, "machine_id": reading.machine_id, "status": alert.severity.value},
            )


async def _settle(persisting: "asyncio.Future[Reading]") -> Optional[Reading]:
    try:
        return await persisting
    except (PersistenceError, asyncio.CancelledError):
        return None


@lru_cache
def build_default_coordinator() -> SamplingCoordinator:
    """Factory that wires the coordinator with the default store and channel."""
    settings = get_settings()
    seed = settings.simulation_seed
    return SamplingCoordinator(
        table=build_default_table(),
        channel=build_default_channel(),
        synthesizer=ReadingSynthesizer(),
        machine_id=settings.machine_id,
        rng=random.Random(seed) if seed is not None else random.Random(),
        alerts=AlertEvaluator(),
        workers=settings.coordinator_workers,
    )
