from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from app.hub import router as hub_router
from logging_config import configure_logging
from services.broadcaster import build_default_channel
from services.coordinator import build_default_coordinator
from services.scheduler import SamplingTimer
from settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    coordinator = build_default_coordinator()
    channel = build_default_channel()
    interval = get_settings().sample_interval
    timer = SamplingTimer(coordinator, interval) if interval > 0 else None
    app.state.sampling_timer = timer
    if timer is not None:
        timer.start()
    try:
        yield
    finally:
        if timer is not None:
            await timer.stop()
        await channel.close()
        coordinator.shutdown()
        build_default_coordinator.cache_clear()
        build_default_channel.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Motor Telemetry",
        description="Synthetic motor telemetry: sampled, persisted and pushed to live subscribers.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(hub_router)
    return app

app = create_app()
