"""FastAPI application exposing the thermostat scheduling engine."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .netatmo.config import settings
from .netatmo.utils import configure_logging, logger
from .router import router as api_router
from .schedule_executor import executor

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the periodic executor when enabled, and stop it on shutdown."""
    if settings.executor_enabled:
        executor.interval_seconds = settings.executor_interval
        await executor.start()
    else:
        logger.info("Periodic schedule executor disabled; use /api/schedules/run")
    try:
        yield
    finally:
        await executor.stop()


app = FastAPI(
    title="Thermostat Schedule API",
    version="1.0.0",
    description=(
        "Turns guest reservations into preheat/eco thermostat commands and "
        "executes them when due."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    """Simple readiness check."""
    return {"status": "ok"}
