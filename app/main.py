from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.relay import build_default_relay


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    relay = build_default_relay()
    try:
        yield
    finally:
        relay.shutdown()
        build_default_relay.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Torque Warp10 Relay",
        description="Relays Torque telemetry uploads to a Warp10 datastore.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
