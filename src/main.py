"""Entry point for the conference dial-in voice bridge service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import get_registry, registry_built
from api.routes import router as api_router
from config.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if registry_built():
        registry = get_registry()
        await registry.shutdown()
        await registry.client.aclose()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Conference Voice Bridge",
    description="Dials a conference PSTN bridge, walks its menu and relays audio to a speech endpoint.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


@app.get("/health")
async def health() -> dict:
    sessions = len(get_registry()) if registry_built() else 0
    return {"status": "ok", "sessions": sessions}
