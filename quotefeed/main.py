from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from quotefeed.api.routes import router
from quotefeed.config.settings import get_settings
from quotefeed.services.ingest_service import IngestionService


@asynccontextmanager
async def lifespan(app: FastAPI):
    # settings resolve at startup, not at import
    if app.state.ingest_service is None:
        app.state.ingest_service = app.state.service_factory(app.state.get_settings())
    service = app.state.ingest_service

    service.start()
    try:
        yield
    finally:
        service.stop()


app = FastAPI(title="Quote Feed Ingestor", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

# NOTE: lazy-loaded so app import does not require env during tests.
app.state.get_settings = get_settings
app.state.service_factory = IngestionService.from_settings
app.state.ingest_service = None
