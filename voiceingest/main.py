from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from voiceingest.api.v1 import get_api_router
from voiceingest.core.config import get_settings
from voiceingest.core.logging import configure_logging, level_from_name
from voiceingest.core.storage import Storage, get_storage
from voiceingest.ingest.engine import DecodeEngine, FFprobeEngine
from voiceingest.services.batch_service import BatchService


def create_app(*, engine: Optional[DecodeEngine] = None, storage: Optional[Storage] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level))
    storage = storage or get_storage(settings)
    engine = engine or FFprobeEngine.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service = BatchService(settings, storage, engine)
        app.state.settings = settings
        app.state.storage = storage
        app.state.batch_service = service
        try:
            yield
        finally:
            await service.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )
    app.include_router(get_api_router())
    return app


__all__ = ["create_app"]
