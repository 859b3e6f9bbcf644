from __future__ import annotations

import asyncio

from fastapi import APIRouter

from voiceingest.api import deps
from voiceingest.ingest.ffprobe_parser import binary_version

from .schemas import HealthResponse


router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health(settings: deps.SettingsDependency) -> HealthResponse:
    version = await asyncio.to_thread(binary_version, (settings.ffprobe_binary, "-version"))
    return HealthResponse(ffprobe=version)


__all__ = ["router"]
