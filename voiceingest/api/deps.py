from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from voiceingest.core.config import Settings, get_settings
from voiceingest.services.batch_service import BatchService


def get_batch_service(request: Request) -> BatchService:
    service: BatchService = request.app.state.batch_service
    return service


def get_app_settings() -> Settings:
    return get_settings()


BatchServiceDependency = Annotated[BatchService, Depends(get_batch_service)]
SettingsDependency = Annotated[Settings, Depends(get_app_settings)]


__all__ = [
    "get_batch_service",
    "get_app_settings",
    "BatchServiceDependency",
    "SettingsDependency",
]
