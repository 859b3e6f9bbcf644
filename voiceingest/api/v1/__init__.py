"""Versioned API routing for the voice ingestion service."""

from fastapi import APIRouter

from . import routes_batch, routes_system


def get_api_router() -> APIRouter:
    router = APIRouter(prefix="/v1")
    router.include_router(routes_system.router)
    router.include_router(routes_batch.router)
    return router


__all__ = ["get_api_router"]
