from __future__ import annotations

from typing import List

from fastapi import APIRouter, BackgroundTasks, File, HTTPException, UploadFile, status

from voiceingest.api import deps
from voiceingest.core.config import Settings
from voiceingest.core.logging import get_logger
from voiceingest.ingest.errors import BatchStateError, EmptyBatch, PersistFailure
from voiceingest.ingest.models import BatchPhase, SelectionDescriptor
from voiceingest.services.batch_service import BatchService

from . import schemas


router = APIRouter(prefix="/batch", tags=["batch"])
logger = get_logger(component="routes_batch")

_BUSY = {BatchPhase.selecting, BatchPhase.processing, BatchPhase.committing}


async def _descriptor_from_upload(upload: UploadFile, settings: Settings) -> SelectionDescriptor:
    size = upload.size
    if size is not None and size > settings.max_file_size_bytes:
        # Declared too large: leave the body unread, the acquirer rejects on size alone.
        return SelectionDescriptor(name=upload.filename or "upload", size_bytes=size)
    content = await upload.read()
    await upload.close()
    return SelectionDescriptor(name=upload.filename or "upload", size_bytes=len(content), raw_bytes=content)


async def _run_selection(service: BatchService, descriptors: List[SelectionDescriptor]) -> None:
    try:
        await service.select_descriptors(descriptors)
    except BatchStateError as exc:
        logger.warning("background_selection_rejected", error=str(exc))


@router.get("", response_model=schemas.BatchResponse)
async def get_batch(service: deps.BatchServiceDependency) -> schemas.BatchResponse:
    return schemas.BatchResponse.from_state(service.snapshot())


@router.get("/progress", response_model=schemas.ProgressResponse)
async def get_progress(service: deps.BatchServiceDependency) -> schemas.ProgressResponse:
    return schemas.ProgressResponse.from_progress(service.progress())


@router.post("/select", response_model=schemas.BatchResponse, status_code=status.HTTP_202_ACCEPTED)
async def select_files(
    background: BackgroundTasks,
    service: deps.BatchServiceDependency,
    settings: deps.SettingsDependency,
    files: List[UploadFile] = File(...),
) -> schemas.BatchResponse:
    if service.state.phase in _BUSY:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"batch_{service.state.phase.value}")

    descriptors: List[SelectionDescriptor] = []
    for upload in files:
        if not settings.is_allowed_name(upload.filename or ""):
            logger.info("upload_skipped_extension", filename=upload.filename)
            continue
        descriptors.append(await _descriptor_from_upload(upload, settings))

    background.add_task(_run_selection, service, descriptors)
    return schemas.BatchResponse.from_state(service.state)


@router.patch("/entries/{entry_id}", response_model=schemas.BatchResponse)
async def rename_entry(
    entry_id: str,
    payload: schemas.RenameRequest,
    service: deps.BatchServiceDependency,
) -> schemas.BatchResponse:
    try:
        service.rename(entry_id, payload.display_name)
    except BatchStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return schemas.BatchResponse.from_state(service.state)


@router.delete("/entries/{entry_id}", response_model=schemas.BatchResponse)
async def remove_entry(entry_id: str, service: deps.BatchServiceDependency) -> schemas.BatchResponse:
    try:
        service.remove(entry_id)
    except BatchStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return schemas.BatchResponse.from_state(service.state)


@router.post("/cancel", response_model=schemas.BatchResponse)
async def cancel_batch(service: deps.BatchServiceDependency) -> schemas.BatchResponse:
    try:
        service.cancel()
    except BatchStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return schemas.BatchResponse.from_state(service.state)


@router.post("/commit", response_model=schemas.CommitResponse)
async def commit_batch(service: deps.BatchServiceDependency) -> schemas.CommitResponse:
    try:
        records = await service.commit()
    except (EmptyBatch, BatchStateError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PersistFailure as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return schemas.CommitResponse(voices=[schemas.CommittedVoice.from_record(record) for record in records])


__all__ = ["router"]
