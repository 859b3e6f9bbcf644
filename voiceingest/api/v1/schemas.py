from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from voiceingest.ingest.errors import RejectReason
from voiceingest.ingest.models import BatchPhase, BatchState, OutputRecord, ValidatedEntry
from voiceingest.services.accumulator import BatchProgress


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ffprobe: str = Field(default="unknown", description="First line of `ffprobe -version`.")


class ProgressResponse(BaseModel):
    processed: int
    total: int
    in_progress: bool

    @classmethod
    def from_progress(cls, progress: BatchProgress) -> "ProgressResponse":
        return cls(processed=progress.processed, total=progress.total, in_progress=progress.in_progress)


class EntryResponse(BaseModel):
    id: str
    display_name: str
    duration_s: float
    source_name: str
    size_bytes: int

    @classmethod
    def from_entry(cls, entry: ValidatedEntry) -> "EntryResponse":
        return cls(
            id=entry.id,
            display_name=entry.display_name,
            duration_s=entry.duration_s,
            source_name=entry.descriptor.name,
            size_bytes=entry.descriptor.size_bytes,
        )


class RejectionResponse(BaseModel):
    name: str
    reason: RejectReason


class BatchResponse(BaseModel):
    phase: BatchPhase
    progress: ProgressResponse
    entries: List[EntryResponse] = Field(default_factory=list)
    rejections: List[RejectionResponse] = Field(default_factory=list)
    last_error: Optional[str] = None

    @classmethod
    def from_state(cls, state: BatchState) -> "BatchResponse":
        return cls(
            phase=state.phase,
            progress=ProgressResponse(processed=state.processed, total=state.total, in_progress=state.in_progress),
            entries=[EntryResponse.from_entry(entry) for entry in state.entries],
            rejections=[RejectionResponse(name=item.name, reason=item.reason) for item in state.rejections],
            last_error=state.last_error,
        )


class RenameRequest(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=128, json_schema_extra={"example": "Morning Greeting"})


class CommittedVoice(BaseModel):
    display_name: str
    duration_s: float
    source_name: str
    uri: Optional[str]

    @classmethod
    def from_record(cls, record: OutputRecord) -> "CommittedVoice":
        return cls(
            display_name=record.display_name,
            duration_s=record.duration_s,
            source_name=record.source_name,
            uri=record.uri,
        )


class CommitResponse(BaseModel):
    voices: List[CommittedVoice]
