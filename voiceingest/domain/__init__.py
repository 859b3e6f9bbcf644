"""Domain entities and pipeline components reused by the API and the CLI."""

from voiceingest.ingest.acquire import AssetAcquirer
from voiceingest.ingest.engine import DecodeEngine, FFprobeEngine
from voiceingest.ingest.errors import (
    AcquireFailure,
    AssetTooLarge,
    BatchStateError,
    EmptyBatch,
    IngestError,
    PersistFailure,
    RejectReason,
)
from voiceingest.ingest.models import (
    BatchPhase,
    BatchState,
    OutputRecord,
    ProbeResult,
    Rejection,
    SelectionDescriptor,
    StagedAsset,
    TransientHandle,
    ValidatedEntry,
)
from voiceingest.ingest.naming import derive_display_name
from voiceingest.ingest.probe import DurationProbe
from voiceingest.ingest.validation import ValidationGate, Verdict

__all__ = [
    "AcquireFailure",
    "AssetAcquirer",
    "AssetTooLarge",
    "BatchPhase",
    "BatchState",
    "BatchStateError",
    "DecodeEngine",
    "DurationProbe",
    "EmptyBatch",
    "FFprobeEngine",
    "IngestError",
    "OutputRecord",
    "PersistFailure",
    "ProbeResult",
    "Rejection",
    "RejectReason",
    "SelectionDescriptor",
    "StagedAsset",
    "TransientHandle",
    "ValidatedEntry",
    "ValidationGate",
    "Verdict",
    "derive_display_name",
]
