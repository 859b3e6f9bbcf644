from __future__ import annotations

from enum import Enum


class RejectReason(str, Enum):
    """Why a single clip was skipped. Ordered by the priority they are checked in."""

    too_large = "too_large"
    duration_unavailable = "duration_unavailable"
    too_long = "too_long"


class IngestError(Exception):
    """Base class for every error raised by the ingestion pipeline."""


class AssetTooLarge(IngestError):
    def __init__(self, name: str, size_bytes: int, limit_bytes: int):
        super().__init__(f"{name} is {size_bytes} bytes, limit is {limit_bytes}")
        self.name = name
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class AcquireFailure(IngestError):
    """The descriptor could not be turned into byte content."""


class ProbeCommandError(IngestError):
    """The decode engine failed to report on a loaded source."""


class EmptyBatch(IngestError):
    def __init__(self) -> None:
        super().__init__("Please select at least one valid audio file")


class PersistFailure(IngestError):
    def __init__(self, cause: BaseException):
        super().__init__("Error preparing files for upload. Please try again.")
        self.cause = cause


class BatchStateError(IngestError):
    """A control operation was invoked in a phase that does not allow it."""


__all__ = [
    "RejectReason",
    "IngestError",
    "AssetTooLarge",
    "AcquireFailure",
    "ProbeCommandError",
    "EmptyBatch",
    "PersistFailure",
    "BatchStateError",
]
