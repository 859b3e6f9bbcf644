from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from voiceingest.core.logging import get_logger

from .errors import RejectReason

logger = get_logger(component="transient_handle")


@dataclass(frozen=True, slots=True)
class SelectionDescriptor:
    """One user-chosen file as handed over by a picker."""

    name: str
    size_bytes: int
    raw_bytes: Optional[bytes] = field(default=None, repr=False)
    source_path: Optional[Path] = None

    @classmethod
    def from_path(cls, path: Path, *, with_data: bool = False) -> "SelectionDescriptor":
        """Describe a local file, optionally reading its bytes up front.

        Args:
            path: The file on disk.
            with_data: Read the content into ``raw_bytes`` as well.

        Returns:
            The descriptor.
        """
        stat = path.stat()
        return cls(
            name=path.name,
            size_bytes=stat.st_size,
            raw_bytes=path.read_bytes() if with_data else None,
            source_path=path,
        )

    @property
    def has_content(self) -> bool:
        return self.raw_bytes is not None or self.source_path is not None


class TransientHandle:
    """Exclusive ownership of one staged file; releasing deletes it exactly once."""

    __slots__ = ("path", "_released")

    def __init__(self, path: Path):
        self.path = path
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        if self._released:
            return False
        self._released = True
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("transient_release_failed", path=str(self.path), error=str(exc))
        else:
            logger.debug("transient_released", path=str(self.path))
        return True

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"TransientHandle({str(self.path)!r}, {state})"


@dataclass(slots=True)
class StagedAsset:
    descriptor: SelectionDescriptor
    content: bytes = field(repr=False)
    handle: Optional[TransientHandle] = None

    @property
    def path(self) -> Optional[Path]:
        return self.handle.path if self.handle else None

    def take_handle(self) -> Optional[TransientHandle]:
        """Hand the transient file over to a new owner."""
        handle, self.handle = self.handle, None
        return handle

    def release(self) -> None:
        handle = self.take_handle()
        if handle is not None:
            handle.release()


@dataclass(frozen=True, slots=True)
class ProbeResult:
    duration_s: float
    succeeded: bool

    @classmethod
    def failed(cls) -> "ProbeResult":
        return cls(duration_s=0.0, succeeded=False)


@dataclass(slots=True)
class ValidatedEntry:
    id: str
    display_name: str
    duration_s: float
    content: bytes = field(repr=False)
    descriptor: SelectionDescriptor
    handle: Optional[TransientHandle] = field(default=None, repr=False)

    def release(self) -> None:
        handle, self.handle = self.handle, None
        if handle is not None:
            handle.release()


class BatchPhase(str, Enum):
    idle = "idle"
    selecting = "selecting"
    processing = "processing"
    ready = "ready"
    committing = "committing"


@dataclass(frozen=True, slots=True)
class Rejection:
    name: str
    reason: RejectReason


@dataclass(slots=True)
class BatchState:
    entries: List[ValidatedEntry] = field(default_factory=list)
    processed: int = 0
    total: int = 0
    in_progress: bool = False
    last_error: Optional[str] = None
    phase: BatchPhase = BatchPhase.idle
    rejections: List[Rejection] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class OutputRecord:
    display_name: str
    duration_s: float
    content: bytes = field(repr=False)
    source_name: str = ""
    uri: Optional[str] = None


__all__ = [
    "SelectionDescriptor",
    "TransientHandle",
    "StagedAsset",
    "ProbeResult",
    "ValidatedEntry",
    "BatchPhase",
    "Rejection",
    "BatchState",
    "OutputRecord",
]
