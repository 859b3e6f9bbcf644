from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from voiceingest.core.config import Settings

from .errors import RejectReason
from .models import ProbeResult, StagedAsset


@dataclass(frozen=True, slots=True)
class Verdict:
    accepted: bool
    duration_s: float = 0.0
    reason: Optional[RejectReason] = None

    @classmethod
    def accept(cls, duration_s: float) -> "Verdict":
        return cls(accepted=True, duration_s=duration_s)

    @classmethod
    def reject(cls, reason: RejectReason) -> "Verdict":
        return cls(accepted=False, reason=reason)


class ValidationGate:
    """Size and duration policy for a single probed clip. Never raises."""

    def __init__(self, *, max_file_size_bytes: int, max_duration_s: float):
        self.max_file_size_bytes = max_file_size_bytes
        self.max_duration_s = max_duration_s

    @classmethod
    def from_settings(cls, settings: Settings) -> "ValidationGate":
        return cls(
            max_file_size_bytes=settings.max_file_size_bytes,
            max_duration_s=settings.max_duration_s,
        )

    def validate(self, staged: StagedAsset, probe: ProbeResult) -> Verdict:
        if staged.descriptor.size_bytes > self.max_file_size_bytes:
            return Verdict.reject(RejectReason.too_large)
        if not probe.succeeded or probe.duration_s <= 0:
            return Verdict.reject(RejectReason.duration_unavailable)
        if probe.duration_s > self.max_duration_s:
            return Verdict.reject(RejectReason.too_long)
        return Verdict.accept(probe.duration_s)


__all__ = ["ValidationGate", "Verdict"]
