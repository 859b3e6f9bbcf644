from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, cast
from uuid import uuid4

from voiceingest.core.logging import get_logger
from voiceingest.ingest.acquire import AssetAcquirer
from voiceingest.ingest.errors import (
    AcquireFailure,
    AssetTooLarge,
    BatchStateError,
    EmptyBatch,
    RejectReason,
)
from voiceingest.ingest.models import (
    BatchPhase,
    BatchState,
    Rejection,
    SelectionDescriptor,
    ValidatedEntry,
)
from voiceingest.ingest.naming import derive_display_name
from voiceingest.ingest.pickers import FilePicker
from voiceingest.ingest.probe import DurationProbe
from voiceingest.ingest.validation import ValidationGate

SELECTION_ERROR = "Error selecting files. Please try again."

_BUSY_PHASES = frozenset({BatchPhase.selecting, BatchPhase.processing, BatchPhase.committing})


class CancellationToken:
    """Monotonic flag shared by one batch run; once cancelled it stays cancelled."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass(frozen=True, slots=True)
class BatchProgress:
    processed: int
    total: int
    in_progress: bool


class BatchAccumulator:
    """Owns the pending entries of one batch and drives the per-item pipeline.

    Phases move ``idle -> selecting -> processing -> ready -> committing -> idle``.
    ``cancel`` returns to ``idle`` from anywhere but ``committing``. Every await
    in the processing loop is followed by a token check, so results that land
    after a cancel are dropped and their transient files released.
    """

    def __init__(
        self,
        acquirer: AssetAcquirer,
        probe: DurationProbe,
        gate: ValidationGate,
        *,
        id_factory: Callable[[], str] = lambda: uuid4().hex,
    ):
        self.acquirer = acquirer
        self.probe = probe
        self.gate = gate
        self.id_factory = id_factory
        self.state = BatchState()
        self._token = CancellationToken()
        self._disposed = False
        self.logger = get_logger(component="batch_accumulator")

    @property
    def phase(self) -> BatchPhase:
        return self.state.phase

    @property
    def disposed(self) -> bool:
        return self._disposed

    def progress(self) -> BatchProgress:
        return BatchProgress(
            processed=self.state.processed,
            total=self.state.total,
            in_progress=self.state.in_progress,
        )

    async def select(self, picker: FilePicker) -> BatchState:
        """Run one selection request through to ``ready`` (or back to ``idle``).

        Args:
            picker: Supplies the descriptors for this batch.

        Returns:
            The batch state once the loop has finished or been cancelled.
        """
        self._ensure_open()
        if self.state.phase in _BUSY_PHASES:
            raise BatchStateError(f"cannot_select_while_{self.state.phase.value}")

        self._release_entries()
        token = CancellationToken()
        self._token = token
        self.state = BatchState(phase=BatchPhase.selecting)

        try:
            descriptors = await picker.pick()
        except Exception:
            self.logger.exception("selection_failed")
            if not token.cancelled:
                self.state = BatchState(last_error=SELECTION_ERROR)
            return self.state

        if token.cancelled:
            return self.state
        if not descriptors:
            self.logger.info("selection_empty")
            self.state = BatchState()
            return self.state

        await self._process(list(descriptors), token)
        return self.state

    async def _process(self, descriptors: List[SelectionDescriptor], token: CancellationToken) -> None:
        state = self.state
        state.total = len(descriptors)
        state.processed = 0
        state.in_progress = True
        state.phase = BatchPhase.processing
        self.logger.info("batch_processing_started", total=state.total)

        for descriptor in descriptors:
            if token.cancelled:
                return
            await self._process_one(descriptor, token)

        if token.cancelled:
            return
        state.in_progress = False
        state.phase = BatchPhase.ready
        self.logger.info(
            "batch_ready",
            total=state.total,
            accepted=len(state.entries),
            rejected=len(state.rejections),
        )

    async def _process_one(self, descriptor: SelectionDescriptor, token: CancellationToken) -> None:
        try:
            staged = await self.acquirer.acquire(descriptor)
        except AssetTooLarge:
            if not token.cancelled:
                self._reject(descriptor, RejectReason.too_large)
            return
        except (AcquireFailure, OSError) as exc:
            self.logger.warning("acquire_failed", name=descriptor.name, error=str(exc))
            if not token.cancelled:
                self._reject(descriptor, RejectReason.duration_unavailable)
            return

        if token.cancelled:
            staged.release()
            return

        result = await self.probe.probe(staged)
        if token.cancelled:
            self.logger.info("probe_result_discarded", name=descriptor.name)
            staged.release()
            return

        verdict = self.gate.validate(staged, result)
        if not verdict.accepted:
            staged.release()
            self._reject(descriptor, cast(RejectReason, verdict.reason))
            return

        entry = ValidatedEntry(
            id=self.id_factory(),
            display_name=derive_display_name(descriptor.name),
            duration_s=verdict.duration_s,
            content=staged.content,
            descriptor=descriptor,
            handle=staged.take_handle(),
        )
        self.state.entries.append(entry)
        self.state.processed += 1
        self.logger.debug("item_accepted", name=descriptor.name, entry_id=entry.id, duration_s=entry.duration_s)

    def _reject(self, descriptor: SelectionDescriptor, reason: RejectReason) -> None:
        self.state.rejections.append(Rejection(name=descriptor.name, reason=reason))
        self.state.processed += 1
        self.logger.warning("item_rejected", name=descriptor.name, reason=reason.value)

    def rename(self, entry_id: str, display_name: str) -> bool:
        self._ensure_ready("rename")
        entry = self._find(entry_id)
        if entry is None:
            return False
        entry.display_name = display_name
        return True

    def remove(self, entry_id: str) -> bool:
        self._ensure_ready("remove")
        entry = self._find(entry_id)
        if entry is None:
            return False
        entry.release()
        self.state.entries.remove(entry)
        self.logger.info("entry_removed", entry_id=entry_id)
        return True

    def cancel(self) -> None:
        """Drop the current batch and release everything it holds. Idempotent."""
        if self.state.phase == BatchPhase.committing:
            raise BatchStateError("cannot_cancel_while_committing")
        self._abandon("batch_cancelled")

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._abandon("batch_disposed")

    def begin_commit(self) -> List[ValidatedEntry]:
        self._ensure_open()
        if self.state.phase in _BUSY_PHASES:
            raise BatchStateError(f"cannot_commit_while_{self.state.phase.value}")
        if not self.state.entries:
            error = EmptyBatch()
            self.state.last_error = str(error)
            raise error
        self.state.phase = BatchPhase.committing
        self.state.last_error = None
        return list(self.state.entries)

    def abort_commit(self, message: str) -> None:
        if self.state.phase != BatchPhase.committing:
            return
        self.state.phase = BatchPhase.ready
        self.state.last_error = message

    def finish_commit(self) -> None:
        self._release_entries()
        self.state = BatchState()

    def _abandon(self, event: str) -> None:
        self._token.cancel()
        released = self._release_entries()
        previous = self.state.phase
        self.state = BatchState()
        if previous != BatchPhase.idle or released:
            self.logger.info(event, previous_phase=previous.value, released=released)

    def _release_entries(self) -> int:
        # Leaves the list intact; every caller swaps in a fresh BatchState.
        entries: Sequence[ValidatedEntry] = self.state.entries
        for entry in entries:
            entry.release()
        return len(entries)

    def _find(self, entry_id: str) -> Optional[ValidatedEntry]:
        for entry in self.state.entries:
            if entry.id == entry_id:
                return entry
        return None

    def _ensure_open(self) -> None:
        if self._disposed:
            raise BatchStateError("batch_disposed")

    def _ensure_ready(self, operation: str) -> None:
        self._ensure_open()
        if self.state.phase != BatchPhase.ready:
            raise BatchStateError(f"cannot_{operation}_while_{self.state.phase.value}")


__all__ = ["BatchAccumulator", "BatchProgress", "CancellationToken", "SELECTION_ERROR"]
