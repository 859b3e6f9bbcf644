from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional

from voiceingest.core.config import Settings
from voiceingest.core.logging import get_logger
from voiceingest.core.storage import Storage, get_storage
from voiceingest.ingest.acquire import AssetAcquirer
from voiceingest.ingest.engine import DecodeEngine, FFprobeEngine
from voiceingest.ingest.models import BatchState, OutputRecord, SelectionDescriptor
from voiceingest.ingest.pickers import FilePicker, StaticPicker
from voiceingest.ingest.probe import DurationProbe
from voiceingest.ingest.validation import ValidationGate

from .accumulator import BatchAccumulator, BatchProgress
from .commit import CommitEmitter


class BatchService:
    """The control surface a UI drives: select, rename, remove, cancel, commit."""

    def __init__(self, settings: Settings, storage: Storage, engine: DecodeEngine):
        self.settings = settings
        self.storage = storage
        self.engine = engine
        self.accumulator = BatchAccumulator(
            AssetAcquirer.from_settings(settings, accepts_memory=engine.accepts_memory),
            DurationProbe.from_settings(engine, settings),
            ValidationGate.from_settings(settings),
        )
        self.emitter = CommitEmitter(storage)
        self.logger = get_logger(component="batch_service")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        storage: Optional[Storage] = None,
        engine: Optional[DecodeEngine] = None,
    ) -> "BatchService":
        return cls(
            settings,
            storage or get_storage(settings),
            engine or FFprobeEngine.from_settings(settings),
        )

    @property
    def state(self) -> BatchState:
        return self.accumulator.state

    def progress(self) -> BatchProgress:
        return self.accumulator.progress()

    def snapshot(self) -> BatchState:
        """A copy of the batch state that later renames, removals and resets do not affect."""
        state = self.accumulator.state
        return replace(
            state,
            entries=[replace(entry) for entry in state.entries],
            rejections=list(state.rejections),
        )

    async def select(self, picker: FilePicker) -> BatchState:
        return await self.accumulator.select(picker)

    async def select_descriptors(self, descriptors: Iterable[SelectionDescriptor]) -> BatchState:
        return await self.accumulator.select(StaticPicker(descriptors))

    def rename(self, entry_id: str, display_name: str) -> bool:
        return self.accumulator.rename(entry_id, display_name)

    def remove(self, entry_id: str) -> bool:
        return self.accumulator.remove(entry_id)

    def cancel(self) -> None:
        self.accumulator.cancel()

    async def commit(self) -> List[OutputRecord]:
        return await self.emitter.commit(self.accumulator)

    async def dispose(self) -> None:
        if self.accumulator.disposed:
            return
        self.accumulator.dispose()
        await self.engine.close()
        self.logger.info("batch_service_disposed")


__all__ = ["BatchService"]
