from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import List

from voiceingest.core.logging import get_logger
from voiceingest.core.storage import Storage
from voiceingest.ingest.errors import PersistFailure
from voiceingest.ingest.models import OutputRecord, ValidatedEntry

from .accumulator import BatchAccumulator


def to_output_record(entry: ValidatedEntry) -> OutputRecord:
    return OutputRecord(
        display_name=entry.display_name,
        duration_s=entry.duration_s,
        content=entry.content,
        source_name=entry.descriptor.name,
    )


class CommitEmitter:
    """Hands a ready batch over to storage and resets the accumulator."""

    def __init__(self, storage: Storage):
        self.storage = storage
        self.logger = get_logger(component="commit_emitter")

    async def commit(self, accumulator: BatchAccumulator) -> List[OutputRecord]:
        """Persist every pending entry.

        Args:
            accumulator: The batch to commit; it must be ``ready``.

        Returns:
            One record per entry, in entry order, carrying the storage URI.

        Raises:
            EmptyBatch: There is nothing to commit.
            PersistFailure: Storage rejected a record. Anything saved during
                this attempt is deleted again and the batch stays ``ready``.
        """
        entries = accumulator.begin_commit()
        records = [to_output_record(entry) for entry in entries]

        saved: List[OutputRecord] = []
        try:
            for record in records:
                uri = await asyncio.to_thread(self.storage.save, record.source_name, record.content)
                saved.append(replace(record, uri=uri))
        except Exception as exc:
            self.logger.exception("commit_failed", saved=len(saved), total=len(records))
            await self._rollback([record.uri for record in saved if record.uri is not None])
            failure = PersistFailure(exc)
            accumulator.abort_commit(str(failure))
            raise failure from exc

        accumulator.finish_commit()
        self.logger.info("commit_succeeded", count=len(saved))
        return saved

    async def _rollback(self, uris: List[str]) -> None:
        for uri in uris:
            try:
                await asyncio.to_thread(self.storage.delete, uri)
            except (OSError, ValueError) as exc:
                self.logger.warning("commit_rollback_failed", uri=uri, error=str(exc))


__all__ = ["CommitEmitter", "to_output_record"]
