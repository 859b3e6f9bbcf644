from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

from voiceingest.core.config import Settings, StagingMode
from voiceingest.core.logging import get_logger
from voiceingest.core.storage import safe_filename

from .errors import AcquireFailure, AssetTooLarge
from .models import SelectionDescriptor, StagedAsset, TransientHandle


class AssetAcquirer:
    """Turns a selection descriptor into byte content the decode engine can read.

    The engine either reads the bytes directly from memory or needs a path on
    disk. In the latter case the bytes are staged into a uniquely named file
    under ``staging_dir`` and the returned ``StagedAsset`` owns it. At most one
    transient file is created per call and the caller owns its release.
    """

    def __init__(
        self,
        *,
        staging_dir: Path,
        max_file_size_bytes: int,
        staging_mode: StagingMode = "auto",
        accepts_memory: Optional[Callable[[str], bool]] = None,
    ):
        self.staging_dir = staging_dir
        self.max_file_size_bytes = max_file_size_bytes
        self.staging_mode = staging_mode
        self._accepts_memory = accepts_memory
        self.logger = get_logger(component="asset_acquirer")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        accepts_memory: Optional[Callable[[str], bool]] = None,
    ) -> "AssetAcquirer":
        return cls(
            staging_dir=settings.resolved_staging_dir,
            max_file_size_bytes=settings.max_file_size_bytes,
            staging_mode=settings.staging_mode,
            accepts_memory=accepts_memory,
        )

    async def acquire(self, descriptor: SelectionDescriptor) -> StagedAsset:
        """Acquire the content for one descriptor.

        Args:
            descriptor: The picker's description of the file.

        Returns:
            The staged asset, holding a transient handle when the content was
            written to disk.

        Raises:
            AssetTooLarge: The declared size exceeds the limit. Nothing is allocated.
            AcquireFailure: There is no content to read, or staging failed.
        """
        if descriptor.size_bytes > self.max_file_size_bytes:
            raise AssetTooLarge(descriptor.name, descriptor.size_bytes, self.max_file_size_bytes)
        if not descriptor.has_content:
            raise AcquireFailure(f"no_content:{descriptor.name}")

        if descriptor.raw_bytes is not None and self._wants_memory(descriptor.name):
            return StagedAsset(descriptor=descriptor, content=descriptor.raw_bytes)

        staged = await asyncio.to_thread(self._stage, descriptor)
        self.logger.debug("asset_staged", name=descriptor.name, path=str(staged.path))
        return staged

    def _wants_memory(self, name: str) -> bool:
        if self.staging_mode == "memory":
            return True
        if self.staging_mode == "disk":
            return False
        if self._accepts_memory is None:
            return True
        return self._accepts_memory(name)

    def _stage(self, descriptor: SelectionDescriptor) -> StagedAsset:
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            fd, raw_path = tempfile.mkstemp(
                dir=self.staging_dir,
                prefix="temp_",
                suffix=f"_{safe_filename(descriptor.name)}",
            )
        except OSError as exc:
            raise AcquireFailure(f"staging_unavailable:{descriptor.name}") from exc

        handle = TransientHandle(Path(raw_path))
        try:
            with os.fdopen(fd, "wb") as out:
                if descriptor.raw_bytes is not None:
                    out.write(descriptor.raw_bytes)
                elif descriptor.source_path is not None:
                    with descriptor.source_path.open("rb") as src:
                        shutil.copyfileobj(src, out)
            content = handle.path.read_bytes()
        except OSError as exc:
            handle.release()
            raise AcquireFailure(f"staging_failed:{descriptor.name}") from exc
        return StagedAsset(descriptor=descriptor, content=content, handle=handle)


__all__ = ["AssetAcquirer"]
