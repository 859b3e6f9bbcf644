from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

from voiceingest.core.logging import get_logger

from .models import SelectionDescriptor


class FilePicker(Protocol):
    """Supplies the descriptors for one selection request; ``None`` means the user backed out."""

    async def pick(self) -> Optional[Sequence[SelectionDescriptor]]: ...


class StaticPicker:
    """Picker over descriptors that were already gathered elsewhere (an upload, a test)."""

    def __init__(self, descriptors: Iterable[SelectionDescriptor]):
        self.descriptors = list(descriptors)

    async def pick(self) -> Optional[Sequence[SelectionDescriptor]]:
        return self.descriptors


class LocalFilePicker:
    """Picker over paths on the local filesystem, filtered by extension."""

    def __init__(
        self,
        paths: Iterable[Path],
        *,
        is_allowed: Optional[Callable[[str], bool]] = None,
        with_data: bool = False,
    ):
        self.paths = [Path(p).expanduser() for p in paths]
        self.is_allowed = is_allowed
        self.with_data = with_data
        self.skipped: List[Path] = []
        self.logger = get_logger(component="local_file_picker")

    async def pick(self) -> Optional[Sequence[SelectionDescriptor]]:
        descriptors: List[SelectionDescriptor] = []
        self.skipped = []
        for path in self.paths:
            if not path.is_file() or (self.is_allowed and not self.is_allowed(path.name)):
                self.logger.info("picker_skipped", path=str(path))
                self.skipped.append(path)
                continue
            descriptors.append(SelectionDescriptor.from_path(path.resolve(), with_data=self.with_data))
        return descriptors or None


__all__ = ["FilePicker", "StaticPicker", "LocalFilePicker"]
