from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse
from uuid import uuid4

from .config import Settings

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str) -> str:
    """Collapse a user supplied filename into something safe to put on disk."""
    cleaned = _UNSAFE_CHARS.sub("_", Path(name).name).strip("._")
    return cleaned or "audio"


class Storage(ABC):
    """Durable home for committed voice clips."""

    @abstractmethod
    def save(self, name: str, payload: bytes) -> str: ...

    @abstractmethod
    def delete(self, uri: str) -> None: ...

    @abstractmethod
    def exists(self, uri: str) -> bool: ...

    @abstractmethod
    def list(self, prefix: str = "") -> Iterable[str]: ...


class LocalStorage(Storage):
    """Filesystem-backed storage suitable for a single desktop install."""

    def __init__(self, base_path: Path):
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, uri_or_key: str) -> Path:
        parsed = urlparse(uri_or_key)
        if parsed.scheme in {"", "file"}:
            if parsed.scheme == "file":
                return Path(os.path.abspath(os.path.join(parsed.netloc, parsed.path))).resolve()
            return (self.base_path / uri_or_key).resolve()
        raise ValueError(f"Unsupported URI scheme for local storage: {uri_or_key}")

    def save(self, name: str, payload: bytes) -> str:
        path = self.base_path / f"{uuid4().hex}_{safe_filename(name)}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return path.resolve().as_uri()

    def delete(self, uri: str) -> None:
        self._resolve(uri).unlink(missing_ok=True)

    def exists(self, uri: str) -> bool:
        return self._resolve(uri).exists()

    def list(self, prefix: str = "") -> Iterable[str]:
        base = self._resolve(prefix) if prefix else self.base_path.resolve()
        if not base.exists():
            return []
        if base.is_file():
            return [base.as_uri()]
        return sorted(p.as_uri() for p in base.rglob("*") if p.is_file())


def get_storage(settings: Settings) -> Storage:
    return LocalStorage(base_path=Path(settings.storage_base_path))


__all__ = [
    "Storage",
    "LocalStorage",
    "get_storage",
    "safe_filename",
]
