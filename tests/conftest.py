from __future__ import annotations

import asyncio
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from voiceingest.core.config import Settings, get_settings
from voiceingest.core.storage import LocalStorage
from voiceingest.ingest.engine import DecodeEngine, DurationListener, Unsubscribe
from voiceingest.ingest.models import SelectionDescriptor
from voiceingest.services.batch_service import BatchService

MIB = 1024 * 1024


@pytest.fixture(autouse=True)
def configure_environment(monkeypatch, tmp_path):
    for key in list(os.environ.keys()):
        if key.startswith("VOICEINGEST_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("VOICEINGEST_ENV", "test")
    monkeypatch.setenv("VOICEINGEST_LOG_LEVEL", "debug")
    monkeypatch.setenv("VOICEINGEST_STAGING_DIR", str(tmp_path / "staging"))
    monkeypatch.setenv("VOICEINGEST_STORAGE_BASE_PATH", str(tmp_path / "voices"))
    monkeypatch.setenv("VOICEINGEST_PROBE_SIGNAL_TIMEOUT_S", "0.05")
    monkeypatch.setenv("VOICEINGEST_PROBE_QUERY_TIMEOUT_S", "2")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings() -> Settings:
    return get_settings()


@pytest.fixture()
def staging_dir(settings: Settings) -> Path:
    return settings.resolved_staging_dir


def clip(name: str, size_bytes: int = 1 * MIB) -> SelectionDescriptor:
    """A descriptor whose content is its own name, which is what FakeEngine keys scripts on."""
    return SelectionDescriptor(name=name, size_bytes=size_bytes, raw_bytes=name.encode("utf-8"))


@dataclass
class Script:
    signal: Optional[float] = None
    signal_delay_s: float = 0.0
    query: Optional[float] = None
    query_delay_s: float = 0.0
    error: Optional[Exception] = None


class FakeEngine(DecodeEngine):
    """Scripted decode engine; the loaded content (or staged file content) selects the script."""

    def __init__(
        self,
        scripts: Optional[Dict[str, Script]] = None,
        *,
        memory: bool = True,
        on_load: Optional[Callable[[str], None]] = None,
    ):
        self.scripts = scripts or {}
        self.memory = memory
        self.on_load = on_load
        self.listeners: List[DurationListener] = []
        self.loads: List[str] = []
        self.loaded_paths: List[Path] = []
        self.resets = 0
        self.closed = False
        self._current: Optional[Script] = None
        self._pending: Optional[asyncio.Task] = None

    def accepts_memory(self, filename: str) -> bool:
        return self.memory

    def on_duration(self, listener: DurationListener) -> Unsubscribe:
        self.listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self.listeners:
                self.listeners.remove(listener)

        return _unsubscribe

    async def reset(self) -> None:
        self.resets += 1
        self._current = None
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)

    async def load(self, *, path: Optional[Path] = None, content: Optional[bytes] = None) -> None:
        if path is not None:
            self.loaded_paths.append(path)
            key = path.read_bytes().decode("utf-8")
        else:
            assert content is not None
            key = content.decode("utf-8")
        self.loads.append(key)
        if self.on_load is not None:
            self.on_load(key)
        script = self.scripts.get(key, Script())
        if script.error is not None:
            raise script.error
        self._current = script
        if script.signal is not None:
            self._pending = asyncio.create_task(self._emit(script))

    async def _emit(self, script: Script) -> None:
        await asyncio.sleep(script.signal_delay_s)
        for listener in list(self.listeners):
            listener(script.signal)

    async def query_duration(self) -> Optional[float]:
        script = self._current
        if script is None:
            return None
        await asyncio.sleep(script.query_delay_s)
        return script.query

    async def close(self) -> None:
        await self.reset()
        self.closed = True


class FlakyStorage(LocalStorage):
    """Local storage that fails the N-th save (1-based) with an OSError."""

    def __init__(self, base_path: Path, *, fail_on: Optional[int] = None):
        super().__init__(base_path)
        self.fail_on = fail_on
        self.saves = 0

    def save(self, name: str, payload: bytes) -> str:
        self.saves += 1
        if self.fail_on is not None and self.saves == self.fail_on:
            raise OSError("disk full")
        return super().save(name, payload)


def make_service(settings: Settings, engine: DecodeEngine, storage: Optional[LocalStorage] = None) -> BatchService:
    return BatchService(settings, storage or LocalStorage(settings.storage_base_path), engine)


@pytest.fixture()
def fake_ffprobe(tmp_path: Path) -> Callable[..., Path]:
    """Write an executable stand-in for ffprobe that prints canned JSON."""

    def _write(
        payload: str = '{"format": {"duration": "12.5"}, "streams": [{"codec_type": "audio"}]}',
        exit_code: int = 0,
        delay_s: float = 0.0,
    ) -> Path:
        script = tmp_path / f"ffprobe-{exit_code}-{delay_s}"
        lines = [
            "#!/bin/sh",
            "for arg in \"$@\"; do last=\"$arg\"; done",
            "if [ \"$last\" = \"pipe:0\" ]; then cat > /dev/null; fi",
        ]
        if delay_s:
            lines.append(f"sleep {delay_s}")
        lines += [f"echo '{payload}'", f"exit {exit_code}"]
        script.write_text("\n".join(lines) + "\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _write
