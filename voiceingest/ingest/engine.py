from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional

from voiceingest.core.config import Settings
from voiceingest.core.logging import get_logger

from .errors import ProbeCommandError
from .ffprobe_parser import parse_duration_payload

DurationListener = Callable[[float], None]
Unsubscribe = Callable[[], None]


class DecodeEngine(ABC):
    """A single, serially reused audio decoder that can report clip durations.

    Loading a source is asynchronous: the engine announces the duration through
    ``on_duration`` listeners once known, and ``query_duration`` asks for it
    explicitly. Callers must not overlap two loads on one instance.
    """

    @abstractmethod
    async def reset(self) -> None: ...

    @abstractmethod
    async def load(self, *, path: Optional[Path] = None, content: Optional[bytes] = None) -> None: ...

    @abstractmethod
    def on_duration(self, listener: DurationListener) -> Unsubscribe: ...

    @abstractmethod
    async def query_duration(self) -> Optional[float]: ...

    def accepts_memory(self, filename: str) -> bool:
        """Whether the engine can decode ``filename`` from bytes without a path."""
        return True

    async def close(self) -> None:
        await self.reset()


class FFprobeEngine(DecodeEngine):
    """Decode engine backed by the ``ffprobe`` binary.

    In-memory sources are piped through stdin, which only works for formats
    that can be read from a non-seekable stream.
    """

    SEEK_REQUIRED_EXTENSIONS = frozenset({"m4a", "mp4", "aac", "mov", "3gp"})

    def __init__(self, *, binary: str = "ffprobe", query_timeout_s: float = 5.0):
        self.binary = binary
        self.query_timeout_s = query_timeout_s
        self.logger = get_logger(component="ffprobe_engine")
        self._listeners: List[DurationListener] = []
        self._task: Optional[asyncio.Task[float]] = None
        self._duration: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "FFprobeEngine":
        return cls(binary=settings.ffprobe_binary, query_timeout_s=settings.probe_query_timeout_s)

    def accepts_memory(self, filename: str) -> bool:
        _, dot, ext = filename.rpartition(".")
        return not dot or ext.lower() not in self.SEEK_REQUIRED_EXTENSIONS

    def on_duration(self, listener: DurationListener) -> Unsubscribe:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def reset(self) -> None:
        task, self._task = self._task, None
        self._duration = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def load(self, *, path: Optional[Path] = None, content: Optional[bytes] = None) -> None:
        if path is None and content is None:
            raise ValueError("load requires a path or content")
        await self.reset()
        self._task = asyncio.create_task(self._run(path, content))
        self._task.add_done_callback(self._log_failure)

    async def query_duration(self) -> Optional[float]:
        if self._duration is not None:
            return self._duration
        task = self._task
        if task is None:
            return None
        done, _ = await asyncio.wait({task}, timeout=self.query_timeout_s)
        if task not in done:
            self.logger.warning("ffprobe_query_timeout", timeout_s=self.query_timeout_s)
            return None
        if task.cancelled():
            return None
        return task.result()

    async def close(self) -> None:
        await self.reset()
        self._listeners.clear()

    async def _run(self, path: Optional[Path], content: Optional[bytes]) -> float:
        target = str(path) if path is not None else "pipe:0"
        command = [
            self.binary,
            "-v",
            "error",
            "-show_entries",
            "format=duration:stream=codec_type,duration",
            "-print_format",
            "json",
            target,
        ]
        piped = path is None
        self.logger.debug("ffprobe_run", target=target)
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE if piped else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate(input=content if piped else None)
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise ProbeCommandError(detail or f"ffprobe exited with {proc.returncode}")
        try:
            raw = json.loads(stdout or b"{}")
        except json.JSONDecodeError as exc:
            raise ProbeCommandError("ffprobe_output_unparseable") from exc

        duration, warnings = parse_duration_payload(raw)
        if warnings:
            self.logger.info("ffprobe_warnings", target=target, warnings=warnings)
        self._duration = duration
        if duration > 0:
            for listener in list(self._listeners):
                listener(duration)
        return duration

    def _log_failure(self, task: "asyncio.Task[float]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.warning("ffprobe_failed", error=str(exc))


__all__ = ["DecodeEngine", "FFprobeEngine", "DurationListener", "Unsubscribe"]
