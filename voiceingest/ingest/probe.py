from __future__ import annotations

import asyncio
from typing import Optional

from voiceingest.core.config import Settings
from voiceingest.core.logging import get_logger

from .engine import DecodeEngine
from .models import ProbeResult, StagedAsset


class DurationProbe:
    """Determines a staged clip's duration using the shared decode engine.

    The engine's duration signal is raced against a timer. If the timer wins,
    an explicit duration query is raced against the (still subscribed) signal
    and the first value to arrive is used. Only a strictly positive duration
    counts as success; engine errors never escape ``probe``.
    """

    def __init__(
        self,
        engine: DecodeEngine,
        *,
        signal_timeout_s: float = 2.0,
        lock: Optional[asyncio.Lock] = None,
    ):
        self.engine = engine
        self.signal_timeout_s = signal_timeout_s
        self._lock = lock or asyncio.Lock()
        self.logger = get_logger(component="duration_probe")

    @classmethod
    def from_settings(cls, engine: DecodeEngine, settings: Settings) -> "DurationProbe":
        return cls(engine, signal_timeout_s=settings.probe_signal_timeout_s)

    async def probe(self, staged: StagedAsset) -> ProbeResult:
        name = staged.descriptor.name
        async with self._lock:
            try:
                duration = await self._probe_exclusive(staged)
            except Exception as exc:
                self.logger.warning("probe_failed", name=name, error=str(exc), error_type=type(exc).__name__)
                return ProbeResult.failed()

        if duration is None or duration <= 0:
            self.logger.info("probe_duration_unavailable", name=name)
            return ProbeResult.failed()
        return ProbeResult(duration_s=duration, succeeded=True)

    async def _probe_exclusive(self, staged: StagedAsset) -> Optional[float]:
        await self.engine.reset()

        loop = asyncio.get_running_loop()
        signal: asyncio.Future[float] = loop.create_future()

        def _on_duration(value: float) -> None:
            if value > 0 and not signal.done():
                signal.set_result(value)

        unsubscribe = self.engine.on_duration(_on_duration)
        try:
            if staged.path is not None:
                await self.engine.load(path=staged.path)
            else:
                await self.engine.load(content=staged.content)

            done, _ = await asyncio.wait({signal}, timeout=self.signal_timeout_s)
            if signal in done:
                return signal.result()

            self.logger.info("probe_signal_timeout", name=staged.descriptor.name, timeout_s=self.signal_timeout_s)
            return await self._race_fallback(signal)
        finally:
            unsubscribe()
            if not signal.done():
                signal.cancel()

    async def _race_fallback(self, signal: "asyncio.Future[float]") -> Optional[float]:
        query = asyncio.ensure_future(self.engine.query_duration())
        try:
            await asyncio.wait({signal, query}, return_when=asyncio.FIRST_COMPLETED)
            if signal.done() and not signal.cancelled():
                return signal.result()
            return query.result()
        finally:
            if not query.done():
                query.cancel()
                await asyncio.gather(query, return_exceptions=True)


__all__ = ["DurationProbe"]
