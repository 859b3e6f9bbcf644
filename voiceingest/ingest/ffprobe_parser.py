from __future__ import annotations

import subprocess
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

StreamType = Literal["video", "audio", "data", "subtitle", "other"]


def parse_duration_payload(raw: Dict[str, Any]) -> Tuple[float, List[str]]:
    """Extract the playable duration from ffprobe JSON.

    The container duration wins. When the container does not report one, the
    longest audio stream duration is used instead.

    Args:
        raw: The raw ffprobe JSON.

    Returns:
        A tuple containing the duration in seconds (0.0 when unknown) and any warnings.
    """
    warnings: List[str] = []
    audio_streams = [
        stream for stream in _iter_streams(raw.get("streams")) if _normalise_stream_type(stream.get("codec_type")) == "audio"
    ]
    if not audio_streams:
        return 0.0, ["no_audio_stream"]

    format_info = raw.get("format") or {}
    duration_s, duration_warning = _parse_duration(format_info.get("duration"))
    if duration_s <= 0:
        stream_durations = [_parse_duration(stream.get("duration"))[0] for stream in audio_streams]
        duration_s = max(stream_durations, default=0.0)
        if duration_s <= 0 and duration_warning:
            warnings.append(duration_warning)
    return duration_s, warnings


def _iter_streams(streams: Any) -> Iterable[Dict[str, Any]]:
    if not isinstance(streams, list):
        return []
    return [stream for stream in streams if isinstance(stream, dict)]


def _parse_duration(raw_value: Any) -> Tuple[float, Optional[str]]:
    """Parse a duration value from ffprobe.

    Args:
        raw_value: The raw duration value.

    Returns:
        A tuple containing the duration in seconds and an optional warning.
    """
    if raw_value in (None, "N/A", ""):
        return 0.0, "duration_unavailable"
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        return 0.0, "duration_unavailable"
    if value != value or value < 0:
        # NaN or negative
        return 0.0, "duration_unavailable"
    return value, None


def _normalise_stream_type(value: Any) -> StreamType:
    if not isinstance(value, str):
        return "other"
    value_lower = value.lower()
    if value_lower in {"video", "audio", "data", "subtitle"}:
        return value_lower  # type: ignore[return-value]
    return "other"


@lru_cache(maxsize=4)
def binary_version(cmd: Sequence[str], timeout_s: float = 5.0) -> str:
    """Get the version of a binary.

    Args:
        cmd: The command to run.
        timeout_s: How long to wait for the binary before giving up.

    Returns:
        The version of the binary, or "unknown" if it can't be determined.
    """
    try:
        proc = subprocess.run(
            cmd,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        return "unknown"
    output = proc.stdout.strip() or proc.stderr.strip()
    if not output:
        return "unknown"
    return output.splitlines()[0].strip()


__all__ = ["parse_duration_payload", "binary_version"]
