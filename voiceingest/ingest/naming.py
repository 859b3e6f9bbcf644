from __future__ import annotations

import re

FALLBACK_NAME = "Unnamed Voice"

_SEPARATORS = re.compile(r"[_-]+")


def derive_display_name(filename: str) -> str:
    """Turn a raw filename into a default voice label.

    ``"long_call-final.wav"`` becomes ``"Long Call Final"``. Only the first
    letter of each word is touched, so ``"iPhone_memo.m4a"`` keeps its inner
    capitals as ``"IPhone Memo"``.

    Args:
        filename: The filename as supplied by the picker.

    Returns:
        The label, or ``FALLBACK_NAME`` when nothing usable is left.
    """
    stem = _strip_extension(filename)
    words = _SEPARATORS.sub(" ", stem).split()
    label = " ".join(word[0].upper() + word[1:] for word in words)
    return label or FALLBACK_NAME


def _strip_extension(filename: str) -> str:
    base = filename.replace("\\", "/").rsplit("/", 1)[-1]
    stem, dot, _ = base.rpartition(".")
    if not dot or not stem:
        # No extension, or a dotfile such as ".wav".
        return base if not dot else ""
    return stem


__all__ = ["FALLBACK_NAME", "derive_display_name"]
