"""
Shared utility functions for parsing and data manipulation

Provides common helpers for:
- String parsing: Environment variable conversion (parse_bool, parse_int, parse_float)
- Field normalisation: Blank strings and ``None`` are the same value (norm)
- Byte chunking for streamed audio
- Audio: RMS of little-endian PCM chunks

These utilities are used throughout Memo for configuration parsing and record handling.
"""

from __future__ import annotations

import math
import sys
from array import array
from collections.abc import Iterable
from typing import Any


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def norm(value: Any) -> str | None:
    """Trim a field value; blank strings and ``None`` both become ``None``."""
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def chunk_bytes(data: bytes, size: int) -> Iterable[bytes]:
    """Yield fixed-size chunks from a byte buffer."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(data), size):
        end = min(start + size, len(data))
        yield data[start:end]


def compute_rms(chunk: bytes, sample_width: int) -> int:
    """Compute RMS (Root Mean Square) for an audio chunk."""
    if not chunk or sample_width <= 0:
        return 0
    frames = len(chunk) // sample_width
    if frames <= 0:
        return 0
    trimmed = chunk[: frames * sample_width]
    typecode = {1: "b", 2: "h", 4: "i"}.get(sample_width)
    if typecode:
        samples = array(typecode)
        samples.frombytes(trimmed)
        if sample_width > 1 and sys.byteorder != "little":
            samples.byteswap()
        total = math.fsum(value * value for value in samples)
    else:
        total = 0.0
        for i in range(0, len(trimmed), sample_width):
            sample = int.from_bytes(trimmed[i : i + sample_width], "little", signed=True)
            total += sample * sample
    mean = total / frames
    return int(math.sqrt(mean))
