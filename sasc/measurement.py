from __future__ import annotations

import math
from typing import Protocol, Tuple

U64_MASK = (1 << 64) - 1
U64_MAX = float(U64_MASK)


class DecoherenceFailure(Exception):
    """Interference pattern matches neither spin read-out window."""

    def __init__(self, pattern: float) -> None:
        super().__init__(f"decoherent interference pattern {pattern:.6f}")
        self.pattern = pattern


class PhaseSource(Protocol):
    def read_phases(self) -> Tuple[int, int]:
        """Return the two raw unsigned 64-bit phase counters."""
        ...


def interference_pattern(raw_a: int, raw_b: int) -> float:
    diff = (int(raw_a) - int(raw_b)) & U64_MASK
    phase = diff * 2.0 * math.pi / U64_MAX
    return math.cos(phase / 2.0) ** 2


def decode_spin(pattern: float) -> float:
    if pattern > 0.9:
        return 1.0
    if 0.4 < pattern < 0.6:
        return 0.5
    raise DecoherenceFailure(pattern)


def read_spin(source: PhaseSource) -> float:
    raw_a, raw_b = source.read_phases()
    return decode_spin(interference_pattern(raw_a, raw_b))


__all__ = ["DecoherenceFailure", "PhaseSource", "decode_spin", "interference_pattern", "read_spin"]
