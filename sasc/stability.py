from __future__ import annotations

import math
from enum import Enum

import numpy as np

NOISE_WEIGHT = 0.1
# Keeps the score inside the open interval (0, 1) for empty or huge energies.
SCORE_EPS = 1e-12


class StabilityBand(str, Enum):
    SUB_CRITICAL = "SubCritical"
    CARDINAL = "Cardinal"
    EMERGENCY = "Emergency"
    TRANSCENDENT = "Transcendent"


_BANDS = (
    (0.80, StabilityBand.TRANSCENDENT),
    (0.78, StabilityBand.EMERGENCY),
    (0.72, StabilityBand.CARDINAL),
)


def stability_score(field: np.ndarray) -> float:
    values = np.asarray(field, dtype=float).reshape(-1)
    if values.size == 0:
        return SCORE_EPS
    with np.errstate(over="ignore", invalid="ignore"):
        energy = float(np.dot(values, values))
    if math.isnan(energy) or energy <= 0.0:
        return SCORE_EPS
    # overflowing energy (inf) saturates at the upper clip
    score = 1.0 / (1.0 + NOISE_WEIGHT * values.size / energy)
    return min(max(score, SCORE_EPS), 1.0 - SCORE_EPS)


def turbulence(field: np.ndarray) -> float:
    """Population standard deviation of the field."""
    values = np.asarray(field, dtype=float).reshape(-1)
    if values.size == 0:
        return 0.0
    with np.errstate(over="ignore", invalid="ignore"):
        spread = float(np.std(values))
    # overflow can leave NaN; report it as unbounded turbulence
    return math.inf if math.isnan(spread) else spread


def classify_stability(score: float) -> StabilityBand:
    for floor, band in _BANDS:
        if score >= floor:
            return band
    return StabilityBand.SUB_CRITICAL


__all__ = ["StabilityBand", "classify_stability", "stability_score", "turbulence"]
