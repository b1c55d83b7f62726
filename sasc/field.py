"""Oscillation field initialisation and evolution."""

from __future__ import annotations

from typing import Optional

import numpy as np

from .config import CONTAINMENT_MAX, CONTAINMENT_MIN

DAMPING_K = 0.01
DRIVE_C = 0.05
INITIAL_SCALE = 0.1


def clamp_containment(ratio: float) -> float:
    if ratio < CONTAINMENT_MIN:
        return CONTAINMENT_MIN
    if ratio > CONTAINMENT_MAX:
        return CONTAINMENT_MAX
    return float(ratio)


def initialize_field(size: int, seed: Optional[int] = None) -> np.ndarray:
    """Draw ``size`` normal samples scaled by 0.1.

    The only stochastic step of an entity's life; called once at creation.
    """
    if size <= 0:
        raise ValueError("field size must be positive.")
    rng = np.random.default_rng(seed)
    return rng.standard_normal(size) * INITIAL_SCALE


def evolve_field(field: np.ndarray, stimulus: float, containment_ratio: float) -> np.ndarray:
    """Return ``x * (1 - r*k) + s*c`` for every element; the input is not modified."""
    values = np.asarray(field, dtype=float).reshape(-1)
    damping = 1.0 - clamp_containment(containment_ratio) * DAMPING_K
    return values * damping + float(stimulus) * DRIVE_C


__all__ = ["clamp_containment", "evolve_field", "initialize_field"]
