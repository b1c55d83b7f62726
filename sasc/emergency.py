"""Irreversible emergency containment.

Engaging the latch disables external coupling, raises the emergency bit and
freezes the owning entity. Nothing in this package releases it; recovery is an
external reset.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

LOGGER = logging.getLogger(__name__)

CONTROL_BEAM_SPLITTER = 0x2
CONTROL_DECOUPLED = 0x0
CONTROL_EMERGENCY_BIT = 0x80000000


class ExternalCoupling(Protocol):
    """Control surface linking the entity to the outside world."""

    def write_control(self, word: int) -> None:
        ...


@dataclass
class CouplingRegister:
    """In-memory stand-in for the coupling control register."""

    value: int = CONTROL_BEAM_SPLITTER
    writes: List[int] = field(default_factory=list)

    def write_control(self, word: int) -> None:
        self.value = int(word)
        self.writes.append(int(word))

    @property
    def coupled(self) -> bool:
        return self.value not in (CONTROL_DECOUPLED, CONTROL_EMERGENCY_BIT)


class EmergencyLatch:
    def __init__(self) -> None:
        self._engaged = False
        self.reason: Optional[str] = None
        self.engaged_at: Optional[float] = None

    @property
    def engaged(self) -> bool:
        return self._engaged

    def engage(self, reason: str, coupling: ExternalCoupling) -> bool:
        """Return True on the first engagement, False when already latched."""
        if self._engaged:
            return False
        coupling.write_control(CONTROL_DECOUPLED)
        coupling.write_control(CONTROL_EMERGENCY_BIT)
        self._engaged = True
        self.reason = reason
        self.engaged_at = time.time()
        LOGGER.critical("emergency containment engaged: %s", reason)
        return True


__all__ = [
    "CONTROL_BEAM_SPLITTER",
    "CONTROL_DECOUPLED",
    "CONTROL_EMERGENCY_BIT",
    "CouplingRegister",
    "EmergencyLatch",
    "ExternalCoupling",
]
