"""Owned state of a governed entity and its append-only audit log."""

from __future__ import annotations

import json
import secrets
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .config import EntityCfg
from .field import clamp_containment, initialize_field
from .stability import stability_score


class LifecycleState(str, Enum):
    CONFINED = "Confined"
    ROTATING = "Rotating"
    TRANSPOSED = "Transposed"
    SEALED_GENTLE = "SealedGentle"
    SEALED_EMERGENCY = "SealedEmergency"

    @property
    def sealed(self) -> bool:
        return self in (LifecycleState.SEALED_GENTLE, LifecycleState.SEALED_EMERGENCY)


@dataclass(frozen=True)
class AuditEntry:
    timestamp: float
    message: str
    stability_score: float
    containment_ratio: float

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


class AuditLog:
    """Append-only, timestamp-ordered sequence of audit entries."""

    def __init__(self) -> None:
        self._entries: List[AuditEntry] = []

    def append(
        self,
        message: str,
        *,
        stability_score: float,
        containment_ratio: float,
        timestamp: Optional[float] = None,
    ) -> AuditEntry:
        ts = timestamp if timestamp is not None else time.time()
        if self._entries and ts < self._entries[-1].timestamp:
            # wall clock stepped backwards; keep the log ordered
            ts = self._entries[-1].timestamp
        entry = AuditEntry(
            timestamp=float(ts),
            message=message,
            stability_score=float(stability_score),
            containment_ratio=float(containment_ratio),
        )
        self._entries.append(entry)
        return entry

    def entries(self) -> Tuple[AuditEntry, ...]:
        return tuple(self._entries)

    def write_jsonl(self, path: str | Path) -> Path:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        with out.open("w", encoding="utf-8") as handle:
            for entry in self._entries:
                handle.write(json.dumps(entry.to_payload(), ensure_ascii=False) + "\n")
        return out

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AuditEntry]:
        return iter(tuple(self._entries))


@dataclass(frozen=True)
class PeerRef:
    peer_id: str
    address: str


@dataclass
class ProcessState:
    """State owned by exactly one entity actor.

    Notes
    -----
    - ``field`` keeps its length for the entity's lifetime; use
      :meth:`replace_field` rather than assigning directly.
    - ``containment_ratio`` is clamped into ``[0, 0.9]`` on every write.
    """

    id: str
    field: np.ndarray
    stability_score: float
    containment_ratio: float
    lifecycle: LifecycleState = LifecycleState.CONFINED
    neighbors: Dict[str, PeerRef] = field(default_factory=dict)
    audit_log: AuditLog = field(default_factory=AuditLog)

    def __post_init__(self) -> None:
        self.field = np.asarray(self.field, dtype=float).reshape(-1).copy()
        self.containment_ratio = clamp_containment(self.containment_ratio)

    @classmethod
    def create(
        cls,
        cfg: Optional[EntityCfg] = None,
        *,
        field: Optional[np.ndarray] = None,
        neighbors: Optional[List[PeerRef]] = None,
    ) -> "ProcessState":
        cfg = cfg or EntityCfg()
        if field is None:
            values = initialize_field(cfg.field_size, cfg.seed)
        else:
            values = np.asarray(field, dtype=float).reshape(-1)
            if values.size != cfg.field_size:
                raise ValueError(f"field must have {cfg.field_size} elements, got {values.size}")
        return cls(
            id=secrets.token_hex(16),
            field=values,
            stability_score=stability_score(values),
            containment_ratio=cfg.initial_containment_ratio,
            neighbors={ref.peer_id: ref for ref in neighbors or []},
        )

    def replace_field(self, values: np.ndarray) -> None:
        new_field = np.asarray(values, dtype=float).reshape(-1)
        if new_field.shape != self.field.shape:
            raise ValueError(f"field length is fixed at {self.field.size}, got {new_field.size}")
        self.field = new_field
        self.stability_score = stability_score(new_field)

    def set_containment(self, ratio: float) -> float:
        self.containment_ratio = clamp_containment(ratio)
        return self.containment_ratio

    def log(self, message: str) -> AuditEntry:
        return self.audit_log.append(
            message,
            stability_score=self.stability_score,
            containment_ratio=self.containment_ratio,
        )


__all__ = ["AuditEntry", "AuditLog", "LifecycleState", "PeerRef", "ProcessState"]
