from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

CONTAINMENT_MIN = 0.0
CONTAINMENT_MAX = 0.9


@dataclass
class ControllerCfg:
    turbulence_threshold: float = field(default=0.5)
    tighten_factor: float = field(default=1.05)
    loosen_factor: float = field(default=0.98)
    ratio_floor: float = field(default=0.05)
    ratio_ceiling: float = field(default=CONTAINMENT_MAX)


@dataclass
class HandshakeCfg:
    vorticity_threshold: float = field(default=0.7)
    peer_timeout_s: float = field(default=1.0)
    protocol_version: str = field(default="V31")


@dataclass
class EntityCfg:
    field_size: int = field(default=1024)
    seed: int | None = field(default=None)
    tick_interval_ms: int = field(default=1000)
    critical_threshold: float = field(default=0.72)
    secondary_floor: float = field(default=0.65)
    initial_containment_ratio: float = field(default=0.05)
    controller: ControllerCfg = field(default_factory=ControllerCfg)
    handshake: HandshakeCfg = field(default_factory=HandshakeCfg)

    def validate(self) -> "EntityCfg":
        if self.field_size <= 0:
            raise ValueError("field_size must be positive.")
        if self.tick_interval_ms <= 0:
            raise ValueError("tick_interval_ms must be positive.")
        if not CONTAINMENT_MIN <= self.initial_containment_ratio <= CONTAINMENT_MAX:
            raise ValueError("initial_containment_ratio must lie in [0, 0.9].")
        if not 0.0 < self.secondary_floor <= self.critical_threshold < 1.0:
            raise ValueError("expected 0 < secondary_floor <= critical_threshold < 1.")
        ctl = self.controller
        if not CONTAINMENT_MIN <= ctl.ratio_floor <= ctl.ratio_ceiling <= CONTAINMENT_MAX:
            raise ValueError("controller ratio bounds must nest inside [0, 0.9].")
        if ctl.tighten_factor < 1.0 or not 0.0 < ctl.loosen_factor <= 1.0:
            raise ValueError("tighten_factor must be >= 1 and loosen_factor in (0, 1].")
        if self.handshake.peer_timeout_s <= 0:
            raise ValueError("peer_timeout_s must be positive.")
        return self

    @property
    def tick_interval_s(self) -> float:
        return self.tick_interval_ms / 1000.0


def load_entity_cfg(path: str | Path = "config/sasc.yaml") -> EntityCfg:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return EntityCfg()
    payload = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(payload, dict):
        raise ValueError(f"{cfg_path} must contain a mapping")
    cfg = _merge_dataclass(
        EntityCfg(),
        payload.get("entity", payload),
        extra_factories={"controller": ControllerCfg, "handshake": HandshakeCfg},
    )
    return cfg.validate()


def _merge_dataclass(instance, overrides: dict[str, Any], extra_factories: dict[str, Any] | None = None):
    data = instance.__dict__.copy()
    for key, value in (overrides or {}).items():
        if key not in data:
            continue
        if extra_factories and key in extra_factories and isinstance(value, dict):
            factory_cls = extra_factories[key]
            data[key] = _merge_dataclass(factory_cls(), value)
        else:
            data[key] = value
    return instance.__class__(**data)


__all__ = [
    "CONTAINMENT_MAX",
    "CONTAINMENT_MIN",
    "ControllerCfg",
    "EntityCfg",
    "HandshakeCfg",
    "load_entity_cfg",
]
