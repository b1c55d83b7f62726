from __future__ import annotations

import dataclasses
import json

import numpy as np
import pytest

from sasc.config import EntityCfg
from sasc.state import AuditLog, LifecycleState, PeerRef, ProcessState


def test_create_uses_defaults() -> None:
    state = ProcessState.create(EntityCfg(field_size=32, seed=1))
    assert len(state.id) == 32
    assert state.field.shape == (32,)
    assert state.containment_ratio == 0.05
    assert state.lifecycle is LifecycleState.CONFINED
    assert 0.0 < state.stability_score < 1.0
    assert len(state.audit_log) == 0


def test_create_registers_neighbors_and_checks_field_length() -> None:
    cfg = EntityCfg(field_size=4)
    state = ProcessState.create(cfg, field=np.ones(4), neighbors=[PeerRef("p1", "local://p1")])
    assert state.neighbors == {"p1": PeerRef("p1", "local://p1")}
    with pytest.raises(ValueError):
        ProcessState.create(cfg, field=np.ones(5))


def test_field_length_is_fixed() -> None:
    state = ProcessState.create(EntityCfg(field_size=4), field=np.zeros(4))
    state.replace_field(np.ones(4))
    assert state.stability_score == pytest.approx(4.0 / 4.4)
    with pytest.raises(ValueError):
        state.replace_field(np.ones(8))


def test_containment_is_clamped_on_every_write() -> None:
    state = ProcessState.create(EntityCfg(field_size=4))
    assert state.set_containment(1.7) == 0.9
    assert state.set_containment(-0.3) == 0.0
    assert state.set_containment(0.4) == 0.4


def test_audit_log_keeps_timestamp_order() -> None:
    log = AuditLog()
    log.append("a", stability_score=0.5, containment_ratio=0.1, timestamp=100.0)
    log.append("b", stability_score=0.5, containment_ratio=0.1, timestamp=90.0)
    log.append("c", stability_score=0.5, containment_ratio=0.1, timestamp=120.0)
    stamps = [entry.timestamp for entry in log.entries()]
    assert stamps == [100.0, 100.0, 120.0]
    assert [entry.message for entry in log] == ["a", "b", "c"]


def test_audit_entries_are_immutable_snapshots() -> None:
    log = AuditLog()
    entry = log.append("first", stability_score=0.7, containment_ratio=0.2)
    snapshot = log.entries()
    log.append("second", stability_score=0.7, containment_ratio=0.2)
    assert len(snapshot) == 1
    with pytest.raises(dataclasses.FrozenInstanceError):
        entry.message = "changed"  # type: ignore[misc]


def test_audit_log_writes_jsonl(tmp_path) -> None:
    log = AuditLog()
    log.append("blocked: ConsensusFailure", stability_score=0.8, containment_ratio=0.3, timestamp=1.0)
    log.append("transition Rotating authorized", stability_score=0.8, containment_ratio=0.45, timestamp=2.0)
    out = log.write_jsonl(tmp_path / "audit" / "entity.jsonl")
    rows = [json.loads(line) for line in out.read_text(encoding="utf-8").splitlines()]
    assert rows[0] == {
        "timestamp": 1.0,
        "message": "blocked: ConsensusFailure",
        "stability_score": 0.8,
        "containment_ratio": 0.3,
    }
    assert rows[1]["containment_ratio"] == 0.45
