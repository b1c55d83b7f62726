"""Governance engine: field simulation, seven-gate transitions and containment."""

from .config import EntityCfg, load_entity_cfg  # noqa: F401
from .entity import EntityNotRunningError, EntitySealedError, EntitySnapshot, GovernedEntity  # noqa: F401
from .gate import GateReason, GateResult, TransitionRequest, TransitionResult, evaluate_gates  # noqa: F401
from .messages import FatalCondition, Greeting, Stimulus, ThreatWarning  # noqa: F401
from .state import AuditEntry, LifecycleState, PeerRef  # noqa: F401
