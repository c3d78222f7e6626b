"""Contradictions and their resolution state machine."""

from thesis_validator.contradictions.schemas import (
    SEVERITY_RANK,
    Contradiction,
    ContradictionCreate,
    ContradictionFilters,
    ContradictionStats,
    ContradictionUpdate,
    ResolveRequest,
    Severity,
)
from thesis_validator.contradictions.state_machine import (
    TERMINAL_STATUSES,
    ContradictionStatus,
    can_transition,
    is_terminal,
)
from thesis_validator.contradictions.store import ContradictionStore

__all__ = [
    "SEVERITY_RANK",
    "TERMINAL_STATUSES",
    "Contradiction",
    "ContradictionCreate",
    "ContradictionFilters",
    "ContradictionStats",
    "ContradictionStatus",
    "ContradictionStore",
    "ContradictionUpdate",
    "ResolveRequest",
    "Severity",
    "can_transition",
    "is_terminal",
]
