"""
Contradiction resolution lifecycle.

    unresolved -> explained | dismissed | critical
    critical   -> explained | dismissed

``explained`` and ``dismissed`` are terminal.
"""

from enum import Enum


class ContradictionStatus(str, Enum):
    UNRESOLVED = "unresolved"
    EXPLAINED = "explained"
    DISMISSED = "dismissed"
    CRITICAL = "critical"


TERMINAL_STATUSES = frozenset({ContradictionStatus.EXPLAINED, ContradictionStatus.DISMISSED})
RESOLUTION_STATUSES = TERMINAL_STATUSES

TRANSITIONS: dict[ContradictionStatus, frozenset[ContradictionStatus]] = {
    ContradictionStatus.UNRESOLVED: frozenset(
        {
            ContradictionStatus.EXPLAINED,
            ContradictionStatus.DISMISSED,
            ContradictionStatus.CRITICAL,
        }
    ),
    ContradictionStatus.CRITICAL: frozenset(
        {ContradictionStatus.EXPLAINED, ContradictionStatus.DISMISSED}
    ),
    ContradictionStatus.EXPLAINED: frozenset(),
    ContradictionStatus.DISMISSED: frozenset(),
}


def is_terminal(status: ContradictionStatus | str) -> bool:
    return ContradictionStatus(status) in TERMINAL_STATUSES


def can_transition(current: ContradictionStatus | str, target: ContradictionStatus | str) -> bool:
    """Whether ``current -> target`` is a legal move."""
    return ContradictionStatus(target) in TRANSITIONS[ContradictionStatus(current)]


def sources_for(target: ContradictionStatus | str) -> list[str]:
    """Statuses from which ``target`` can be reached, as stored strings."""
    target = ContradictionStatus(target)
    return sorted(s.value for s, targets in TRANSITIONS.items() if target in targets)
