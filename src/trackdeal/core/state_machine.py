"""
Negotiation status state machine.

``active`` is the only non-terminal status; it may move to ``completed``
or ``cancelled``. Nothing leaves a terminal status.
"""
from __future__ import annotations

from typing import FrozenSet, Mapping, Union

from .exceptions import InvalidTransition
from .models import NegotiationStatus

TRANSITIONS: Mapping[NegotiationStatus, FrozenSet[NegotiationStatus]] = {
    NegotiationStatus.active: frozenset({NegotiationStatus.completed, NegotiationStatus.cancelled}),
    NegotiationStatus.completed: frozenset(),
    NegotiationStatus.cancelled: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[NegotiationStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)


def is_terminal(status: NegotiationStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_targets(status: NegotiationStatus) -> FrozenSet[NegotiationStatus]:
    return TRANSITIONS[status]


def coerce_status(value: Union[str, NegotiationStatus], current: NegotiationStatus) -> NegotiationStatus:
    """Parse a requested status, rejecting values outside the enum."""
    if isinstance(value, NegotiationStatus):
        return value
    try:
        return NegotiationStatus(value)
    except ValueError as exc:
        raise InvalidTransition(
            current.value, str(value), reason=f"Unknown negotiation status '{value}'"
        ) from exc


def check_transition(current: NegotiationStatus, target: NegotiationStatus) -> None:
    """Raise ``InvalidTransition`` unless ``current -> target`` is allowed."""
    if is_terminal(current):
        raise InvalidTransition(
            current.value,
            target.value,
            reason=f"Negotiation is already {current.value}",
        )
    if target not in TRANSITIONS[current]:
        allowed = ", ".join(sorted(s.value for s in TRANSITIONS[current]))
        raise InvalidTransition(
            current.value,
            target.value,
            reason=f"Cannot move a {current.value} negotiation to {target.value}; allowed: {allowed}",
        )
