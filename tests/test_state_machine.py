"""
Unit tests for the negotiation status state machine.
"""
import pytest

from trackdeal.core.exceptions import InvalidTransition
from trackdeal.core.models import NegotiationStatus
from trackdeal.core.state_machine import (
    TERMINAL_STATUSES,
    allowed_targets,
    check_transition,
    coerce_status,
    is_terminal,
)


def test_terminal_statuses() -> None:
    assert TERMINAL_STATUSES == {NegotiationStatus.completed, NegotiationStatus.cancelled}
    assert not is_terminal(NegotiationStatus.active)
    assert allowed_targets(NegotiationStatus.active) == {
        NegotiationStatus.completed,
        NegotiationStatus.cancelled,
    }


@pytest.mark.parametrize("target", [NegotiationStatus.completed, NegotiationStatus.cancelled])
def test_active_can_close(target: NegotiationStatus) -> None:
    check_transition(NegotiationStatus.active, target)


def test_active_to_active_is_rejected() -> None:
    with pytest.raises(InvalidTransition) as excinfo:
        check_transition(NegotiationStatus.active, NegotiationStatus.active)
    assert excinfo.value.error_code == "INVALID_TRANSITION"


@pytest.mark.parametrize("current", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
@pytest.mark.parametrize("target", list(NegotiationStatus))
def test_nothing_leaves_a_terminal_status(current: NegotiationStatus, target: NegotiationStatus) -> None:
    with pytest.raises(InvalidTransition) as excinfo:
        check_transition(current, target)
    assert f"already {current.value}" in excinfo.value.message


def test_coerce_status() -> None:
    assert coerce_status("completed", NegotiationStatus.active) is NegotiationStatus.completed
    assert coerce_status(NegotiationStatus.cancelled, NegotiationStatus.active) is NegotiationStatus.cancelled
    with pytest.raises(InvalidTransition) as excinfo:
        coerce_status("archived", NegotiationStatus.active)
    assert "Unknown negotiation status" in excinfo.value.message
