"""
Tests for execution phases and the transition table.
"""

import pytest

from orchestrator.phases import (
    ExecutionPhase,
    IllegalTransitionError,
    PhaseKind,
    PhaseMachine,
    is_legal,
)


def test_happy_path_is_legal():
    machine = PhaseMachine(strict=True)
    for phase in (
        ExecutionPhase.starting(),
        ExecutionPhase.executing(1, 3),
        ExecutionPhase.reflecting(1),
        ExecutionPhase.executing(2, 3),
        ExecutionPhase.verifying(),
        ExecutionPhase.summarizing(),
        ExecutionPhase.completed(),
    ):
        assert machine.transition(phase) is True
    assert machine.kinds()[0] is PhaseKind.IDLE
    assert machine.kind is PhaseKind.COMPLETED


def test_cancel_is_legal_from_any_live_phase():
    for kind in PhaseKind:
        if kind in (PhaseKind.COMPLETED, PhaseKind.FAILED, PhaseKind.CANCELLED):
            assert not is_legal(kind, PhaseKind.CANCELLED)
        else:
            assert is_legal(kind, PhaseKind.CANCELLED), kind


def test_summarizing_only_leads_to_terminal_phases():
    assert not is_legal(PhaseKind.SUMMARIZING, PhaseKind.EXECUTING)
    assert is_legal(PhaseKind.SUMMARIZING, PhaseKind.COMPLETED)


def test_reflecting_returns_to_executing_only():
    assert is_legal(PhaseKind.REFLECTING, PhaseKind.EXECUTING)
    assert not is_legal(PhaseKind.REFLECTING, PhaseKind.VERIFYING)
    assert not is_legal(PhaseKind.REFLECTING, PhaseKind.COMPLETED)


def test_permissive_machine_forces_illegal_move():
    seen = []
    machine = PhaseMachine(on_change=lambda old, new: seen.append((old.kind, new.kind)))
    assert machine.transition(ExecutionPhase.verifying()) is False
    assert machine.kind is PhaseKind.VERIFYING
    assert seen == [(PhaseKind.IDLE, PhaseKind.VERIFYING)]


def test_strict_machine_raises():
    machine = PhaseMachine(strict=True)
    with pytest.raises(IllegalTransitionError):
        machine.transition(ExecutionPhase.completed())
    assert machine.kind is PhaseKind.IDLE


def test_display_strings():
    assert ExecutionPhase.executing(2, 5).display == "Step 2/5"
    assert ExecutionPhase.executing(2).display == "Step 2"
    assert ExecutionPhase.waiting_for_file_lock("/tmp/x/app.py").display == "Waiting for app.py"
    assert ExecutionPhase.failed("boom").display == "Failed: boom"
    assert str(ExecutionPhase.cancelled()) == "Cancelled"


def test_terminal_and_active():
    assert ExecutionPhase.completed().is_terminal
    assert not ExecutionPhase.idle().is_active
    assert ExecutionPhase.executing(1).is_active
