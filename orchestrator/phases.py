"""
Execution phases of an agent run and the transition table between them.
"""

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

logger = logging.getLogger(__name__)


class PhaseKind(Enum):
    IDLE = "idle"
    STARTING = "starting"
    DECIDING = "deciding"
    SETTING_GOAL = "setting_goal"
    PLANNING = "planning"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    VERIFYING = "verifying"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    WAITING_FOR_FILE_LOCK = "waiting_for_file_lock"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_KINDS: FrozenSet[PhaseKind] = frozenset({PhaseKind.COMPLETED, PhaseKind.FAILED, PhaseKind.CANCELLED})

_K = PhaseKind
LEGAL_TRANSITIONS: Dict[PhaseKind, FrozenSet[PhaseKind]] = {
    _K.IDLE: frozenset({_K.STARTING}),
    _K.STARTING: frozenset({_K.DECIDING, _K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.DECIDING: frozenset({_K.SETTING_GOAL, _K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.SETTING_GOAL: frozenset({_K.PLANNING, _K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.PLANNING: frozenset({_K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.EXECUTING: frozenset({
        _K.EXECUTING, _K.REFLECTING, _K.VERIFYING, _K.SUMMARIZING, _K.WAITING_FOR_APPROVAL,
        _K.WAITING_FOR_FILE_LOCK, _K.COMPLETED, _K.FAILED, _K.CANCELLED,
    }),
    _K.REFLECTING: frozenset({_K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.WAITING_FOR_APPROVAL: frozenset({_K.EXECUTING, _K.CANCELLED}),
    _K.WAITING_FOR_FILE_LOCK: frozenset({_K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.VERIFYING: frozenset({_K.COMPLETED, _K.SUMMARIZING, _K.EXECUTING, _K.FAILED, _K.CANCELLED}),
    _K.SUMMARIZING: frozenset({_K.COMPLETED, _K.FAILED, _K.CANCELLED}),
    _K.COMPLETED: frozenset({_K.IDLE, _K.STARTING}),
    _K.FAILED: frozenset({_K.IDLE, _K.STARTING}),
    _K.CANCELLED: frozenset({_K.IDLE, _K.STARTING}),
}


@dataclass(frozen=True)
class ExecutionPhase:
    """One phase value. Payload fields are only meaningful for their kind."""
    kind: PhaseKind = PhaseKind.IDLE
    step: int = 0
    estimated_total: int = 0
    iteration: int = 0
    path: Optional[str] = None
    command: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def idle(cls) -> "ExecutionPhase":
        return cls(PhaseKind.IDLE)

    @classmethod
    def starting(cls) -> "ExecutionPhase":
        return cls(PhaseKind.STARTING)

    @classmethod
    def executing(cls, step: int, estimated_total: int = 0) -> "ExecutionPhase":
        return cls(PhaseKind.EXECUTING, step=step, estimated_total=estimated_total)

    @classmethod
    def reflecting(cls, iteration: int) -> "ExecutionPhase":
        return cls(PhaseKind.REFLECTING, iteration=iteration)

    @classmethod
    def verifying(cls) -> "ExecutionPhase":
        return cls(PhaseKind.VERIFYING)

    @classmethod
    def waiting_for_approval(cls, command: Optional[str] = None) -> "ExecutionPhase":
        return cls(PhaseKind.WAITING_FOR_APPROVAL, command=command)

    @classmethod
    def waiting_for_file_lock(cls, path: str) -> "ExecutionPhase":
        return cls(PhaseKind.WAITING_FOR_FILE_LOCK, path=path)

    @classmethod
    def summarizing(cls) -> "ExecutionPhase":
        return cls(PhaseKind.SUMMARIZING)

    @classmethod
    def completed(cls) -> "ExecutionPhase":
        return cls(PhaseKind.COMPLETED)

    @classmethod
    def failed(cls, reason: str) -> "ExecutionPhase":
        return cls(PhaseKind.FAILED, reason=reason)

    @classmethod
    def cancelled(cls) -> "ExecutionPhase":
        return cls(PhaseKind.CANCELLED)

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @property
    def is_active(self) -> bool:
        return self.kind is not PhaseKind.IDLE and not self.is_terminal

    @property
    def display(self) -> str:
        k = self.kind
        if k is PhaseKind.EXECUTING:
            return f"Step {self.step}/{self.estimated_total}" if self.estimated_total > 0 else f"Step {self.step}"
        if k is PhaseKind.REFLECTING:
            return f"Reflecting (iteration {self.iteration})"
        if k is PhaseKind.WAITING_FOR_APPROVAL:
            return "Awaiting approval"
        if k is PhaseKind.WAITING_FOR_FILE_LOCK:
            return f"Waiting for {os.path.basename(self.path or '')}"
        if k is PhaseKind.FAILED:
            return f"Failed: {self.reason}" if self.reason else "Failed"
        return {
            PhaseKind.IDLE: "Idle",
            PhaseKind.STARTING: "Starting",
            PhaseKind.DECIDING: "Deciding",
            PhaseKind.SETTING_GOAL: "Setting goal",
            PhaseKind.PLANNING: "Planning",
            PhaseKind.VERIFYING: "Verifying",
            PhaseKind.SUMMARIZING: "Summarizing",
            PhaseKind.COMPLETED: "Completed",
            PhaseKind.CANCELLED: "Cancelled",
        }[k]

    def __str__(self) -> str:
        return self.display


class IllegalTransitionError(RuntimeError):
    def __init__(self, old: ExecutionPhase, new: ExecutionPhase):
        super().__init__(f"Illegal phase transition: {old.kind.value} -> {new.kind.value}")
        self.old = old
        self.new = new


def is_legal(old: PhaseKind, new: PhaseKind) -> bool:
    # Cancellation is accepted from any live phase
    if new is PhaseKind.CANCELLED and old not in TERMINAL_KINDS:
        return True
    return new in LEGAL_TRANSITIONS.get(old, frozenset())


class PhaseMachine:
    """Holds the current phase of a run and validates transitions.

    Permissive by default: an illegal move is logged and applied anyway.
    With strict=True it raises IllegalTransitionError instead.
    """

    def __init__(self, strict: bool = False,
                 on_change: Optional[Callable[[ExecutionPhase, ExecutionPhase], None]] = None):
        self.strict = strict
        self.on_change = on_change
        self._phase = ExecutionPhase.idle()
        self.history: List[Tuple[float, ExecutionPhase]] = [(time.time(), self._phase)]

    @property
    def phase(self) -> ExecutionPhase:
        return self._phase

    @property
    def kind(self) -> PhaseKind:
        return self._phase.kind

    def transition(self, new: ExecutionPhase) -> bool:
        """Move to new. Returns False when the move was illegal (and forced)."""
        old = self._phase
        legal = is_legal(old.kind, new.kind)
        if not legal:
            if self.strict:
                raise IllegalTransitionError(old, new)
            logger.warning(f"Illegal phase transition {old.kind.value} -> {new.kind.value}; forcing")
        elif old.kind is not new.kind:
            logger.info(f"Phase: {old.display} -> {new.display}")
        self._phase = new
        self.history.append((time.time(), new))
        if self.on_change is not None:
            self.on_change(old, new)
        return legal

    def kinds(self) -> List[PhaseKind]:
        return [p.kind for _, p in self.history]
