"""
Orchestrator package - the autonomous agent engine.

Modules:
- phases: ExecutionPhase values and the legal transition table
- checklist: TaskChecklist progress tracking
- checkpoints: per-message file snapshots, rollback and branching
- context: ContextWindowManager (token accounting, summarization, output truncation)
- decisions: one-shot JSON decision calls (reflection, stuck, verification, profile)
- errors: provider error classification and recovery strategies
- profiles: AgentMode capabilities and AgentProfile selection
- stuck: repeated-command detection
- tokens / truncation: token estimation and content-aware truncation
- execution / monitoring: mixins for tool dispatch and run supervision
- core: AgentOrchestrator
"""

from .core import AgentOrchestrator, AgentRunResult
from .events import AgentEvent

from .execution import ExecutionMixin, StepOutcome, REJECTED_MESSAGE
from .monitoring import MonitoringMixin

from .phases import ExecutionPhase, PhaseKind, PhaseMachine, IllegalTransitionError, is_legal
from .checklist import TaskChecklist, TaskChecklistItem, TaskStatus
from .checkpoints import Checkpoint, CheckpointAction, CheckpointStore, FileSnapshot, RollbackResult
from .context import ContextWindowManager, heuristic_summary
from .decisions import DecisionCaller, DecisionResponse, parse_decision
from .errors import AgentAPIError, ErrorKind, RecoveryStrategy
from .profiles import AgentMode, AgentProfile, ProfileSelector
from .stuck import StuckDetector
from .tokens import estimate_tokens, context_limit
from .truncation import ContentKind, smart_truncate

__all__ = [
    "AgentOrchestrator",
    "AgentRunResult",
    "AgentEvent",
    "ExecutionMixin",
    "MonitoringMixin",
    "StepOutcome",
    "REJECTED_MESSAGE",
    "ExecutionPhase",
    "PhaseKind",
    "PhaseMachine",
    "IllegalTransitionError",
    "is_legal",
    "TaskChecklist",
    "TaskChecklistItem",
    "TaskStatus",
    "Checkpoint",
    "CheckpointAction",
    "CheckpointStore",
    "FileSnapshot",
    "RollbackResult",
    "ContextWindowManager",
    "heuristic_summary",
    "DecisionCaller",
    "DecisionResponse",
    "parse_decision",
    "AgentAPIError",
    "ErrorKind",
    "RecoveryStrategy",
    "AgentMode",
    "AgentProfile",
    "ProfileSelector",
    "StuckDetector",
    "estimate_tokens",
    "context_limit",
    "ContentKind",
    "smart_truncate",
]
