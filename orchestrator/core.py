"""
AgentOrchestrator: the step loop that drives one agent run per user goal.
Inherits tool dispatch from ExecutionMixin and reflection/stuck/verification
from MonitoringMixin.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from backend import Backend, LocalBackend
from config import AgentSettings, agent_settings, app_config
from llm_client import LLMClient
from sessions import Session, SessionStore, auto_title
from tools import ToolContext, ToolRegistry, FileLockCoordinator
from tools.planning_ops import extract_checklist_entries

from .checklist import TaskChecklist
from .checkpoints import Checkpoint, CheckpointAction, CheckpointStore, RollbackResult
from .context import ContextWindowManager
from .decisions import DecisionCaller
from .errors import AgentAPIError
from .events import AgentEvent
from .execution import ApprovalCallback, ExecutionMixin, StepOutcome
from .monitoring import MonitoringMixin
from .phases import ExecutionPhase, PhaseKind, PhaseMachine, is_legal
from .profiles import AgentMode, AgentProfile, ProfileSelector
from .prompts import SUMMARIZER_SYSTEM, compose_step_system_prompt, compose_step_user_message
from .stuck import StuckDetector

logger = logging.getLogger(__name__)


@dataclass
class AgentRunResult:
    """Outcome of one run."""
    final_text: str
    phase: ExecutionPhase
    iterations: int
    error: Optional[str] = None
    checklist: Optional[TaskChecklist] = None
    caveat: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self.phase.kind is PhaseKind.CANCELLED


class AgentOrchestrator(ExecutionMixin, MonitoringMixin):
    """
    Drives an autonomous coding agent toward a user goal.

    Flow:
    1. run(goal) opens a checkpoint for the user message and enters `starting`
    2. Each iteration drains feedback, reflects/checks for loops when due,
       compacts the context log and promotes the next checklist item
    3. One step calls the model with tools until it answers with text
    4. A text answer with open checklist items is verified before completing
    5. The run always ends `completed` or `cancelled`; locks are released and
       the checkpoint sealed on the way out

    Collaborators are injected; orchestrators that should contend for files
    share one FileLockCoordinator.
    """

    def __init__(
        self,
        llm: LLMClient,
        registry: Optional[ToolRegistry] = None,
        locks: Optional[FileLockCoordinator] = None,
        settings: Optional[AgentSettings] = None,
        backend: Optional[Backend] = None,
        working_directory: str = ".",
        mode: AgentMode = AgentMode.PILOT,
        profile: AgentProfile = AgentProfile.AUTO,
        session_id: Optional[str] = None,
        session_store: Optional[SessionStore] = None,
        plans_dir: Optional[str] = None,
    ):
        self.llm = llm
        self.settings = settings or agent_settings
        self.registry = registry or ToolRegistry.default()
        self.locks = locks or FileLockCoordinator(self.settings.file_lock_timeout)
        self.backend: Backend = backend or LocalBackend(working_directory)
        self.working_directory = self.backend.working_directory
        self.mode = mode
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.session_store = session_store

        self.phases = PhaseMachine(strict=app_config.strict_phase_transitions)
        # created per run inside the running loop
        self._cancel_event: Optional[asyncio.Event] = None
        self._running = False
        self._pending_feedback: List[str] = []
        self._on_event: Optional[Callable[[AgentEvent], Awaitable[None]]] = None

        self.goal = ""
        self.iterations = 0
        self.messages: List[Dict[str, Any]] = []
        self.context_log: List[str] = []
        self.plan_title: Optional[str] = None
        self.plan_content: Optional[str] = None

        self.context = ContextWindowManager(llm.model_id, self.settings, summarizer=self._summarize_with_llm)
        self.decisions = DecisionCaller(
            llm, on_prompt_tokens=self.context.record_prompt_tokens,
        )
        self.profiles = ProfileSelector(profile, self.decisions, self.context_log, on_event=self._emit)
        self.stuck = StuckDetector(self.settings.stuck_detection_threshold, self.settings.stuck_similarity_threshold)
        self.checkpoints = CheckpointStore(self.backend)
        self.tool_context = ToolContext(settings=self.settings, checklist=TaskChecklist(), plans_dir=plans_dir)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def phase(self) -> ExecutionPhase:
        return self.phases.phase

    @property
    def checklist(self) -> TaskChecklist:
        return self.tool_context.checklist

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def profile(self) -> AgentProfile:
        return self.profiles.active

    async def _emit(self, event: AgentEvent) -> None:
        if self._on_event is not None:
            await self._on_event(event)

    async def _transition(self, new: ExecutionPhase) -> None:
        if self.cancelled and new.kind is not PhaseKind.CANCELLED:
            return
        if new == self.phase:
            return
        self.phases.transition(new)
        await self._emit(AgentEvent(
            type="phase", content=new.display,
            data={"phase": new.kind.value, "step": new.step, "total": new.estimated_total},
        ))

    async def _emit_checklist(self) -> None:
        await self._emit(AgentEvent(
            type="checklist",
            content=self.checklist.display_string if self.checklist.has_items else "",
            data=self.checklist.to_dict(),
        ))

    async def _summarize_with_llm(self, prompt: str) -> str:
        return await self.decisions.call_text(prompt, system=SUMMARIZER_SYSTEM)

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Cancel the current run, release its file locks and kill any running command."""
        if self._cancel_event is not None:
            self._cancel_event.set()
        if self._running and not self.phase.is_terminal:
            self.phases.transition(ExecutionPhase.cancelled())
        self.locks.release_all(self.session_id)
        if self.backend:
            try:
                self.backend.cancel_running_command()
            except OSError as e:
                logger.debug(f"Could not kill running command: {e}")

    def queue_feedback(self, text: str) -> bool:
        """Queue user feedback for the next safe point. Ignored when no run is active."""
        text = (text or "").strip()
        if not self._running or not text:
            return False
        self._pending_feedback.append(text)
        return True

    def consume_feedback(self) -> List[str]:
        """Pop all queued feedback, oldest first."""
        items = list(self._pending_feedback)
        self._pending_feedback.clear()
        return items

    def set_checklist(self, goal: str, tasks: List[str]) -> None:
        """Pre-set the checklist (e.g. from a reviewed plan) before calling run()."""
        self.checklist.set_goal(goal, tasks)

    def use_plan(self, title: str, content: str) -> int:
        """Attach a plan document and seed the checklist from its checkbox items.

        Items already ticked in the plan start out completed.
        """
        self.plan_title = title
        self.plan_content = content
        entries = extract_checklist_entries(content)
        self.set_checklist(title, [desc for desc, _ in entries])
        for item_id, (_, checked) in enumerate(entries, 1):
            if checked:
                self.checklist.mark_completed(item_id, "Checked in plan")
        return len(entries)

    def _require_idle(self, action: str) -> None:
        if self._running:
            raise RuntimeError(f"Cannot {action} while a run is in progress")

    def rollback_to(self, checkpoint: Checkpoint, remove_anchor_message: bool = False) -> RollbackResult:
        """Restore files to their state at checkpoint and drop later messages."""
        self._require_idle("roll back")
        result = self.checkpoints.rollback(checkpoint, remove_anchor_message, self.messages)
        self._schedule_save()
        return result

    def branch_from(self, checkpoint: Checkpoint, new_prompt: str) -> int:
        """Fork the conversation at checkpoint, keeping files as they are."""
        self._require_idle("branch")
        removed = self.checkpoints.branch(checkpoint, new_prompt, self.messages)
        self._schedule_save()
        return removed

    def apply_checkpoint_action(self, checkpoint: Checkpoint,
                                action: CheckpointAction) -> Tuple[Optional[RollbackResult], Optional[str]]:
        """Apply a user's checkpoint choice. Returns (rollback result, prompt to resend)."""
        if action.kind == "rollback":
            return self.rollback_to(checkpoint, remove_anchor_message=False), None
        if action.kind == "edit_and_rollback":
            return self.rollback_to(checkpoint, remove_anchor_message=True), action.new_prompt
        self.branch_from(checkpoint, action.new_prompt or "")
        return None, action.new_prompt

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_session(self) -> Session:
        user_messages = [m for m in self.messages if m.get("role") == "user"]
        title = auto_title(user_messages[0]["content"]) if user_messages else ""
        return Session(
            session_id=self.session_id,
            title=title,
            working_directory=self.working_directory,
            model_id=self.llm.model_id,
            messages=list(self.messages),
            checkpoints=self.checkpoints.to_dict(),
            settings={"mode": self.mode.value, "profile": self.profiles.selected.value, "title": title},
            checklist=self.checklist.to_dict() if self.checklist.has_items else None,
            token_usage={"session_tokens": self.context.session_tokens_used},
        )

    def restore_session(self, session: Session) -> None:
        """Load messages, checkpoints and settings from a saved session."""
        self._require_idle("restore a session")
        self.session_id = session.session_id
        self.messages = list(session.messages)
        self.checkpoints.load_dict(session.checkpoints)
        mode = AgentMode.from_string(session.settings.get("mode", ""))
        if mode is not None:
            self.mode = mode
        profile = AgentProfile.from_string(session.settings.get("profile", ""))
        if profile is not None:
            self.profiles.selected = profile
            self.profiles.reset()
        if session.checklist:
            self.tool_context.checklist = TaskChecklist.from_dict(session.checklist)

    def _schedule_save(self) -> None:
        if self.session_store is not None:
            self.session_store.schedule_save(self.to_session())

    def _flush_session(self) -> None:
        if self.session_store is None:
            return
        self.session_store.schedule_save(self.to_session())
        self.session_store.flush()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _reset_run_state(self, goal: str) -> None:
        self._cancel_event = asyncio.Event()
        self.decisions.cancel_event = self._cancel_event
        self._pending_feedback.clear()
        self.goal = goal
        self.iterations = 0
        self.context_log.clear()
        self.context_log.append(f"STARTING_CWD: {self.working_directory}")
        self.context.reset()
        self.stuck.reset()
        self.profiles.reset()
        self.tool_context.reset_run()
        if not self.checklist.has_items:
            self.checklist.goal_description = goal

    async def run(
        self,
        goal: str,
        on_event: Optional[Callable[[AgentEvent], Awaitable[None]]] = None,
        request_approval: Optional[ApprovalCallback] = None,
    ) -> AgentRunResult:
        """Run the agent loop for one user goal."""
        if self._running:
            raise RuntimeError("A run is already in progress")
        goal = (goal or "").strip()
        if not goal:
            raise ValueError("goal must not be empty")

        self._running = True
        self._on_event = on_event
        self._reset_run_state(goal)
        self.messages.append({"role": "user", "content": goal})
        self.checkpoints.create_checkpoint(len(self.messages) - 1, goal)
        logger.info(f"Run started (session {self.session_id}, mode {self.mode.value}): {goal[:100]}")

        final_text, error, caveat = "", None, None
        try:
            await self._transition(ExecutionPhase.starting())
            final_text, error, caveat = await self._run_loop(request_approval)
        except asyncio.CancelledError:
            self._cancel_event.set()
            raise
        finally:
            self.locks.release_all(self.session_id)
            self.checkpoints.finalize_current()
            await self._finish()
            self._running = False
            if final_text:
                self.messages.append({"role": "assistant", "content": final_text})
            self._flush_session()

        if error:
            final_text = final_text or error
        await self._emit(AgentEvent(
            type="done",
            content=final_text,
            data={
                "phase": self.phase.kind.value,
                "iterations": self.iterations,
                "error": error,
                "caveat": caveat,
                "session_tokens": self.context.session_tokens_used,
            },
        ))
        return AgentRunResult(
            final_text=final_text,
            phase=self.phase,
            iterations=self.iterations,
            error=error,
            checklist=self.checklist if self.checklist.has_items else None,
            caveat=caveat,
        )

    async def _finish(self) -> None:
        """Move the run into its terminal phase."""
        if self.cancelled:
            if not self.phase.is_terminal:
                self.phases.transition(ExecutionPhase.cancelled())
            await self._emit(AgentEvent(type="phase", content=self.phase.display,
                                        data={"phase": self.phase.kind.value}))
            logger.info("Run cancelled")
            return
        if self.phase.kind is PhaseKind.COMPLETED:
            return
        if not is_legal(self.phase.kind, PhaseKind.COMPLETED):
            await self._transition(self._executing_phase())
        await self._transition(ExecutionPhase.completed())
        logger.info(f"Run completed after {self.iterations} iteration(s)")

    def _step_system_prompt(self, checklist_context: str) -> str:
        active = self.profiles.active
        guidance = ""
        if self.settings.enable_planning and not checklist_context:
            guidance = active.planning_guidance(self.mode)
        return compose_step_system_prompt(
            user_request=self.goal,
            goal=self.checklist.goal_description or self.goal,
            step=self.iterations,
            max_iterations=self.settings.max_iterations,
            mode=self.mode.value,
            working_directory=self.working_directory,
            checklist_context=checklist_context,
            profile_addition=active.system_prompt_addition(self.mode),
            planning_guidance=guidance,
        )

    async def _advance_checklist(self) -> str:
        """Promote the next task if none is in progress; returns the checklist context for the prompt."""
        if not self.checklist.has_items:
            return ""
        promoted = self.checklist.auto_promote()
        if promoted is not None:
            self.context_log.append(f"TASK STARTED: #{promoted.id} - {promoted.description}")
            await self._emit_checklist()
        context = self.checklist.display_string
        current = self.checklist.in_progress_item
        if current is not None:
            context += f"\n\nCURRENT TASK: #{current.id} - {current.description}"
        if promoted is not None and self.profiles.is_auto:
            upcoming = [i.description for i in self.checklist.remaining_items if i is not promoted]
            await self.profiles.reevaluate(promoted.description, upcoming, "\n".join(self.context_log[-5:]))
        return context

    async def _auto_complete(self, outcome: StepOutcome) -> None:
        """A step with a successful file change completes the in-progress item."""
        if not outcome.successful_file_changes:
            return
        item = self.checklist.in_progress_item
        if item is None:
            return
        self.checklist.mark_completed(item.id, "Done")
        logger.info(f"Checklist item #{item.id} completed after file changes")
        await self._emit_checklist()

    async def _step(self, request_approval: Optional[ApprovalCallback], checklist_context: str) -> StepOutcome:
        system_prompt = self._step_system_prompt(checklist_context)
        user_message = compose_step_user_message("\n".join(self.context_log), self.plan_title, self.plan_content)
        outcome = await self._run_step(system_prompt, user_message, request_approval)
        if outcome.error is not None and outcome.error.recovery_strategy.kind == "reduce_context" \
                and not self.cancelled:
            logger.warning("Context length exceeded; summarizing and retrying the step once")
            await self._summarize_context_if_needed(force=True)
            user_message = compose_step_user_message("\n".join(self.context_log), self.plan_title, self.plan_content)
            outcome = await self._run_step(system_prompt, user_message, request_approval)
        return outcome

    async def _run_loop(self, request_approval: Optional[ApprovalCallback]) -> Tuple[str, Optional[str], Optional[str]]:
        """Returns (final text, error message, caveat)."""
        if self.profiles.is_auto:
            await self.profiles.reevaluate(self.goal)
        if self.checklist.has_items:
            await self._emit_checklist()

        final_text = ""
        caveat: Optional[str] = None
        fix_attempts = 0
        max_iterations = self.settings.max_iterations

        while True:
            if self.cancelled:
                return final_text, None, None
            if 0 < max_iterations <= self.iterations:
                caveat = f"Reached maximum iterations ({max_iterations})"
                final_text = final_text or caveat
                logger.warning(caveat)
                break

            await self._drain_feedback("received during execution")
            self.iterations += 1
            await self._transition(self._executing_phase())

            if self._should_reflect():
                await self._reflect()
            if self.cancelled:
                continue
            if await self._check_stuck():
                caveat = "Stopped after repeated commands without progress"
                final_text = final_text or caveat
                break
            await self._summarize_context_if_needed()
            checklist_context = await self._advance_checklist()
            if self.cancelled:
                continue

            outcome = await self._step(request_approval, checklist_context)
            if self.cancelled:
                continue
            if outcome.error is not None:
                return await self._provider_error(final_text, outcome.error)

            await self._auto_complete(outcome)
            final_text = outcome.text
            await self._emit(AgentEvent(type="text", content=final_text))
            if outcome.hit_cap:
                caveat = "Stopped at the per-step tool call limit"
                break

            if self._needs_verification():
                reason = await self._verify_completion(final_text)
                if self.cancelled:
                    continue
                if reason is not None:
                    fix_attempts += 1
                    if fix_attempts > self.settings.max_fix_attempts:
                        caveat = f"Checklist still open after {self.settings.max_fix_attempts} fix attempts: {reason}"
                        logger.warning(caveat)
                        break
                    self.context_log.append(f"VERIFY: {reason}")
                    continue
            break

        await self._transition(ExecutionPhase.summarizing())
        return final_text, None, caveat

    async def _provider_error(self, final_text: str, error: AgentAPIError) -> Tuple[str, Optional[str], Optional[str]]:
        message = error.user_message
        strategy = error.recovery_strategy
        logger.error(f"Run stopped by provider error ({error.kind.value}, transient={error.is_transient}, "
                     f"recovery={strategy.kind}): {error}")
        self.context_log.append(f"ERROR: {message}")
        await self._emit(AgentEvent(type="error", content=message, data={
            "kind": error.kind.value,
            "transient": error.is_transient,
            "recovery": strategy.kind,
            "hint": strategy.message,
        }))
        return final_text, message, None
