"""
Run monitoring: periodic reflection, stuck recovery, completion verification
and context compaction. Each check is a one-shot decision prompt whose absent
fields are treated as "no signal".
"""

import logging
from typing import List, Optional

from .events import AgentEvent
from .phases import ExecutionPhase
from .prompts import reflection_prompt, stuck_prompt, verification_prompt

logger = logging.getLogger(__name__)


class MonitoringMixin:
    """Mixin providing reflection, stuck detection, verification and summarization.

    Expects the host class to provide:
    - self.settings (AgentSettings), self.mode (AgentMode)
    - self.decisions (DecisionCaller), self.profiles (ProfileSelector)
    - self.context (ContextWindowManager), self.stuck (StuckDetector)
    - self.context_log (list), self.goal (str), self.checklist, self.iterations (int)
    - self.consume_feedback(), self._transition(), self._emit(), self._executing_phase()
    """

    def _checklist_display(self) -> str:
        if self.checklist is None or not self.checklist.has_items:
            return "No checklist set"
        return self.checklist.display_string

    async def _drain_feedback(self, label: str) -> bool:
        feedback = self.consume_feedback()
        if not feedback:
            return False
        for item in feedback:
            self.context_log.append(f"USER FEEDBACK ({label}): {item}")
        await self._emit(AgentEvent(type="feedback_applied", content="\n".join(feedback)))
        return True

    def _should_reflect(self) -> bool:
        interval = self.settings.reflection_interval
        return (
            self.settings.enable_reflection
            and interval > 0
            and self.iterations > 1
            and self.iterations % interval == 0
        )

    async def _reflect(self) -> None:
        """Ask the model to assess progress; may adjust strategy or retarget the profile."""
        await self._drain_feedback("before reflection")
        await self._transition(ExecutionPhase.reflecting(self.iterations))
        questions = self.profiles.active.reflection_prompt(self.mode)
        prompt = reflection_prompt(questions, self.goal, self._checklist_display(), self.context_log[-20:])
        result = await self.decisions.call_json(prompt)
        if result.progress_percent is not None:
            logger.info(f"Reflection at iteration {self.iterations}: {result.progress_percent}% "
                        f"(on track: {result.on_track})")
        await self._emit(AgentEvent(
            type="reflection",
            content=result.new_approach or "",
            data={"progress_percent": result.progress_percent, "on_track": result.on_track},
        ))
        if result.should_adjust and result.new_approach:
            self.context_log.append(f"STRATEGY ADJUSTMENT: {result.new_approach}")

        if self.profiles.is_auto:
            task = self.goal
            next_items: List[str] = []
            if self.checklist is not None:
                remaining = self.checklist.remaining_items
                if remaining:
                    task = remaining[0].description
                    next_items = [i.description for i in remaining[1:]]
            await self.profiles.reevaluate(task, next_items, "\n".join(self.context_log[-10:]))
        await self._transition(self._executing_phase())

    async def _check_stuck(self) -> bool:
        """Returns True if the run should stop."""
        if not self.stuck.is_stuck():
            return False
        commands = self.stuck.last_commands()
        logger.warning(f"Possible stuck loop: {commands}")
        result = await self.decisions.call_json(stuck_prompt(commands, self.goal))
        if result.should_stop:
            self.context_log.append("STUCK: stopping run at the model's recommendation")
            await self._emit(AgentEvent(type="stuck", content="Stopping: no progress", data={"commands": commands}))
            return True
        if result.is_stuck and result.new_approach:
            self.context_log.append(f"STUCK RECOVERY - NEW APPROACH: {result.new_approach}")
            self.stuck.reset()
            await self._emit(AgentEvent(type="stuck", content=result.new_approach, data={"commands": commands}))
        return False

    async def _summarize_context_if_needed(self, force: bool = False) -> bool:
        """Replace the context log with a summary when it nears the context limit."""
        if not force and not self.context.needs_summarization(self.context_log, self.goal):
            return False
        before = len(self.context_log)
        await self.context.compact(self.context_log, extra_text=self.goal, force=True)
        await self._emit(AgentEvent(
            type="context_summarized",
            content=f"Summarized {before} context entries",
            data={
                "count": self.context.summarization_count,
                "at": self.context.last_summarization_at,
            },
        ))
        return True

    def _needs_verification(self) -> bool:
        return (
            self.settings.enable_verification_phase
            and self.checklist is not None
            and bool(self.checklist.remaining_items)
        )

    async def _verify_completion(self, final_text: str) -> Optional[str]:
        """Check a "done" answer against the open checklist.

        Returns None when the goal is met, else the reason the work is not done.
        """
        await self._transition(ExecutionPhase.verifying())
        context = self.context_log[-10:] + [f"AGENT: {final_text}"]
        result = await self.decisions.call_json_with_retry(
            verification_prompt(self.goal, self._checklist_display(), context)
        )
        if result.done:
            logger.info(f"Verification passed: {result.reason or 'goal met'}")
            return None
        if result.done is None:
            logger.warning("Verification gave no decision; treating open checklist items as not done")
        reason = result.reason or "Checklist still has open items"
        await self._emit(AgentEvent(type="verification", content=reason, data={"done": False}))
        return reason
