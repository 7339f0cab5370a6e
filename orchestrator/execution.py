"""
Tool dispatch for one step of the agent loop.
Runs the model/tool exchange, gates every call on mode, approval and file locks,
and records results in the context log, checkpoint and stuck window.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from config import app_config
from llm_client import LLMStreamEvent, ToolCall, ToolStepResponse
from tools import ToolResult, needs_approval, mutated_path
from tools.dispatch import is_bookkeeping, is_file_mutating, is_shell
from tools.locks import LockOutcome

from .errors import AgentAPIError
from .events import AgentEvent
from .phases import ExecutionPhase, PhaseKind
from .tokens import estimate_tokens
from .truncation import ContentKind

logger = logging.getLogger(__name__)

ApprovalCallback = Callable[[str, str, Dict[str, Any]], Awaitable[bool]]

_RESULT_KINDS = {
    "read_file": ContentKind.FILE_CONTENT,
    "shell": ContentKind.COMMAND_OUTPUT,
    "search_output": ContentKind.COMMAND_OUTPUT,
    "http_request": ContentKind.API_RESPONSE,
}

_FORWARDED_STREAM_EVENTS = ("text_delta", "tool_call_start", "tool_call_delta", "tool_call_end")

REJECTED_MESSAGE = "User rejected this operation."


@dataclass
class StepOutcome:
    """What one step of the tool loop produced."""
    text: str = ""
    done: bool = False
    hit_cap: bool = False
    cancelled: bool = False
    error: Optional[AgentAPIError] = None
    tool_results: List[Tuple[ToolCall, ToolResult]] = field(default_factory=list)

    @property
    def successful_file_changes(self) -> List[Tuple[ToolCall, ToolResult]]:
        return [(c, r) for c, r in self.tool_results if r.success and is_file_mutating(c.name)]


def format_args(inputs: Dict[str, Any], limit: int = 300) -> str:
    try:
        text = json.dumps(inputs, sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = str(inputs)
    return text if len(text) <= limit else text[:limit] + "..."


class ExecutionMixin:
    """Mixin providing the step tool loop and per-call dispatch.

    Expects the host class to provide:
    - self.llm (LLMClient), self.registry (ToolRegistry), self.locks (FileLockCoordinator)
    - self.settings (AgentSettings), self.backend (Backend), self.working_directory (str)
    - self.mode (AgentMode), self.session_id (str)
    - self.context_log (list), self.context (ContextWindowManager)
    - self.checkpoints (CheckpointStore), self.stuck (StuckDetector), self.tool_context (ToolContext)
    - self.cancelled (property), self._cancel_event (asyncio.Event, rebuilt per run), self.iterations (int), self.checklist
    - self._transition(), self._emit()
    """

    def _format_tool_description(self, name: str, inputs: Dict[str, Any]) -> str:
        """Human-readable description of a tool call for approval prompts."""
        path = inputs.get("path", "?")
        if name == "write_file":
            content = inputs.get("content") or ""
            return f"Write {path} ({content.count(chr(10)) + 1} lines)"
        if name == "edit_file":
            return f"Edit {path}: replace string" + (" (all occurrences)" if inputs.get("replace_all") else "")
        if name == "insert_lines":
            return f"Insert into {path} at line {inputs.get('line_number', '?')}"
        if name == "delete_lines":
            return f"Delete lines {inputs.get('start_line', '?')}-{inputs.get('end_line', '?')} of {path}"
        if name == "delete_file":
            return f"Delete {path}"
        if name in ("shell", "run_background"):
            return f"Run: {inputs.get('command', '?')}"
        if name == "stop_process":
            return f"Stop process {inputs.get('pid', '?')}"
        return f"{name}({format_args(inputs, 200)})"

    def _executing_phase(self) -> ExecutionPhase:
        total = len(self.checklist.items) if self.checklist is not None else 0
        return ExecutionPhase.executing(self.iterations, total)

    async def _race_cancel(self, awaitable: Awaitable[Any], timeout: Optional[float] = None) -> Optional[asyncio.Future]:
        """Await awaitable unless the run is cancelled or timeout elapses first.

        Returns the finished future, or None if it lost the race (it is then cancelled).
        A failure of the cancel wait itself is raised rather than read as a cancel.
        """
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task
        if waiter in done and waiter.exception() is not None:
            raise waiter.exception()
        return None

    async def _await_approval(self, request_approval: ApprovalCallback, call: ToolCall) -> bool:
        """Hold the run in waiting_for_approval until the human answers. A timeout is a rejection."""
        desc = self._format_tool_description(call.name, call.input)
        command = call.input.get("command") if is_shell(call.name) else desc
        await self._transition(ExecutionPhase.waiting_for_approval(command))
        timeout = self.settings.approval_timeout
        finished = await self._race_cancel(
            request_approval(call.name, desc, call.input),
            timeout if timeout and timeout > 0 else None,
        )
        approved = False
        if finished is not None:
            approved = bool(finished.result())
        elif not self.cancelled:
            logger.warning(f"Approval for {call.name} timed out after {timeout}s; treating as rejected")
        if not self.cancelled:
            await self._transition(self._executing_phase())
        return approved

    async def _acquire_lock(self, path: str, operation: str) -> LockOutcome:
        async def _on_wait(holder: str) -> None:
            logger.info(f"{path} is locked by session {holder}; waiting")
            await self._transition(ExecutionPhase.waiting_for_file_lock(path))
            await self._emit(AgentEvent(type="waiting_for_lock", content=path, data={"holder": holder}))

        outcome = await self.locks.acquire(
            self.session_id, self.backend.resolve_path(path), operation,
            timeout=self.settings.file_lock_timeout, on_wait=_on_wait,
        )
        if not self.cancelled and self.phase.kind is PhaseKind.WAITING_FOR_FILE_LOCK:
            await self._transition(self._executing_phase())
        return outcome

    async def _dispatch_tool_call(self, call: ToolCall, request_approval: Optional[ApprovalCallback]) -> ToolResult:
        """Run one tool call through the gates. Never raises for tool-level failures."""
        name, inputs = call.name, call.input if isinstance(call.input, dict) else {}

        tool = self.registry.get(name)
        if tool is None:
            return ToolResult(success=False, output="", error=f"Unknown tool: {name}")
        if not self.registry.is_available(name, self.mode, inputs):
            return ToolResult(success=False, output="",
                              error=f"Tool '{name}' is not available in {self.mode.value} mode")

        if request_approval is not None and needs_approval(name, inputs, self.settings):
            approved = await self._await_approval(request_approval, call)
            if self.cancelled:
                return ToolResult(success=False, output="", error="Cancelled")
            if not approved:
                await self._emit(AgentEvent(type="tool_rejected", content=name, data={"tool_use_id": call.id}))
                return ToolResult(success=False, output="", error=REJECTED_MESSAGE)

        path = mutated_path(name, inputs)
        locked = False
        if path is not None:
            outcome = await self._acquire_lock(path, name)
            if outcome is not LockOutcome.ACQUIRED:
                reason = "timed out" if outcome is LockOutcome.TIMEOUT else "was cancelled"
                return ToolResult(success=False, output="", error=f"Waiting for file lock on {path} {reason}")
            locked = True
            if self.cancelled:
                self.locks.release(self.session_id, self.backend.resolve_path(path))
                return ToolResult(success=False, output="", error="Cancelled")
            self.checkpoints.snapshot_file(path)

        try:
            result = await asyncio.to_thread(
                tool.execute, inputs, self.working_directory, self.backend, self.tool_context,
            )
        finally:
            if locked:
                self.locks.release(self.session_id, self.backend.resolve_path(path))

        if is_shell(name) and inputs.get("command"):
            command = str(inputs["command"])
            self.checkpoints.record_shell_command(command)
            self.stuck.record(command)
        return result

    async def _log_tool_result(self, call: ToolCall, result: ToolResult) -> None:
        """Append TOOL/RESULT entries to the context log (skipped for checklist bookkeeping)."""
        if is_bookkeeping(call.name, call.input):
            return
        if not self.registry.is_available(call.name, self.mode, call.input) and self.registry.get(call.name):
            self.context_log.append(f"TOOL ERROR: {result.error}")
            return
        text = result.output if result.success else f"ERROR: {result.error}"
        if not result.success and result.output:
            text += f"\n{result.output}"
        kind = _RESULT_KINDS.get(call.name, ContentKind.UNKNOWN)
        command = str(call.input.get("command", "")) if is_shell(call.name) else ""
        text = await self.context.truncate_output(text, kind, command)
        self.context_log.append(f"TOOL: {call.name} {format_args(call.input)}")
        self.context_log.append(f"RESULT: {text}")

    async def _call_step_llm(self, system: str, messages: List[Dict[str, Any]],
                             tools: List[Dict[str, Any]]) -> ToolStepResponse:
        """Step completion in a worker thread. Stream deltas are re-emitted as "stream" events, in order."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def _on_stream(ev: LLMStreamEvent) -> None:
            if ev.type in _FORWARDED_STREAM_EVENTS:
                loop.call_soon_threadsafe(queue.put_nowait, ev)

        async def _pump() -> None:
            while True:
                ev = await queue.get()
                if ev is None:
                    return
                await self._emit(AgentEvent(
                    type="stream", content=ev.text,
                    data={"kind": ev.type, "tool_call_id": ev.tool_call_id, "name": ev.name},
                ))

        pump = asyncio.ensure_future(_pump())
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self.llm.complete_with_tools, system, messages, tools, _on_stream),
                timeout=app_config.llm_call_timeout,
            )
        except BaseException:
            pump.cancel()
            raise
        # deltas were queued before the thread's result reached the loop
        queue.put_nowait(None)
        await pump
        return response

    async def _run_step(
        self,
        system_prompt: str,
        user_message: str,
        request_approval: Optional[ApprovalCallback] = None,
    ) -> StepOutcome:
        """Call the model with tools until it answers with text, bounded by max_tool_calls_per_step."""
        messages: List[Dict[str, Any]] = [{"role": "user", "content": user_message}]
        tools = self.registry.schemas(self.mode, getattr(self.llm, "provider", "anthropic"))
        cap = max(1, self.settings.max_tool_calls_per_step)
        outcome = StepOutcome()

        for _ in range(cap):
            if self.cancelled:
                outcome.cancelled = True
                return outcome
            finished = await self._race_cancel(self._call_step_llm(system_prompt, messages, tools))
            if finished is None:
                outcome.cancelled = True
                return outcome
            try:
                response = finished.result()
            except Exception as e:
                outcome.error = AgentAPIError.from_exception(e)
                logger.error(f"Step LLM call failed: {outcome.error}")
                return outcome

            prompt_tokens = response.input_tokens or estimate_tokens(
                system_prompt + json.dumps(messages, default=str), self.llm.model_id)
            self.context.record_prompt_tokens(prompt_tokens, prompt_tokens + response.output_tokens)

            if not response.tool_calls:
                if response.text:
                    outcome.text = response.text
                    outcome.done = True
                    return outcome
                logger.warning("Model returned neither tool calls nor text; continuing")
                continue

            if response.text:
                await self._emit(AgentEvent(type="text", content=response.text))
            messages.append({"role": "assistant", "content": response.content_blocks()})

            result_blocks: List[Dict[str, Any]] = []
            for call in response.tool_calls:
                if self.cancelled:
                    outcome.cancelled = True
                    return outcome
                await self._emit(AgentEvent(
                    type="tool_call", content=call.name,
                    data={"tool_use_id": call.id, "input": call.input},
                ))
                start = time.time()
                result = await self._dispatch_tool_call(call, request_approval)
                outcome.tool_results.append((call, result))
                await self._log_tool_result(call, result)
                await self._emit(AgentEvent(
                    type="tool_result",
                    content=result.output if result.success else (result.error or ""),
                    data={
                        "tool_name": call.name,
                        "tool_use_id": call.id,
                        "success": result.success,
                        "duration": round(time.time() - start, 2),
                        "file_change": result.file_change.to_dict() if result.file_change else None,
                    },
                ))
                if call.name == "plan_and_track":
                    await self._emit_checklist()
                result_blocks.append({
                    "type": "tool_result",
                    "tool_use_id": call.id,
                    "content": result.as_text(),
                    "is_error": not result.success,
                })
            messages.append({"role": "user", "content": result_blocks})

        outcome.text = (
            f"Reached maximum tool calls per step ({cap}). The agent made too many consecutive "
            "tool calls without completing. Consider breaking down the task or being more specific."
        )
        outcome.done = True
        outcome.hit_cap = True
        logger.warning(f"Tool loop hit the cap of {cap} calls")
        return outcome
