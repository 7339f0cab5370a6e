"""
End-to-end tests for AgentOrchestrator driven by a scripted model.
"""

import asyncio
import json
import threading

from backend import LocalBackend
from bedrock_service import BedrockError, BedrockToolsNotSupportedError
from config import AgentSettings
from llm_client import ScriptedLLMClient, ToolCall
from orchestrator import AgentMode, AgentOrchestrator, AgentProfile, PhaseKind, REJECTED_MESSAGE, TaskStatus
from orchestrator.context import SUMMARY_HEADER
from sessions import SessionStore
from tools import FileLockCoordinator, ToolRegistry, ToolResult
from tools.locks import LockOutcome
from tools.schemas import TOOL_DEFINITIONS_BY_NAME

step = ScriptedLLMClient.tool_step


class Decider:
    """Answers one-shot decision prompts by kind; verification verdicts are consumed in order."""

    def __init__(self, verdicts=(), stuck="{}", reflection="{}", summary="Read the project files.",
                 on_verify=None):
        self.verdicts = list(verdicts)
        self.stuck = stuck
        self.reflection = reflection
        self.summary = summary
        self.on_verify = on_verify
        self.seen = []
        self.step_calls_at_summary = []
        self.llm = None

    def __call__(self, system, user):
        if user.startswith("The agent believes the work is complete"):
            self.seen.append("verify")
            if self.on_verify is not None:
                self.on_verify()
            done = self.verdicts.pop(0) if self.verdicts else True
            return json.dumps({"done": done, "reason": "goal met" if done else "checklist items remain"})
        if user.startswith("Summarize the following agent execution context"):
            self.seen.append("summarize")
            if self.llm is not None:
                self.step_calls_at_summary.append(len(self.llm.step_calls))
            return self.summary
        if user.startswith("The agent appears stuck"):
            self.seen.append("stuck")
            return self.stuck
        if user.startswith("Reflect on progress"):
            self.seen.append("reflect")
            return self.reflection
        self.seen.append("other")
        return "{}"


class Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    def of(self, kind):
        return [e for e in self.events if e.type == kind]


def _llm(steps, decider=None):
    decider = decider or Decider()
    llm = ScriptedLLMClient(step_responses=steps, text_handler=decider)
    decider.llm = llm
    return llm


def _orchestrator(tmp_path, llm, mode=AgentMode.PILOT, registry=None, locks=None, session_store=None,
                  **overrides):
    options = dict(enable_reflection=False, max_fix_attempts=4, file_lock_timeout=5)
    options.update(overrides)
    orch = AgentOrchestrator(
        llm,
        registry=registry,
        locks=locks,
        settings=AgentSettings(**options),
        working_directory=str(tmp_path),
        mode=mode,
        profile=AgentProfile.GENERAL,
        session_store=session_store,
    )
    orch.phases.strict = True
    orch.decisions.retry_delay = 0
    return orch


def _edit(call_id, old, new, path="app.py"):
    return ToolCall(id=call_id, name="edit_file", input={"path": path, "old_text": old, "new_text": new})


def test_health_endpoint_scenario(tmp_path):
    (tmp_path / "app.py").write_text("# routes\n# handlers\n")
    snapshots = []
    decider = Decider(verdicts=[False, False, False, True])
    llm = _llm([
        step(_edit("t1", "# routes", "# routes\napp.add_route('/health', health)")),
        "Route added.",
        step(_edit("t2", "# handlers", "# handlers\ndef health():\n    return {'status': 'ok'}")),
        "Handler added.",
        step(ToolCall(id="t3", name="shell", input={"command": "echo '1 failed' && exit 1"})),
        "The health test is failing.",
        "The endpoint works; the failing test is unrelated.",
    ], decider)
    orch = _orchestrator(tmp_path, llm)
    decider.on_verify = lambda: snapshots.append([i.status for i in orch.checklist.items])
    orch.set_checklist("add a health endpoint", ["add route", "add handler", "write test"])
    recorder = Recorder()

    result = asyncio.run(orch.run("add a health endpoint", on_event=recorder))

    done, pending, active = TaskStatus.COMPLETED, TaskStatus.PENDING, TaskStatus.IN_PROGRESS
    assert snapshots == [
        [done, pending, pending],
        [done, done, pending],
        [done, done, active],
        [done, done, active],
    ]
    assert result.phase.kind is PhaseKind.COMPLETED
    assert result.final_text == "The endpoint works; the failing test is unrelated."
    assert result.caveat is None and result.error is None
    assert result.iterations == 4

    kinds = orch.phases.kinds()
    assert kinds[:2] == [PhaseKind.IDLE, PhaseKind.STARTING]
    assert kinds[-1] is PhaseKind.COMPLETED
    assert PhaseKind.CANCELLED not in kinds

    for event in recorder.of("checklist"):
        statuses = [item["status"] for item in event.data["items"]]
        assert statuses.count("in_progress") <= 1

    failed = [e for e in recorder.of("tool_result") if not e.data["success"]]
    assert [e.data["tool_name"] for e in failed] == ["shell"]
    assert any(entry.startswith("VERIFY: checklist items remain") for entry in orch.context_log)
    assert recorder.of("done")[0].data["phase"] == "completed"

    # The run left one checkpoint; rolling back restores the original file
    assert len(orch.checkpoints.checkpoints) == 1
    assert orch.messages[-1] == {"role": "assistant", "content": result.final_text}
    rollback = orch.rollback_to(orch.checkpoints.checkpoints[0])
    assert rollback.success
    assert (tmp_path / "app.py").read_text() == "# routes\n# handlers\n"
    assert orch.messages == [{"role": "user", "content": "add a health endpoint"}]


def test_context_summarized_before_next_call_at_32k(tmp_path):
    lines = "".join(f"{i:03d} " + "x" * 38 + "\n" for i in range(100))
    (tmp_path / "big.py").write_text(lines)
    reads = [ToolCall(id=f"r{i}", name="read_file", input={"path": "big.py"}) for i in range(26)]
    decider = Decider(verdicts=[False, True])
    llm = _llm([step(*reads), "Read everything.", "Done."], decider)
    orch = _orchestrator(tmp_path, llm)
    orch.set_checklist("understand big.py", ["read big.py"])
    assert orch.context.effective_limit == 32_000

    seen = {}

    async def on_event(event):
        if event.type == "verification":
            seen["before"] = orch.context.accumulated_context_tokens
            seen["needs"] = orch.context.needs_summarization(orch.context_log, orch.goal)
        elif event.type == "context_summarized":
            seen["after"] = orch.context.accumulated_context_tokens
            seen["log_entries"] = len(orch.context_log)

    result = asyncio.run(orch.run("understand big.py", on_event=on_event))

    assert result.phase.kind is PhaseKind.COMPLETED
    assert seen["needs"] is True
    assert seen["before"] > 0
    assert seen["after"] == 0
    assert seen["log_entries"] == 1
    assert orch.context.summarization_count == 1
    # Summarized after the two calls of iteration 1 and before the next step call
    assert decider.step_calls_at_summary == [2]
    third_prompt = llm.step_calls[2]["messages"][0]["content"]
    assert SUMMARY_HEADER in third_prompt
    assert "Read the project files." in third_prompt


def test_cancel_releases_locks_for_other_sessions(tmp_path):
    entered = threading.Event()
    release = threading.Event()

    def blocking_write(path, content, backend=None, **kw):
        entered.set()
        release.wait(5)
        return ToolResult(success=True, output=f"wrote {path}")

    registry = ToolRegistry.default()
    registry.register("write_file", blocking_write, TOOL_DEFINITIONS_BY_NAME["write_file"])
    locks = FileLockCoordinator()
    shared = str(tmp_path / "shared.py")

    first_llm = _llm([step(ToolCall(id="a1", name="write_file", input={"path": "shared.py", "content": "a"})),
                      "A done."])
    first = _orchestrator(tmp_path, first_llm, registry=registry, locks=locks)
    second_llm = _llm([step(ToolCall(id="b1", name="write_file", input={"path": "shared.py", "content": "b"})),
                       "B done."])
    second = _orchestrator(tmp_path, second_llm, locks=locks, file_lock_timeout=0.05)

    async def scenario():
        task = asyncio.ensure_future(first.run("write shared.py"))
        assert await asyncio.to_thread(entered.wait, 5)
        assert locks.holder(shared) == first.session_id

        first.cancel()
        assert locks.holder(shared) is None
        assert await locks.acquire("other-session", shared, timeout=0.01) is LockOutcome.ACQUIRED
        locks.release("other-session", shared)

        recorder = Recorder()
        second_result = await second.run("write shared.py", on_event=recorder)
        release.set()
        first_result = await task
        return first_result, second_result, recorder

    first_result, second_result, recorder = asyncio.run(scenario())

    assert first_result.cancelled
    assert first.phases.kinds()[-1] is PhaseKind.CANCELLED
    assert len(first_llm.step_calls) == 1
    assert second_result.phase.kind is PhaseKind.COMPLETED
    assert recorder.of("waiting_for_lock") == []
    assert [e.data["success"] for e in recorder.of("tool_result")] == [True]
    assert (tmp_path / "shared.py").read_text() == "b"
    assert locks.locked_paths() == []


def test_cancel_during_approval_wait(tmp_path):
    (tmp_path / "a.txt").write_text("before")

    async def never_answer(name, description, tool_input):
        await asyncio.Event().wait()

    llm = _llm([step(_edit("e1", "before", "after", path="a.txt")), "Edited."])
    orch = _orchestrator(tmp_path, llm, require_file_edit_approval=True)

    async def scenario():
        task = asyncio.ensure_future(orch.run("edit a.txt", request_approval=never_answer))

        async def wait_for_gate():
            while orch.phase.kind is not PhaseKind.WAITING_FOR_APPROVAL:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(wait_for_gate(), 5)
        orch.cancel()
        return await asyncio.wait_for(task, 5)

    result = asyncio.run(scenario())
    assert result.cancelled
    assert (tmp_path / "a.txt").read_text() == "before"
    assert len(llm.step_calls) == 1
    assert not orch.is_running


def test_rejected_approval_is_reported_to_model(tmp_path):
    (tmp_path / "a.txt").write_text("before")
    asked = []

    async def reject(name, description, tool_input):
        asked.append(description)
        return False

    llm = _llm([step(_edit("e1", "before", "after", path="a.txt")), "Okay, leaving it."])
    orch = _orchestrator(tmp_path, llm, require_file_edit_approval=True)
    recorder = Recorder()
    result = asyncio.run(orch.run("edit a.txt", on_event=recorder, request_approval=reject))

    assert result.phase.kind is PhaseKind.COMPLETED
    assert asked == ["Edit a.txt: replace string"]
    assert (tmp_path / "a.txt").read_text() == "before"
    assert recorder.of("tool_rejected")[0].content == "edit_file"
    tool_result_block = llm.step_calls[1]["messages"][-1]["content"][0]
    assert tool_result_block["is_error"] is True
    assert REJECTED_MESSAGE in tool_result_block["content"]
    assert PhaseKind.WAITING_FOR_APPROVAL in orch.phases.kinds()


def test_approval_timeout_counts_as_rejection(tmp_path):
    (tmp_path / "a.txt").write_text("before")

    async def slow(name, description, tool_input):
        await asyncio.sleep(5)
        return True

    llm = _llm([step(_edit("e1", "before", "after", path="a.txt")), "Gave up."])
    orch = _orchestrator(tmp_path, llm, require_file_edit_approval=True, approval_timeout=0.05)
    result = asyncio.run(orch.run("edit a.txt", request_approval=slow))
    assert result.phase.kind is PhaseKind.COMPLETED
    assert (tmp_path / "a.txt").read_text() == "before"


def test_provider_error_ends_completed_with_error(tmp_path):
    llm = _llm([BedrockToolsNotSupportedError("Model rejected the tools parameter.", "ValidationException")])
    orch = _orchestrator(tmp_path, llm)
    recorder = Recorder()
    result = asyncio.run(orch.run("do something", on_event=recorder))

    assert result.phase.kind is PhaseKind.COMPLETED
    assert "supports tool calling" in result.error
    assert result.final_text == result.error
    error_event = recorder.of("error")[0]
    assert error_event.data["kind"] == "tools_not_supported"
    assert error_event.data["recovery"] == "switch_model"
    assert error_event.data["transient"] is False
    assert orch.context_log[-1].startswith("ERROR: Agent mode is not available")


def test_context_length_error_summarizes_and_retries(tmp_path):
    decider = Decider()
    llm = _llm([BedrockError("Input is too long", "ContextLengthExceeded"), "Done after retry."], decider)
    orch = _orchestrator(tmp_path, llm)
    result = asyncio.run(orch.run("summarize the repo"))
    assert result.error is None
    assert result.final_text == "Done after retry."
    assert orch.context.summarization_count == 1
    assert len(llm.step_calls) == 2


def test_capability_gate_blocks_shell_in_copilot(tmp_path):
    llm = _llm([step(ToolCall(id="s1", name="shell", input={"command": "ls"})), "Could not run ls."])
    orch = _orchestrator(tmp_path, llm, mode=AgentMode.COPILOT)
    recorder = Recorder()
    asyncio.run(orch.run("list files", on_event=recorder))

    assert "shell" not in llm.step_calls[0]["tools"]
    assert "write_file" in llm.step_calls[0]["tools"]
    result_event = recorder.of("tool_result")[0]
    assert result_event.data["success"] is False
    assert result_event.content == "Tool 'shell' is not available in copilot mode"
    assert "TOOL ERROR: Tool 'shell' is not available in copilot mode" in orch.context_log


def test_feedback_is_applied_at_next_iteration(tmp_path):
    decider = Decider(verdicts=[False, True])
    llm = _llm(["First pass.", "Second pass."], decider)
    orch = _orchestrator(tmp_path, llm)
    orch.set_checklist("configure server", ["set port"])
    assert orch.queue_feedback("ignored while idle") is False

    async def on_event(event):
        if event.type == "verification":
            assert orch.queue_feedback("use port 8080")

    recorder = Recorder()

    async def both(event):
        await on_event(event)
        await recorder(event)

    asyncio.run(orch.run("configure server", on_event=both))

    assert "USER FEEDBACK (received during execution): use port 8080" in orch.context_log
    assert recorder.of("feedback_applied")[0].content == "use port 8080"
    assert "use port 8080" in llm.step_calls[1]["messages"][0]["content"]
    assert "use port 8080" not in llm.step_calls[0]["messages"][0]["content"]


def test_fix_attempts_exhausted_adds_caveat(tmp_path):
    decider = Decider(verdicts=[False, False, False])
    llm = _llm(["Attempt one.", "Attempt two."], decider)
    orch = _orchestrator(tmp_path, llm, max_fix_attempts=1)
    orch.set_checklist("g", ["a", "b"])
    result = asyncio.run(orch.run("g"))
    assert result.phase.kind is PhaseKind.COMPLETED
    assert result.caveat.startswith("Checklist still open after 1 fix attempts")
    assert decider.seen.count("verify") == 2


def test_iteration_cap(tmp_path):
    decider = Decider(verdicts=[False] * 5)
    llm = _llm(["one", "two", "three"], decider)
    orch = _orchestrator(tmp_path, llm, max_iterations=2, max_fix_attempts=10)
    orch.set_checklist("g", ["a"])
    result = asyncio.run(orch.run("g"))
    assert result.phase.kind is PhaseKind.COMPLETED
    assert result.caveat == "Reached maximum iterations (2)"
    assert result.iterations == 2
    assert len(llm.step_calls) == 2


def test_tool_call_cap_ends_step(tmp_path):
    looping = [step(ToolCall(id=f"l{i}", name="list_dir", input={"path": "."})) for i in range(5)]
    llm = _llm(looping)
    orch = _orchestrator(tmp_path, llm, max_tool_calls_per_step=3)
    result = asyncio.run(orch.run("look around"))
    assert result.phase.kind is PhaseKind.COMPLETED
    assert result.final_text.startswith("Reached maximum tool calls per step (3)")
    assert result.caveat == "Stopped at the per-step tool call limit"
    assert len(llm.step_calls) == 3


def test_stuck_loop_stops_run(tmp_path):
    decider = Decider(verdicts=[False], stuck='{"is_stuck": true, "should_stop": true}')
    commands = [ToolCall(id=f"c{i}", name="shell", input={"command": "true"}) for i in range(3)]
    llm = _llm([step(*commands), "Still trying."], decider)
    orch = _orchestrator(tmp_path, llm)
    orch.set_checklist("g", ["make it pass"])
    recorder = Recorder()
    result = asyncio.run(orch.run("g", on_event=recorder))
    assert result.phase.kind is PhaseKind.COMPLETED
    assert result.caveat == "Stopped after repeated commands without progress"
    assert "stuck" in decider.seen
    assert recorder.of("stuck")[0].data["commands"] == ["true", "true", "true"]


def test_stuck_recovery_resets_window(tmp_path):
    decider = Decider(verdicts=[False, True],
                      stuck='{"is_stuck": true, "new_approach": "read the test file first", "should_stop": false}')
    commands = [ToolCall(id=f"c{i}", name="shell", input={"command": "true"}) for i in range(3)]
    llm = _llm([step(*commands), "Still trying.", "Fixed."], decider)
    orch = _orchestrator(tmp_path, llm)
    orch.set_checklist("g", ["make it pass"])
    result = asyncio.run(orch.run("g"))
    assert result.final_text == "Fixed."
    assert "STUCK RECOVERY - NEW APPROACH: read the test file first" in orch.context_log
    assert orch.stuck.last_commands() == []


def test_reflection_adjusts_strategy(tmp_path):
    decider = Decider(
        verdicts=[False, True],
        reflection='{"progress_percent": 50, "on_track": false, "should_adjust": true, '
                   '"new_approach": "write the test first"}',
    )
    llm = _llm(["First.", "Second."], decider)
    orch = _orchestrator(tmp_path, llm, enable_reflection=True, reflection_interval=2)
    orch.set_checklist("g", ["a"])
    recorder = Recorder()
    asyncio.run(orch.run("g", on_event=recorder))
    assert decider.seen.count("reflect") == 1
    assert "STRATEGY ADJUSTMENT: write the test first" in orch.context_log
    assert recorder.of("reflection")[0].data == {"progress_percent": 50, "on_track": False}
    assert PhaseKind.REFLECTING in orch.phases.kinds()


def test_auto_profile_switches_on_new_task(tmp_path):
    def decide(system, user):
        if user.startswith("Analyze the current work"):
            return '{"suggested_profile": "testing", "reason": "writing tests", "confidence": "high"}'
        return "{}"

    llm = ScriptedLLMClient(step_responses=["Tests written."], text_handler=decide)
    orch = AgentOrchestrator(llm, settings=AgentSettings(enable_reflection=False),
                             working_directory=str(tmp_path), profile=AgentProfile.AUTO)
    recorder = Recorder()
    asyncio.run(orch.run("add tests for the parser", on_event=recorder))
    assert orch.profile is AgentProfile.TESTING
    assert recorder.of("profile_switch")[0].data["to"] == "testing"
    assert AgentProfile.TESTING.system_prompt_addition(AgentMode.PILOT) in llm.step_calls[0]["system"]


def test_session_saved_and_restored(tmp_path):
    work = tmp_path / "work"
    work.mkdir()
    store = SessionStore(str(tmp_path / "sessions"), debounce_seconds=0)
    llm = _llm([step(ToolCall(id="w1", name="write_file", input={"path": "notes.md", "content": "# Notes\n"})),
                "Notes created."])
    orch = _orchestrator(work, llm, session_store=store)
    asyncio.run(orch.run("create notes"))

    saved = store.load(orch.session_id)
    assert saved.title == "create notes"
    assert [m["role"] for m in saved.messages] == ["user", "assistant"]
    assert len(saved.checkpoints["checkpoints"]) == 1

    restored = _orchestrator(work, _llm([]), session_store=store)
    restored.restore_session(saved)
    assert restored.session_id == orch.session_id
    assert restored.messages == orch.messages
    result = restored.rollback_to(restored.checkpoints.checkpoints[0])
    assert result.success
    assert not (work / "notes.md").exists()


def test_use_plan_seeds_checklist(tmp_path):
    orch = _orchestrator(tmp_path, _llm([]))
    count = orch.use_plan("Health endpoint", "## Plan\n- [ ] add route\n- [ ] add handler\n- [x] old item\n")
    assert count == 3
    assert [i.description for i in orch.checklist.items] == ["add route", "add handler", "old item"]
    assert [i.status for i in orch.checklist.items] == [TaskStatus.PENDING, TaskStatus.PENDING, TaskStatus.COMPLETED]
    assert orch.checklist.goal_description == "Health endpoint"


def test_run_rejects_empty_goal_and_concurrent_runs(tmp_path):
    orch = _orchestrator(tmp_path, _llm([]))

    async def scenario():
        try:
            await orch.run("   ")
        except ValueError:
            pass
        else:
            raise AssertionError("empty goal accepted")
        orch._running = True
        try:
            await orch.run("x")
        except RuntimeError as e:
            return str(e)
        finally:
            orch._running = False

    assert asyncio.run(scenario()) == "A run is already in progress"


def test_backend_is_injected(tmp_path):
    backend = LocalBackend(str(tmp_path))
    orch = AgentOrchestrator(_llm([]), backend=backend)
    assert orch.backend is backend
    assert orch.working_directory == str(tmp_path)


def test_runs_on_successive_event_loops(tmp_path):
    llm = _llm(["first answer", "second answer"])
    orch = _orchestrator(tmp_path, llm, max_iterations=5)

    first = asyncio.run(orch.run("first goal"))
    second = asyncio.run(orch.run("second goal"))

    assert (first.final_text, first.iterations) == ("first answer", 1)
    assert (second.final_text, second.iterations) == ("second answer", 1)
    assert second.phase.kind is PhaseKind.COMPLETED
    assert second.caveat is None
    assert len(llm.step_calls) == 2


def test_memory_and_recent_outputs_reset_between_runs(tmp_path):
    llm = _llm([
        step(ToolCall(id="m1", name="memory", input={"action": "save", "key": "port", "value": "8080"})),
        "Saved the port.",
        step(ToolCall(id="m2", name="memory", input={"action": "recall", "key": "port"})),
        "No port on record.",
    ])
    orch = _orchestrator(tmp_path, llm)
    asyncio.run(orch.run("remember the port"))
    assert orch.tool_context.memory == {"port": "8080"}
    orch.tool_context.remember_output("ls", "app.py")

    recorder = Recorder()
    asyncio.run(orch.run("which port did we pick?", on_event=recorder))

    assert recorder.of("tool_result")[0].content == "No value stored for 'port'"
    assert orch.tool_context.memory == {}
    assert orch.tool_context.recent_outputs == []


def test_stream_deltas_are_emitted_before_the_answer(tmp_path):
    llm = ScriptedLLMClient(
        step_responses=[step(ToolCall(id="r1", name="list_dir", input={"path": "."})), "All files listed."],
        text_handler=Decider(),
        stream_chunk_size=4,
    )
    orch = _orchestrator(tmp_path, llm)
    recorder = Recorder()
    asyncio.run(orch.run("list the files", on_event=recorder))

    streams = recorder.of("stream")
    deltas = [e.content for e in streams if e.data["kind"] == "text_delta"]
    assert len(deltas) > 1
    assert "".join(deltas) == "All files listed."
    starts = [e for e in streams if e.data["kind"] == "tool_call_start"]
    assert [(e.data["name"], e.data["tool_call_id"]) for e in starts] == [("list_dir", "r1")]

    positions = {id(e): i for i, e in enumerate(recorder.events)}
    answer = [e for e in recorder.of("text") if e.content == "All files listed."][0]
    tool_call = recorder.of("tool_call")[0]
    assert positions[id(starts[0])] < positions[id(tool_call)]
    assert max(positions[id(e)] for e in streams) < positions[id(answer)]
