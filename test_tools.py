"""
Tests for tool implementations, the registry capability gate and approval rules.
"""

from backend import LocalBackend
from config import AgentSettings
from orchestrator.checklist import TaskChecklist, TaskStatus
from orchestrator.profiles import AgentMode
from tools import ToolContext, ToolRegistry, execute_tool, needs_approval, mutated_path
from tools.dispatch import is_bookkeeping
from tools.planning_ops import extract_checklist_items


def _run(name, args, tmp_path, context=None):
    backend = LocalBackend(str(tmp_path))
    return execute_tool(name, args, str(tmp_path), backend, context=context)


def test_write_then_edit_reports_file_changes(tmp_path):
    created = _run("write_file", {"path": "app.py", "content": "def health():\n    return 'ok'\n"}, tmp_path)
    assert created.success
    assert created.file_change.operation == "create"
    assert created.output.startswith("Created 2 lines to app.py")

    edited = _run("edit_file", {"path": "app.py", "old_text": "'ok'", "new_text": "'healthy'"}, tmp_path)
    assert edited.success
    assert edited.file_change.operation == "modify"
    assert "+    return 'healthy'" in edited.file_change.diff
    assert (tmp_path / "app.py").read_text() == "def health():\n    return 'healthy'\n"


def test_edit_requires_unique_match(tmp_path):
    (tmp_path / "a.txt").write_text("x\nx\n")
    result = _run("edit_file", {"path": "a.txt", "old_text": "x", "new_text": "y"}, tmp_path)
    assert not result.success
    assert "Found 2 occurrences" in result.error
    result = _run("edit_file", {"path": "a.txt", "old_text": "x", "new_text": "y", "replace_all": True}, tmp_path)
    assert result.success
    assert (tmp_path / "a.txt").read_text() == "y\ny\n"


def test_read_file_numbers_lines_and_ranges(tmp_path):
    (tmp_path / "f.txt").write_text("one\ntwo\nthree\n")
    full = _run("read_file", {"path": "f.txt"}, tmp_path)
    assert full.output.splitlines()[0] == "[3 lines total]"
    assert "     2|two" in full.output
    part = _run("read_file", {"path": "f.txt", "start_line": 2, "end_line": 3}, tmp_path)
    assert part.output.startswith("[3 lines total] (showing lines 2-3)")
    assert "one" not in part.output


def test_paths_outside_working_directory_are_refused(tmp_path):
    result = _run("write_file", {"path": "../escape.txt", "content": "x"}, tmp_path)
    assert not result.success
    assert "escapes working directory" in result.error


def test_bad_arguments_become_error_results(tmp_path):
    result = _run("write_file", {"content": "no path"}, tmp_path)
    assert not result.success
    assert result.error.startswith("Invalid arguments for write_file")
    assert _run("nope", {}, tmp_path).error == "Unknown tool: nope"


def test_shell_failure_and_output_memory(tmp_path):
    context = ToolContext(settings=AgentSettings())
    ok = _run("shell", {"command": "echo hello"}, tmp_path, context)
    assert ok.success and ok.output.strip() == "hello"
    failed = _run("shell", {"command": "echo broken >&2; exit 3"}, tmp_path, context)
    assert not failed.success
    assert failed.error == "Command exited with code 3"
    assert failed.output.startswith("[exit code: 3]")

    found = _run("search_output", {"pattern": "brok"}, tmp_path, context)
    assert "broken" in found.output


def test_blocked_command_is_refused(tmp_path):
    context = ToolContext(settings=AgentSettings())
    result = _run("shell", {"command": "sudo rm -rf /"}, tmp_path, context)
    assert not result.success
    assert "blocked by safety policy" in result.error


def test_plan_and_track_drives_checklist(tmp_path):
    context = ToolContext(checklist=TaskChecklist())
    result = _run("plan_and_track", {"goal": "ship it", "tasks": ["build", "test"]}, tmp_path, context)
    assert result.success
    assert [i.description for i in context.checklist.items] == ["build", "test"]
    _run("plan_and_track", {"start_task": 2}, tmp_path, context)
    assert context.checklist.in_progress_item.id == 2
    _run("plan_and_track", {"complete_task": 2, "task_note": "green"}, tmp_path, context)
    assert context.checklist.items[1].status is TaskStatus.COMPLETED
    assert is_bookkeeping("plan_and_track", {"complete_task": 2})
    assert not is_bookkeeping("plan_and_track", {"goal": "x"})


def test_create_plan_requires_checklist(tmp_path):
    context = ToolContext(plans_dir=str(tmp_path / "plans"))
    bad = _run("create_plan", {"title": "Plan", "content": "just prose"}, tmp_path, context)
    assert not bad.success
    good = _run("create_plan", {"title": "Plan", "content": "## Steps\n- [ ] add route\n- [ ] add test"},
                tmp_path, context)
    assert good.success
    assert good.output.startswith("PLAN CREATED")
    assert len(list((tmp_path / "plans").iterdir())) == 1
    assert extract_checklist_items(next(iter(context.plans.values()))) == ["add route", "add test"]


def test_memory_tool(tmp_path):
    context = ToolContext()
    _run("memory", {"action": "save", "key": "port", "value": "8080"}, tmp_path, context)
    assert _run("memory", {"action": "recall", "key": "port"}, tmp_path, context).output == "8080"
    assert _run("memory", {"action": "list"}, tmp_path, context).output == "Stored keys: port"


def test_capability_gate_by_mode():
    registry = ToolRegistry.default()
    assert registry.is_available("shell", AgentMode.PILOT)
    assert not registry.is_available("shell", AgentMode.COPILOT)
    assert registry.is_available("write_file", AgentMode.COPILOT)
    assert not registry.is_available("write_file", AgentMode.NAVIGATOR)
    assert registry.is_available("create_plan", AgentMode.NAVIGATOR)
    assert not registry.is_available("create_plan", AgentMode.SCOUT)
    assert registry.is_available("http_request", AgentMode.SCOUT, {"url": "http://x", "method": "GET"})
    assert not registry.is_available("http_request", AgentMode.SCOUT, {"url": "http://x", "method": "POST"})

    scout_tools = {s["name"] for s in registry.schemas(AgentMode.SCOUT)}
    assert "read_file" in scout_tools and "write_file" not in scout_tools
    openai = registry.schemas(AgentMode.SCOUT, provider="openai")
    assert all(s["type"] == "function" and "parameters" in s["function"] for s in openai)


def test_approval_rules():
    settings = AgentSettings(require_file_edit_approval=True, require_command_approval=False)
    assert needs_approval("edit_file", {}, settings)
    assert not needs_approval("shell", {}, settings)
    assert not needs_approval("read_file", {}, settings)
    assert not needs_approval("edit_file", {}, None)
    strict = AgentSettings(require_command_approval=True, auto_approve_read_only=False)
    assert needs_approval("shell", {}, strict)
    assert needs_approval("read_file", {}, strict)


def test_mutated_path():
    assert mutated_path("write_file", {"path": "a.py"}) == "a.py"
    assert mutated_path("read_file", {"path": "a.py"}) is None
    assert mutated_path("edit_file", {"path": "  "}) is None
