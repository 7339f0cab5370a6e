"""
Tests for context window budgeting and summarization.
"""

import asyncio

from config import AgentSettings
from orchestrator.context import RECENT_HEADER, SUMMARY_HEADER, ContextWindowManager, heuristic_summary
from orchestrator.truncation import ContentKind


def _manager(summarizer=None, **overrides):
    settings = AgentSettings(**overrides)
    return ContextWindowManager("scripted-model", settings, summarizer=summarizer)


def _big_log(entries=40, size=3000):
    return [f"RESULT: {i} " + "x" * size for i in range(entries)]


def test_limits_for_unknown_model():
    manager = _manager()
    assert manager.effective_limit == 32_000
    assert manager.token_threshold == 30_400
    assert manager.output_capture_limit == 19_200
    assert manager.agent_memory_limit == 51_200


def test_override_limit():
    manager = _manager(context_limit_override=100_000)
    assert manager.effective_limit == 100_000
    assert manager.token_threshold == 95_000


def test_high_water_mark():
    manager = _manager()
    manager.record_prompt_tokens(1000, 1200)
    manager.record_prompt_tokens(800, 900)
    assert manager.accumulated_context_tokens == 1000
    assert manager.session_tokens_used == 2100
    manager.reset()
    assert manager.accumulated_context_tokens == 0


def test_under_threshold_is_unchanged():
    manager = _manager()
    log = ["TOOL: read_file {}", "RESULT: hello"]
    assert not manager.needs_summarization(log)
    assert asyncio.run(manager.summarize(log)) == "TOOL: read_file {}\nRESULT: hello"
    assert manager.summarization_count == 0


def test_summarize_keeps_recent_entries_and_resets_tokens():
    prompts = []

    async def summarizer(prompt):
        prompts.append(prompt)
        manager.record_prompt_tokens(29_000)
        return "Edited app.py; tests were failing."

    manager = _manager(summarizer)
    manager.record_prompt_tokens(31_000)
    log = _big_log()
    assert manager.needs_summarization(log)

    assert asyncio.run(manager.compact(log))
    assert len(log) == 1
    text = log[0]
    assert text.startswith(f"{SUMMARY_HEADER}\nEdited app.py; tests were failing.")
    recent = text.split(f"{RECENT_HEADER}\n", 1)[1].split("\n")
    assert [entry.split(" ")[1] for entry in recent] == [str(i) for i in range(30, 40)]
    assert manager.accumulated_context_tokens == 0
    assert manager.summarization_count == 1
    assert manager.last_summarization_at is not None
    # Older text handed to the model is clipped to half the character budget
    assert len(prompts) == 1
    assert "RESULT: 29 " not in prompts[0]

    # A summarized log is below threshold, so a second pass leaves it alone
    assert not asyncio.run(manager.compact(log))
    assert manager.summarization_count == 1


def test_failed_summarizer_falls_back_to_heuristic():
    async def summarizer(prompt):
        raise RuntimeError("throttled")

    manager = _manager(summarizer)
    log = ["TOOL: shell {\"command\": \"npm test\"}", "RESULT: ERROR: 3 tests failed"] + _big_log()
    asyncio.run(manager.compact(log))
    assert "42 earlier entries" not in log[0]
    assert "32 earlier entries: 1 tool calls, 1 shell commands." in log[0]
    assert "RESULT: ERROR: 3 tests failed" in log[0]


def test_heuristic_summary_lists_milestones():
    summary = heuristic_summary([
        "TASK STARTED: #1 - add route",
        "TOOL: edit_file {}",
        "RESULT: Traceback (most recent call last):",
        "VERIFY: handler missing",
    ])
    assert summary.startswith("4 earlier entries: 1 tool calls, 0 shell commands.")
    assert "- RESULT: Traceback (most recent call last):" in summary
    assert "- TASK STARTED: #1 - add route" in summary
    assert "- VERIFY: handler missing" in summary


def test_truncate_output_uses_summarizer_for_command_output():
    async def summarizer(prompt):
        return "2 tests failed in test_api.py"

    manager = _manager(summarizer)
    output = "ok\n" * 15_000
    text = asyncio.run(manager.truncate_output(output, ContentKind.COMMAND_OUTPUT, "pytest"))
    assert text == f"[Output summarized from {len(output)} chars]\n2 tests failed in test_api.py"


def test_truncate_output_without_summarizer():
    manager = _manager()
    output = "A" * 30_000
    text = asyncio.run(manager.truncate_output(output, ContentKind.FILE_CONTENT))
    assert len(text) <= manager.output_capture_limit
    assert text.startswith("AAA")


def test_small_output_untouched():
    manager = _manager()
    assert asyncio.run(manager.truncate_output("short", ContentKind.COMMAND_OUTPUT)) == "short"
