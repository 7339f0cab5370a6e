"""
Tests for one-shot decision prompts and provider error classification.
"""

import asyncio

from bedrock_service import BedrockError, BedrockToolsNotSupportedError
from llm_client import ScriptedLLMClient
from orchestrator.decisions import DecisionCaller, extract_json_object, parse_decision
from orchestrator.errors import AgentAPIError, ErrorKind


def test_extract_json_from_fenced_reply():
    text = 'Sure!\n```json\n{"done": true, "reason": "all {tests} pass"}\n```\nAnything else?'
    assert extract_json_object(text) == '{"done": true, "reason": "all {tests} pass"}'


def test_parse_lenient_types():
    resp = parse_decision('{"done": "false", "progress_percent": "40%", "plan": ["a", null, "b"], "on_track": 1}')
    assert resp.done is False
    assert resp.progress_percent == 40
    assert resp.plan == ["a", "b"]
    # Non-boolean values are "no signal"
    assert resp.on_track is None


def test_parse_garbage_is_empty():
    resp = parse_decision("I think the work is done.")
    assert resp.done is None
    assert not resp.has_content
    assert resp.raw == "I think the work is done."


def test_error_reply_is_flagged():
    assert parse_decision('{"error": "overloaded"}').is_error
    assert parse_decision("{}").is_error
    assert not parse_decision('{"done": true}').is_error


def test_call_json_reports_provider_failure():
    llm = ScriptedLLMClient(text_responses=[RuntimeError("network down")])
    resp = asyncio.run(DecisionCaller(llm).call_json("prompt"))
    assert resp.error == "network down"
    assert resp.done is None


def test_retry_until_content():
    llm = ScriptedLLMClient(text_responses=["", "not json", '{"done": true, "reason": "ok"}'])
    caller = DecisionCaller(llm, max_retries=3, retry_delay=0)
    resp = asyncio.run(caller.call_json_with_retry("verify"))
    assert resp.done is True
    assert resp.reason == "ok"
    assert len(llm.text_calls) == 3


def test_retry_exhaustion_returns_last_reply():
    llm = ScriptedLLMClient(text_responses=["", "", ""], text_handler=lambda s, u: '{"done": true}')
    caller = DecisionCaller(llm, max_retries=2, retry_delay=0)
    resp = asyncio.run(caller.call_json_with_retry("verify"))
    assert resp.done is None
    assert len(llm.text_calls) == 2


def test_cancel_stops_retrying():
    async def scenario():
        cancel = asyncio.Event()
        llm = ScriptedLLMClient(text_handler=lambda s, u: "")
        caller = DecisionCaller(llm, cancel_event=cancel, max_retries=5, retry_delay=10)
        task = asyncio.ensure_future(caller.call_json_with_retry("verify"))
        await asyncio.sleep(0.05)
        cancel.set()
        resp = await asyncio.wait_for(task, timeout=2)
        return resp, len(llm.text_calls)

    resp, calls = asyncio.run(scenario())
    assert resp.done is None
    assert calls == 1


def test_prompt_tokens_are_reported():
    seen = []
    llm = ScriptedLLMClient(text_responses=['{"done": false}'])
    caller = DecisionCaller(llm, on_prompt_tokens=seen.append, system_prompt="sys")
    asyncio.run(caller.call_json("x" * 97))
    # 100 characters at the default ratio of 3.8
    assert seen == [27]


def test_error_classification():
    assert AgentAPIError.from_exception(BedrockError("denied", "AccessDeniedException")).kind is ErrorKind.AUTH
    rate = AgentAPIError.from_exception(BedrockError("Rate limited, retry after 20 seconds", "ThrottlingException"))
    assert rate.kind is ErrorKind.RATE_LIMITED
    assert rate.retry_after == 20.0
    assert rate.is_transient
    assert AgentAPIError.from_exception(
        BedrockError("too long", "ContextLengthExceeded")).recovery_strategy.kind == "reduce_context"
    assert AgentAPIError.from_exception(ConnectionResetError("reset")).kind is ErrorKind.NETWORK
    assert AgentAPIError.from_exception(asyncio.TimeoutError()).kind is ErrorKind.TIMEOUT


def test_tools_not_supported_message():
    err = AgentAPIError.from_exception(BedrockToolsNotSupportedError("Model X rejected tools.", "ValidationException"))
    assert err.kind is ErrorKind.TOOLS_NOT_SUPPORTED
    assert "supports tool calling" in err.user_message
    assert not err.is_transient
