"""
Tests for agent modes and profile selection.
"""

import asyncio

from llm_client import ScriptedLLMClient
from orchestrator.decisions import DecisionCaller
from orchestrator.profiles import AgentMode, AgentProfile, ProfileSelector


def _selector(replies, selected=AgentProfile.AUTO):
    llm = ScriptedLLMClient(text_responses=list(replies))
    events = []

    async def on_event(event):
        events.append(event)

    log = []
    return ProfileSelector(selected, DecisionCaller(llm), log, on_event=on_event), log, events


def test_mode_capabilities():
    assert AgentMode.PILOT.can_execute_shell and AgentMode.PILOT.can_write_files
    assert AgentMode.COPILOT.can_write_files and not AgentMode.COPILOT.can_execute_shell
    assert AgentMode.NAVIGATOR.can_create_plans and AgentMode.NAVIGATOR.is_read_only
    assert AgentMode.SCOUT.is_read_only and not AgentMode.SCOUT.can_create_plans
    assert AgentMode.from_string(" Pilot ") is AgentMode.PILOT
    assert AgentMode.from_string("autopilot") is None


def test_profile_aliases():
    assert AgentProfile.from_string("codeReview") is AgentProfile.CODE_REVIEW
    assert AgentProfile.from_string("product-management") is AgentProfile.PRODUCT_MANAGEMENT
    assert AgentProfile.from_string("debug") is AgentProfile.DEBUGGING
    assert AgentProfile.from_string("wizard") is None
    assert AgentProfile.AUTO not in AgentProfile.specializable()
    assert AgentProfile.GENERAL not in AgentProfile.specializable()


def test_auto_starts_general_and_switches():
    selector, log, events = _selector(['{"suggested_profile": "debugging", "reason": "stack trace", "confidence": "high"}'])
    assert selector.active is AgentProfile.GENERAL
    switched = asyncio.run(selector.reevaluate("fix the crash on startup"))
    assert switched
    assert selector.active is AgentProfile.DEBUGGING
    assert log == ["PROFILE SWITCH: general → debugging (stack trace)"]
    assert events[0].type == "profile_switch"
    assert events[0].data == {"from": "general", "to": "debugging", "reason": "stack trace"}


def test_low_confidence_keeps_profile():
    selector, log, events = _selector(['{"suggested_profile": "security", "confidence": "low"}'])
    assert not asyncio.run(selector.reevaluate("review auth"))
    assert selector.active is AgentProfile.GENERAL
    assert log == [] and events == []


def test_unparseable_reply_keeps_profile():
    selector, _, _ = _selector(["no idea"])
    assert not asyncio.run(selector.reevaluate("anything"))
    assert selector.active is AgentProfile.GENERAL


def test_fixed_profile_never_analyzes():
    selector, _, _ = _selector([], selected=AgentProfile.TESTING)
    assert selector.active is AgentProfile.TESTING
    assert not asyncio.run(selector.reevaluate("write tests"))
    assert not asyncio.run(selector.switch_if_needed(AgentProfile.CODING, "x"))
    assert selector.decisions.llm.text_calls == []


def test_reset_returns_to_general():
    selector, _, _ = _selector(['{"suggested_profile": "devops", "confidence": "medium"}'])
    asyncio.run(selector.reevaluate("set up CI"))
    assert selector.active is AgentProfile.DEVOPS
    selector.reset()
    assert selector.active is AgentProfile.GENERAL


def test_profile_prompts_differ_by_mode():
    read_only = AgentProfile.CODING.system_prompt_addition(AgentMode.SCOUT)
    writable = AgentProfile.CODING.system_prompt_addition(AgentMode.PILOT)
    assert read_only and writable
    assert AgentProfile.AUTO.reflection_prompt(AgentMode.PILOT) == AgentProfile.GENERAL.reflection_prompt(AgentMode.PILOT)
