"""
LLM client interface used by the orchestrator.

The engine only needs two calls: a plain one-shot completion for decision
prompts, and a tool-enabled completion for the step loop. Providers implement
LLMClient; ScriptedLLMClient replays canned responses for tests and dry runs.
"""

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """A tool invocation requested by the model"""
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)

    def to_block(self) -> Dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolStepResponse:
    """Result of one tool-enabled completion"""
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)
    stop_reason: Optional[str] = None

    @property
    def input_tokens(self) -> int:
        return int(self.usage.get("input_tokens", 0) or 0)

    @property
    def output_tokens(self) -> int:
        return int(self.usage.get("output_tokens", 0) or 0)

    def content_blocks(self) -> List[Dict[str, Any]]:
        """Assistant message content in Messages API block form."""
        blocks: List[Dict[str, Any]] = []
        if self.text:
            blocks.append({"type": "text", "text": self.text})
        blocks.extend(tc.to_block() for tc in self.tool_calls)
        return blocks


@dataclass
class LLMStreamEvent:
    """Incremental event from a streaming tool-enabled completion.

    type: text_delta | tool_call_start | tool_call_delta | tool_call_end | usage | stop
    """
    type: str
    text: str = ""
    tool_call_id: str = ""
    name: str = ""
    usage: Dict[str, int] = field(default_factory=dict)
    stop_reason: Optional[str] = None


def assemble_stream(events: Iterable[LLMStreamEvent],
                    on_event: Optional[Callable[[LLMStreamEvent], None]] = None) -> ToolStepResponse:
    """Fold a stream of LLMStreamEvents into a ToolStepResponse."""
    result = ToolStepResponse()
    text_parts: List[str] = []
    current: Optional[ToolCall] = None
    partial_json: List[str] = []
    for ev in events:
        if on_event is not None:
            on_event(ev)
        if ev.type == "text_delta":
            text_parts.append(ev.text)
        elif ev.type == "tool_call_start":
            current = ToolCall(id=ev.tool_call_id or uuid.uuid4().hex, name=ev.name)
            partial_json = []
        elif ev.type == "tool_call_delta":
            partial_json.append(ev.text)
        elif ev.type == "tool_call_end" and current is not None:
            raw = "".join(partial_json).strip()
            try:
                current.input = json.loads(raw) if raw else {}
            except json.JSONDecodeError as e:
                logger.warning(f"Malformed tool input for {current.name}: {e}")
                current.input = {}
            result.tool_calls.append(current)
            current = None
        elif ev.type == "usage":
            for key, value in ev.usage.items():
                if isinstance(value, int):
                    result.usage[key] = value
        elif ev.type == "stop":
            result.stop_reason = ev.stop_reason
    result.text = "".join(text_parts).strip()
    return result


def response_events(resp: ToolStepResponse, chunk_size: int = 0) -> Iterator[LLMStreamEvent]:
    """Replay a complete response as stream events. chunk_size > 0 splits the text into deltas."""
    if resp.text:
        step = chunk_size if chunk_size > 0 else len(resp.text)
        for i in range(0, len(resp.text), step):
            yield LLMStreamEvent(type="text_delta", text=resp.text[i:i + step])
    for tc in resp.tool_calls:
        yield LLMStreamEvent(type="tool_call_start", tool_call_id=tc.id, name=tc.name)
        yield LLMStreamEvent(type="tool_call_delta", tool_call_id=tc.id, text=json.dumps(tc.input))
        yield LLMStreamEvent(type="tool_call_end", tool_call_id=tc.id)
    if resp.usage:
        yield LLMStreamEvent(type="usage", usage=dict(resp.usage))
    yield LLMStreamEvent(type="stop", stop_reason=resp.stop_reason)


class LLMClient(ABC):
    """Uniform completion contract the orchestrator depends on."""

    provider: str = "anthropic"

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Model used for step and decision calls."""

    @abstractmethod
    def complete_text(self, system: str, user: str) -> str:
        """One-shot completion, no tools."""

    @abstractmethod
    def complete_with_tools(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        on_event: Optional[Callable[[LLMStreamEvent], None]] = None,
    ) -> ToolStepResponse:
        """Completion with tool schemas. on_event receives streaming deltas if supported."""

    def stream_with_tools(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> Iterator[LLMStreamEvent]:
        """Streaming variant. Default: replay a non-streamed response as events."""
        yield from response_events(self.complete_with_tools(system, messages, tools))


ScriptedText = Union[str, Exception, Callable[[str, str], str]]
ScriptedStep = Union[ToolStepResponse, str, Exception]


class ScriptedLLMClient(LLMClient):
    """Replays scripted responses and records every call.

    text_responses feed complete_text in order; text_handler (if given) answers
    any complete_text call once the list is exhausted, so tests can route
    decision prompts by content. step_responses feed complete_with_tools; a
    plain string is a text-only reply, an Exception is raised. When the step
    script runs out the client answers with default_final_text. Given an
    on_event callback, each reply is also replayed as stream events, with text
    split into stream_chunk_size pieces.
    """

    def __init__(
        self,
        step_responses: Optional[List[ScriptedStep]] = None,
        text_responses: Optional[List[ScriptedText]] = None,
        text_handler: Optional[Callable[[str, str], str]] = None,
        model_id: str = "scripted-model",
        default_final_text: str = "Done.",
        stream_chunk_size: int = 0,
    ):
        self._model_id = model_id
        self.step_responses: List[ScriptedStep] = list(step_responses or [])
        self.text_responses: List[ScriptedText] = list(text_responses or [])
        self.text_handler = text_handler
        self.default_final_text = default_final_text
        self.stream_chunk_size = stream_chunk_size
        self.text_calls: List[Dict[str, str]] = []
        self.step_calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return self._model_id

    def complete_text(self, system: str, user: str) -> str:
        with self._lock:
            self.text_calls.append({"system": system, "user": user})
            item: Optional[ScriptedText] = self.text_responses.pop(0) if self.text_responses else None
        if item is None:
            return self.text_handler(system, user) if self.text_handler else ""
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(system, user)
        return item

    def complete_with_tools(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        on_event: Optional[Callable[[LLMStreamEvent], None]] = None,
    ) -> ToolStepResponse:
        with self._lock:
            self.step_calls.append({
                "system": system,
                "messages": json.loads(json.dumps(messages, default=str)),
                "tools": [t.get("name") for t in tools],
            })
            item: ScriptedStep = self.step_responses.pop(0) if self.step_responses else self.default_final_text
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            item = ToolStepResponse(text=item, stop_reason="end_turn",
                                    usage={"input_tokens": 0, "output_tokens": 0})
        if on_event is not None:
            for ev in response_events(item, self.stream_chunk_size):
                on_event(ev)
        return item

    @staticmethod
    def tool_step(*calls: ToolCall, text: str = "", input_tokens: int = 0) -> ToolStepResponse:
        """Convenience builder for a step that requests tool calls."""
        return ToolStepResponse(text=text, tool_calls=list(calls), stop_reason="tool_use",
                                usage={"input_tokens": input_tokens, "output_tokens": 0})
