"""
One-shot JSON decision prompts.

Reflection, stuck recovery, verification and profile analysis all ask the
model for a small JSON object. Replies are decoded leniently: a missing or
ill-typed field is None, and callers treat None as "no signal".
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from config import app_config
from llm_client import LLMClient

from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

DECISION_SYSTEM = (
    "You are the planning and assessment component of an autonomous coding agent. "
    "Reply with ONLY one valid JSON object, no explanation and no markdown."
)


@dataclass
class DecisionResponse:
    raw: str = ""
    action: Optional[str] = None
    reason: Optional[str] = None
    goal: Optional[str] = None
    plan: Optional[List[str]] = None
    estimated_commands: Optional[int] = None
    done: Optional[bool] = None
    decision: Optional[str] = None
    progress_percent: Optional[int] = None
    on_track: Optional[bool] = None
    completed: Optional[List[str]] = None
    remaining: Optional[List[str]] = None
    should_adjust: Optional[bool] = None
    new_approach: Optional[str] = None
    is_stuck: Optional[bool] = None
    should_stop: Optional[bool] = None
    suggested_profile: Optional[str] = None
    confidence: Optional[str] = None
    checks: Optional[List[Any]] = None
    error: Optional[str] = None

    @property
    def has_content(self) -> bool:
        """At least one of the primary decision fields came back."""
        return bool(
            self.action or self.goal or self.plan or self.decision or self.done is not None
        )

    @property
    def is_error(self) -> bool:
        stripped = self.raw.strip()
        return self.error is not None or not stripped or stripped == "{}" or '"error"' in stripped


_STR_FIELDS = ("action", "reason", "goal", "decision", "new_approach", "suggested_profile", "confidence")
_BOOL_FIELDS = ("done", "on_track", "should_adjust", "is_stuck", "should_stop")
_INT_FIELDS = ("estimated_commands", "progress_percent")
_LIST_FIELDS = ("plan", "completed", "remaining")


def extract_json_object(text: str) -> str:
    """Strip code fences and return the first brace-balanced {...} in text."""
    text = (text or "").strip()
    if "```" in text:
        text = text.replace("```json", "").replace("```JSON", "").replace("```", "").strip()
    start = text.find("{")
    if start < 0:
        return text
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return text[start:]


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip().rstrip("%")))
        except ValueError:
            return None
    return None


def _as_str_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(v) for v in value if v is not None]


def parse_decision(text: str) -> DecisionResponse:
    """Decode a decision reply. Never raises."""
    cleaned = extract_json_object(text)
    compact = " ".join(cleaned.split())
    resp = DecisionResponse(raw=compact)
    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        return resp
    if not isinstance(data, dict):
        return resp
    for name in _STR_FIELDS:
        value = data.get(name)
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            setattr(resp, name, str(value))
    for name in _BOOL_FIELDS:
        setattr(resp, name, _as_bool(data.get(name)))
    for name in _INT_FIELDS:
        setattr(resp, name, _as_int(data.get(name)))
    for name in _LIST_FIELDS:
        setattr(resp, name, _as_str_list(data.get(name)))
    if isinstance(data.get("checks"), list):
        resp.checks = data["checks"]
    return resp


class DecisionCaller:
    """Runs decision prompts against an LLMClient.

    on_prompt_tokens(n) is called with the estimated prompt size of every
    call, so the context manager can track its high-water mark.
    """

    def __init__(
        self,
        llm: LLMClient,
        cancel_event: Optional[asyncio.Event] = None,
        on_prompt_tokens: Optional[Callable[[int], None]] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        system_prompt: str = DECISION_SYSTEM,
    ):
        self.llm = llm
        self.cancel_event = cancel_event
        self.on_prompt_tokens = on_prompt_tokens
        self.max_retries = app_config.decision_max_retries if max_retries is None else max_retries
        self.retry_delay = app_config.decision_retry_delay if retry_delay is None else retry_delay
        self.system_prompt = system_prompt

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def call_text(self, prompt: str, system: Optional[str] = None) -> str:
        """One-shot completion in a worker thread, bounded by llm_call_timeout."""
        system = system or self.system_prompt
        if self.on_prompt_tokens is not None:
            self.on_prompt_tokens(estimate_tokens(system + prompt, self.llm.model_id))
        logger.debug(f"Decision prompt =>\n{prompt}")
        text = await asyncio.wait_for(
            asyncio.to_thread(self.llm.complete_text, system, prompt),
            timeout=app_config.llm_call_timeout,
        )
        logger.debug(f"Decision reply: {text[:500]}")
        return text or ""

    async def call_json(self, prompt: str) -> DecisionResponse:
        """Single attempt. Provider failures come back as an empty response with error set."""
        try:
            text = await self.call_text(prompt)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning("Decision call timed out")
            return DecisionResponse(error="timeout")
        except Exception as e:
            logger.warning(f"Decision call failed: {e}")
            return DecisionResponse(error=str(e))
        return parse_decision(text)

    async def _backoff(self, delay: float) -> bool:
        """Sleep for delay, waking early on cancellation. Returns False if cancelled."""
        if self.cancel_event is None:
            await asyncio.sleep(delay)
            return True
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def call_json_with_retry(self, prompt: str, max_retries: Optional[int] = None) -> DecisionResponse:
        """Retry empty or error replies with linear backoff; the last reply is returned regardless."""
        attempts = max(1, self.max_retries if max_retries is None else max_retries)
        last = DecisionResponse()
        for attempt in range(1, attempts + 1):
            last = await self.call_json(prompt)
            if last.has_content and not last.is_error:
                return last
            logger.warning(f"Empty/error decision reply (attempt {attempt}/{attempts}): {last.raw[:100]}")
            if attempt < attempts:
                if self.cancelled:
                    logger.info("Cancelled during decision retry wait")
                    break
                if not await self._backoff(attempt * self.retry_delay):
                    logger.info("Cancelled during decision retry wait")
                    break
        return last
