"""
Context window budgeting for an agent run.

Tracks prompt-size high-water marks, decides when the context log must be
summarized, and trims individual tool/command outputs to the capture limit.
"""

import logging
import re
import time
from typing import Awaitable, Callable, List, Optional

from config import AgentSettings

from .prompts import summarize_context_prompt, summarize_output_prompt
from .tokens import chars_per_token, context_limit, estimate_tokens
from .truncation import ContentKind, prioritize_errors, smart_truncate

logger = logging.getLogger(__name__)

SUMMARIZATION_THRESHOLD = 0.95
SUMMARY_HEADER = "[SUMMARIZED HISTORY]"
RECENT_HEADER = "[RECENT ACTIVITY]"

_ERROR_LINE_RE = re.compile(r"\b(error|failed|failure|exception|traceback|fatal)\b", re.IGNORECASE)

Summarizer = Callable[[str], Awaitable[str]]


class ContextWindowManager:
    """Context budget of one run.

    summarizer is an async one-shot text completion; when it is missing or
    fails a heuristic summary is used instead.
    """

    def __init__(self, model: str, settings: AgentSettings, summarizer: Optional[Summarizer] = None):
        self.model = model
        self.settings = settings
        self.summarizer = summarizer
        self.accumulated_context_tokens = 0
        self.current_context_tokens = 0
        self.session_tokens_used = 0
        self.summarization_count = 0
        self.last_summarization_at: Optional[float] = None

    @property
    def effective_limit(self) -> int:
        override = self.settings.context_limit_override
        return override if override and override > 0 else context_limit(self.model)

    @property
    def token_threshold(self) -> int:
        return int(self.effective_limit * SUMMARIZATION_THRESHOLD)

    @property
    def output_capture_limit(self) -> int:
        return self.settings.effective_output_capture_limit(self.effective_limit)

    @property
    def agent_memory_limit(self) -> int:
        return self.settings.effective_agent_memory_limit(self.effective_limit)

    @property
    def usage_percent(self) -> float:
        return 100.0 * self.current_context_tokens / max(self.effective_limit, 1)

    def record_prompt_tokens(self, prompt_tokens: int, total_tokens: int = 0) -> None:
        """Update the high-water mark after an LLM call."""
        self.session_tokens_used += total_tokens or prompt_tokens
        if prompt_tokens > self.accumulated_context_tokens:
            self.accumulated_context_tokens = prompt_tokens
        self.current_context_tokens = self.accumulated_context_tokens

    def reset(self) -> None:
        self.accumulated_context_tokens = 0
        self.current_context_tokens = 0
        self.session_tokens_used = 0

    def estimate(self, text: str) -> int:
        return estimate_tokens(text, self.model)

    def needs_summarization(self, log: List[str], extra_text: str = "") -> bool:
        tokens = self.estimate("\n".join(log))
        if extra_text:
            tokens += self.estimate(extra_text)
        return tokens > self.token_threshold

    def _record_summarization(self) -> None:
        self.summarization_count += 1
        self.last_summarization_at = time.time()
        logger.info(f"Summarizing context (#{self.summarization_count}, limit {self.effective_limit} tokens)")

    async def summarize(self, log: List[str], max_size: Optional[int] = None, force: bool = False) -> str:
        """Condense the log to fit the budget. A log under the threshold is returned joined, unchanged."""
        full = "\n".join(log)
        max_size = self.agent_memory_limit if max_size is None else max_size
        if not force and self.estimate(full) <= self.token_threshold:
            return full

        self._record_summarization()
        char_limit = min(max_size, int(self.token_threshold * chars_per_token(self.model)))
        recent_count = min(len(log), 15 if self.effective_limit > 100_000 else 10)
        recent = log[len(log) - recent_count:]
        older = log[:len(log) - recent_count]
        if not older:
            result = full[-char_limit:]
        else:
            older_text = "\n".join(older)
            older_text = older_text[:max(1, char_limit // 2)]
            summary = await self._summarize_text(older_text, older)
            result = f"{SUMMARY_HEADER}\n{summary}\n\n{RECENT_HEADER}\n" + "\n".join(recent)
            result = result[-char_limit:]
        # The summary replaces the log; the high-water mark starts over
        self.accumulated_context_tokens = 0
        self.current_context_tokens = self.estimate(result)
        return result

    async def compact(self, log: List[str], max_size: Optional[int] = None, extra_text: str = "",
                      force: bool = False) -> bool:
        """Summarize log in place. Returns True if it was replaced."""
        if not force and not self.needs_summarization(log, extra_text):
            return False
        condensed = await self.summarize(log, max_size, force=True)
        log[:] = [condensed]
        return True

    async def _summarize_text(self, older_text: str, older_entries: List[str]) -> str:
        if self.summarizer is not None:
            try:
                summary = (await self.summarizer(summarize_context_prompt(older_text))).strip()
                if summary:
                    return summary
                logger.warning("Context summarization returned empty text; using heuristic summary")
            except Exception as e:
                logger.warning(f"Context summarization failed ({e}); using heuristic summary")
        return heuristic_summary(older_entries)

    async def truncate_output(self, text: str, kind: ContentKind = ContentKind.UNKNOWN,
                              command: str = "") -> str:
        """Fit one tool/command output into the capture limit."""
        limit = self.output_capture_limit
        if len(text) <= limit:
            return text
        use_llm = (
            self.summarizer is not None
            and self.settings.enable_output_summarization
            and len(text) > self.settings.output_summarization_threshold
            and kind in (ContentKind.COMMAND_OUTPUT, ContentKind.BUILD_OUTPUT, ContentKind.TEST_OUTPUT)
        )
        if not use_llm:
            return smart_truncate(text, limit, kind)
        relevant = prioritize_errors(text, limit)
        try:
            summary = (await self.summarizer(summarize_output_prompt(relevant, command))).strip()
        except Exception as e:
            logger.warning(f"Output summarization failed ({e}); truncating instead")
            return smart_truncate(text, limit, kind)
        if not summary:
            return smart_truncate(text, limit, kind)
        return f"[Output summarized from {len(text)} chars]\n{summary[:limit]}"


def heuristic_summary(entries: List[str], max_errors: int = 10, max_markers: int = 5) -> str:
    """Summary without a model: counts, error lines and the latest markers."""
    tools = [e for e in entries if e.startswith("TOOL:")]
    commands = [e for e in entries if e.startswith("TOOL: shell") or e.startswith("COMMAND:")]
    errors: List[str] = []
    for entry in entries:
        for line in entry.splitlines():
            if _ERROR_LINE_RE.search(line):
                errors.append(line.strip()[:200])
    markers = [
        e[:200] for e in entries
        if e.startswith(("TASK STARTED:", "STRATEGY ADJUSTMENT:", "STUCK RECOVERY", "PROFILE SWITCH:",
                         "USER FEEDBACK", "VERIFY:", "PLAN CREATED"))
    ]
    lines = [f"{len(entries)} earlier entries: {len(tools)} tool calls, {len(commands)} shell commands."]
    if errors:
        lines.append("Errors seen:")
        lines.extend(f"- {e}" for e in errors[-max_errors:])
    if markers:
        lines.append("Milestones:")
        lines.extend(f"- {m}" for m in markers[-max_markers:])
    return "\n".join(lines)
