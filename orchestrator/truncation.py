"""
Content-aware truncation of tool and command output.

Keeps what an agent needs when output is too large: error lines (with
surrounding context) for command/build/test output, head and tail for file
content, whole entries for JSON arrays and logs.
"""

import json
import re
from enum import Enum
from typing import List, Sequence, Set

_SEPARATOR = "\n\n... [{omitted} characters omitted] ...\n\n"
_SEPARATOR_OVERHEAD = 50
_CONTEXT_RADIUS = 3


class ContentKind(Enum):
    FILE_CONTENT = "file_content"
    COMMAND_OUTPUT = "command_output"
    BUILD_OUTPUT = "build_output"
    TEST_OUTPUT = "test_output"
    API_RESPONSE = "api_response"
    UNKNOWN = "unknown"


DEFAULT_ERROR_PATTERNS: List[str] = [
    "error", "error:", "failed", "failure", "exception", "fatal", "warning", "warn:",
    "cannot", "could not", "unable to", "not found", "undefined", "null pointer",
    "segmentation fault", "stack trace", "traceback", "panic", "assert", "denied",
    "refused", "timeout", "timed out", "❌", "✗", "FAIL", "ERROR", "FATAL",
]

BUILD_ERROR_PATTERNS: List[str] = DEFAULT_ERROR_PATTERNS + [
    "undefined reference", "linker error", "syntax error", "parse error", "type mismatch",
    "cannot find", "no such file", "build failed", "compilation failed", "make: ***",
    "npm ERR!", "error TS", "error CS", "error[E", "^~~~",
]

TEST_ERROR_PATTERNS: List[str] = DEFAULT_ERROR_PATTERNS + [
    "FAILED", "FAIL:", "test failed", "assertion failed", "expected", "actual",
    "AssertionError", "expect(", "toBe(", "toEqual(", "not equal", "0 passing", "tests failed",
]

_LOG_LINE_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}|\[\d{2}:\d{2}:\d{2}\]|\[INFO\]|\[DEBUG\]|\[ERROR\]|\[WARN|INFO |DEBUG |ERROR )",
    re.IGNORECASE,
)


def head_tail(content: str, max_chars: int, head_ratio: float = 0.6) -> str:
    """Keep the start and end of content with an omission marker between them."""
    if len(content) <= max_chars:
        return content
    available = max_chars - _SEPARATOR_OVERHEAD
    if available <= 100:
        return content[:max_chars]
    head_chars = int(available * head_ratio)
    tail_chars = available - head_chars
    omitted = len(content) - head_chars - tail_chars
    return content[:head_chars] + _SEPARATOR.format(omitted=omitted) + content[-tail_chars:]


def prioritize_errors(output: str, max_chars: int,
                      error_patterns: Sequence[str] = DEFAULT_ERROR_PATTERNS) -> str:
    """Lead with error/warning lines (numbered), then nearby context, then the start of output."""
    if len(output) <= max_chars:
        return output
    lines = output.split("\n")
    patterns = [p.lower() for p in error_patterns]
    priority = [i for i, line in enumerate(lines) if any(p in line.lower() for p in patterns)]
    if not priority:
        return head_tail(output, max_chars)

    header = "=== Priority lines (errors/warnings) ==="
    context_header = "=== Context ==="
    available = max_chars - (len(header) + len(context_header) + 2) - 50
    result = [header]
    used = 0
    for i in priority:
        numbered = f"L{i + 1}: {lines[i]}"
        if used + len(numbered) + 1 < available // 2:
            result.append(numbered)
            used += len(numbered) + 1

    result.append(context_header)
    priority_set: Set[int] = set(priority)
    added: Set[int] = set()
    for p in priority:
        for i in range(max(0, p - _CONTEXT_RADIUS), min(len(lines) - 1, p + _CONTEXT_RADIUS) + 1):
            if i in priority_set or i in added:
                continue
            numbered = f"L{i + 1}: {lines[i]}"
            if used + len(numbered) + 1 < available:
                result.append(numbered)
                used += len(numbered) + 1
                added.add(i)

    if used < available - 100:
        result.append("\n=== Start of output ===")
        for i in range(min(10, len(lines))):
            if i in priority_set or i in added:
                continue
            if used + len(lines[i]) + 1 < available:
                result.append(lines[i])
                used += len(lines[i]) + 1
    return "\n".join(result)


def _looks_like_log(lines: List[str]) -> bool:
    if len(lines) <= 5:
        return False
    return sum(1 for line in lines[:10] if _LOG_LINE_RE.match(line)) >= 3


def _truncate_log(lines: List[str], max_chars: int) -> str:
    marker = "... [log entries omitted] ..."
    available = max_chars - len(marker) - 2
    head: List[str] = []
    used = 0
    head_budget = int(available * 0.6)
    for line in lines:
        if used + len(line) + 1 > head_budget:
            break
        head.append(line)
        used += len(line) + 1
    tail: List[str] = []
    tail_used = 0
    tail_budget = available - used
    for line in reversed(lines[len(head):]):
        if tail_used + len(line) + 1 > tail_budget:
            break
        tail.insert(0, line)
        tail_used += len(line) + 1
    return "\n".join(head + [marker] + tail)


def _truncate_json_array(content: str, max_chars: int) -> str:
    try:
        array = json.loads(content)
    except ValueError:
        return head_tail(content, max_chars)
    if not isinstance(array, list) or len(array) <= 2 or not all(isinstance(x, dict) for x in array):
        return head_tail(content, max_chars)
    keep = max(2, len(array) // 4)
    trimmed = array[:keep] + [{"_truncated": f"... {len(array) - keep * 2} items omitted ..."}] + array[-keep:]
    text = json.dumps(trimmed, indent=2, sort_keys=True)
    return text if len(text) <= max_chars else head_tail(content, max_chars)


def preserve_structure(content: str, max_chars: int) -> str:
    """Keep whole JSON elements or log entries where possible."""
    if len(content) <= max_chars:
        return content
    stripped = content.strip()
    if stripped.startswith("["):
        return _truncate_json_array(stripped, max_chars)
    if stripped.startswith("{"):
        return head_tail(content, max_chars, head_ratio=0.7)
    lines = content.split("\n")
    if _looks_like_log(lines):
        return _truncate_log(lines, max_chars)
    return head_tail(content, max_chars)


def truncate_lines(content: str, max_lines: int, head_ratio: float = 0.6) -> str:
    lines = content.split("\n")
    if len(lines) <= max_lines:
        return content
    head_count = int(max_lines * head_ratio)
    tail_count = max_lines - head_count
    omitted = len(lines) - head_count - tail_count
    tail = lines[-tail_count:] if tail_count else []
    return "\n".join(lines[:head_count] + [f"\n... [{omitted} lines omitted] ...\n"] + tail)


def _auto_truncate(content: str, max_chars: int) -> str:
    lowered = content.lower()
    if "test" in lowered and ("pass" in lowered or "fail" in lowered):
        return prioritize_errors(content, max_chars, TEST_ERROR_PATTERNS)
    if "compiling" in lowered or "building" in lowered or "linking" in lowered:
        return prioritize_errors(content, max_chars, BUILD_ERROR_PATTERNS)
    stripped = content.strip()
    if stripped.startswith(("{", "[")) or _looks_like_log(content.split("\n")):
        return preserve_structure(content, max_chars)
    if any(p.lower() in lowered for p in DEFAULT_ERROR_PATTERNS):
        return prioritize_errors(content, max_chars)
    return head_tail(content, max_chars)


def smart_truncate(content: str, max_chars: int, kind: ContentKind = ContentKind.UNKNOWN) -> str:
    """Pick a truncation strategy for the kind of content."""
    if len(content) <= max_chars:
        return content
    if kind is ContentKind.FILE_CONTENT:
        return head_tail(content, max_chars, head_ratio=0.6)
    if kind is ContentKind.COMMAND_OUTPUT:
        return prioritize_errors(content, max_chars)
    if kind is ContentKind.BUILD_OUTPUT:
        return prioritize_errors(content, max_chars, BUILD_ERROR_PATTERNS)
    if kind is ContentKind.TEST_OUTPUT:
        return prioritize_errors(content, max_chars, TEST_ERROR_PATTERNS)
    if kind is ContentKind.API_RESPONSE:
        return preserve_structure(content, max_chars)
    return _auto_truncate(content, max_chars)
