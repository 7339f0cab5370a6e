"""Shared types for the tools package."""

import difflib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class FileChange:
    """Side-effect payload of a file-mutating tool call"""
    path: str
    operation: str  # "create" | "modify" | "delete"
    before: Optional[str] = None
    after: Optional[str] = None
    diff: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "operation": self.operation,
            "diff": self.diff,
        }


@dataclass(frozen=True)
class ToolResult:
    """Result from executing a tool"""
    success: bool
    output: str
    error: Optional[str] = None
    file_change: Optional[FileChange] = None

    def as_text(self) -> str:
        """Text handed back to the model as the tool_result content."""
        if self.success:
            return self.output or "(no output)"
        if self.output:
            return f"Error: {self.error}\n{self.output}"
        return f"Error: {self.error}"


@dataclass
class ToolContext:
    """Run-scoped state the tools read and write.

    checklist is the run's TaskChecklist (duck-typed here so the tools package
    does not import the orchestrator).
    """
    settings: Any = None
    checklist: Any = None
    memory: Dict[str, str] = field(default_factory=dict)
    recent_outputs: List[Tuple[str, str]] = field(default_factory=list)
    plans: Dict[str, str] = field(default_factory=dict)
    plans_dir: Optional[str] = None
    max_recent_outputs: int = 20

    def reset_run(self) -> None:
        """Forget the previous run's scratchpad notes and command outputs."""
        self.memory.clear()
        self.recent_outputs.clear()

    def remember_output(self, command: str, output: str) -> None:
        self.recent_outputs.append((command, output))
        if len(self.recent_outputs) > self.max_recent_outputs:
            del self.recent_outputs[:-self.max_recent_outputs]


def unified_diff(before: str, after: str, path: str, max_lines: int = 200) -> str:
    """Unified diff between two versions of a file, clipped to max_lines."""
    diff = list(difflib.unified_diff(
        before.splitlines(keepends=True),
        after.splitlines(keepends=True),
        fromfile=f"a/{path}", tofile=f"b/{path}", lineterm="",
    ))
    if not diff:
        return ""
    if len(diff) > max_lines:
        diff = diff[:max_lines] + [f"... ({len(diff) - max_lines} more diff lines)"]
    return "\n".join(line.rstrip("\n") for line in diff)
