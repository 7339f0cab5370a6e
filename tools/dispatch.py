"""Tool execution dispatch and approval classification."""

import logging
from typing import Any, Callable, Dict, Optional

from backend import Backend
from tools._common import ToolResult, ToolContext
from tools.schemas import (
    TOOL_IMPLEMENTATIONS, FILE_MUTATING_TOOLS, SHELL_TOOLS, READ_ONLY_TOOLS, BOOKKEEPING_TOOLS,
)

logger = logging.getLogger(__name__)


def invoke_handler(
    name: str,
    handler: Callable[..., ToolResult],
    inputs: Dict[str, Any],
    working_directory: str = ".",
    backend: Optional[Backend] = None,
    context: Optional[ToolContext] = None,
) -> ToolResult:
    """Call a tool implementation, turning bad arguments and crashes into error results."""
    if not isinstance(inputs, dict):
        return ToolResult(success=False, output="", error=f"Invalid arguments for {name}: expected an object")
    kwargs = dict(inputs, working_directory=working_directory, backend=backend, context=context)
    try:
        return handler(**kwargs)
    except TypeError as e:
        return ToolResult(success=False, output="", error=f"Invalid arguments for {name}: {e}")
    except Exception as e:
        logger.exception(f"Tool execution error: {name}")
        return ToolResult(success=False, output="", error=f"Tool error: {e}")


def execute_tool(
    name: str,
    inputs: Dict[str, Any],
    working_directory: str = ".",
    backend: Optional[Backend] = None,
    *,
    context: Optional[ToolContext] = None,
) -> ToolResult:
    """Execute a tool by name with the given inputs."""
    impl = TOOL_IMPLEMENTATIONS.get(name)
    if not impl:
        return ToolResult(success=False, output="", error=f"Unknown tool: {name}")
    return invoke_handler(name, impl, inputs, working_directory, backend, context)


def is_file_mutating(tool_name: str) -> bool:
    return tool_name in FILE_MUTATING_TOOLS


def is_shell(tool_name: str) -> bool:
    return tool_name in SHELL_TOOLS


def is_bookkeeping(tool_name: str, tool_input: Optional[Dict[str, Any]] = None) -> bool:
    """plan_and_track start/complete calls are checklist bookkeeping, not work."""
    if tool_name not in BOOKKEEPING_TOOLS:
        return False
    inputs = tool_input or {}
    return inputs.get("start_task") is not None or inputs.get("complete_task") is not None


def mutated_path(tool_name: str, tool_input: Optional[Dict[str, Any]]) -> Optional[str]:
    """Path a file-mutating call will write, or None for other tools."""
    if tool_name not in FILE_MUTATING_TOOLS:
        return None
    path = (tool_input or {}).get("path")
    return path if isinstance(path, str) and path.strip() else None


def needs_approval(tool_name: str, tool_input: Optional[Dict[str, Any]] = None, settings: Any = None) -> bool:
    """Check if a tool call must wait for the human approval gate.

    File edits need approval when require_file_edit_approval is set, shell tools when
    require_command_approval is set. Read-only calls are auto-approved when
    auto_approve_read_only is set, otherwise they follow the command setting.
    """
    if settings is None:
        return False
    if tool_name in FILE_MUTATING_TOOLS:
        return bool(settings.require_file_edit_approval)
    if tool_name in SHELL_TOOLS:
        return bool(settings.require_command_approval)
    if tool_name in READ_ONLY_TOOLS:
        return not settings.auto_approve_read_only and bool(settings.require_command_approval)
    return False
