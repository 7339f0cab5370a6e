"""
Tool definitions and implementations for the orchestrator.
Each tool has an Anthropic-compatible schema and an implementation function.
Tools use a Backend abstraction for file/command operations.
"""

from tools._common import ToolResult, FileChange, ToolContext  # noqa: F401
from tools.file_ops import (  # noqa: F401
    read_file,
    write_file,
    edit_file,
    insert_lines,
    delete_lines,
    delete_file,
    list_dir,
    search_files,
)
from tools.shell_ops import (  # noqa: F401
    shell,
    run_background,
    check_process,
    stop_process,
    search_output,
)
from tools.http_ops import http_request  # noqa: F401
from tools.planning_ops import plan_and_track, create_plan, memory  # noqa: F401
from tools.schemas import (  # noqa: F401
    TOOL_DEFINITIONS,
    TOOL_IMPLEMENTATIONS,
    FILE_MUTATING_TOOLS,
    SHELL_TOOLS,
    READ_ONLY_TOOLS,
    MODE_TOOLS,
)
from tools.dispatch import execute_tool, needs_approval, is_file_mutating, mutated_path  # noqa: F401
from tools.registry import Tool, ToolRegistry  # noqa: F401
from tools.locks import FileLockCoordinator, LockOutcome  # noqa: F401
