"""Tool schema definitions (Anthropic Messages API shape), dispatch map and per-mode availability."""

from typing import Any, Dict, FrozenSet, List

from tools.file_ops import (
    read_file, write_file, edit_file, insert_lines, delete_lines, delete_file, list_dir, search_files,
)
from tools.shell_ops import shell, run_background, check_process, stop_process, search_output
from tools.http_ops import http_request
from tools.planning_ops import plan_and_track, create_plan, memory


def _schema(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "input_schema": {"type": "object", "properties": properties, "required": required},
    }


_PATH = {"type": "string", "description": "File path (relative to working directory)"}

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    _schema(
        "read_file",
        "Read a file and return line-numbered content. Use start_line/end_line (1-based, inclusive) for large files.",
        {
            "path": _PATH,
            "start_line": {"type": "integer", "description": "First line to read (1-based)"},
            "end_line": {"type": "integer", "description": "Last line to read (inclusive)"},
        },
        ["path"],
    ),
    _schema(
        "write_file",
        "Create a new file or completely overwrite an existing one. Prefer edit_file for small changes.",
        {"path": _PATH, "content": {"type": "string", "description": "Full file content"}},
        ["path", "content"],
    ),
    _schema(
        "edit_file",
        "Replace an exact string in a file. old_text must match exactly one location unless replace_all is true. "
        "Read the file first so old_text matches current content, including whitespace.",
        {
            "path": _PATH,
            "old_text": {"type": "string", "description": "Exact text to replace"},
            "new_text": {"type": "string", "description": "Replacement text"},
            "replace_all": {"type": "boolean", "description": "Replace every occurrence (default false)"},
        },
        ["path", "old_text", "new_text"],
    ),
    _schema(
        "insert_lines",
        "Insert content before the given 1-based line number. Use line count + 1 to append.",
        {
            "path": _PATH,
            "line_number": {"type": "integer", "description": "Line to insert before (1-based)"},
            "content": {"type": "string", "description": "Text to insert"},
        },
        ["path", "line_number", "content"],
    ),
    _schema(
        "delete_lines",
        "Delete a 1-based inclusive range of lines from a file.",
        {
            "path": _PATH,
            "start_line": {"type": "integer", "description": "First line to delete"},
            "end_line": {"type": "integer", "description": "Last line to delete (inclusive)"},
        },
        ["path", "start_line", "end_line"],
    ),
    _schema("delete_file", "Delete a file.", {"path": _PATH}, ["path"]),
    _schema(
        "list_dir",
        "List a directory: subdirectories first, then files with sizes.",
        {"path": {"type": "string", "description": "Directory path (default: working directory)"}},
        [],
    ),
    _schema(
        "search_files",
        "Regex search over file contents. Returns path:line:text matches. Use include to filter file names, e.g. '*.py'.",
        {
            "pattern": {"type": "string", "description": "Regex pattern"},
            "path": {"type": "string", "description": "Directory to search (default: working directory)"},
            "include": {"type": "string", "description": "Glob filter on file names"},
        },
        ["pattern"],
    ),
    _schema(
        "shell",
        "Run a shell command in the working directory and return stdout, stderr and exit code. "
        "Use run_background for servers and watchers that do not exit.",
        {
            "command": {"type": "string", "description": "Command to run"},
            "timeout": {"type": "integer", "description": "Timeout in seconds"},
        },
        ["command"],
    ),
    _schema(
        "run_background",
        "Start a long-running command (dev server, watcher) in the background. Returns its pid.",
        {"command": {"type": "string", "description": "Command to run"}},
        ["command"],
    ),
    _schema(
        "check_process",
        "Show status and recent output of a background process.",
        {"pid": {"type": "integer", "description": "Process id from run_background"}},
        ["pid"],
    ),
    _schema(
        "stop_process",
        "Stop a background process started with run_background.",
        {"pid": {"type": "integer", "description": "Process id from run_background"}},
        ["pid"],
    ),
    _schema(
        "search_output",
        "Search recently captured command output for a regex (case-insensitive).",
        {"pattern": {"type": "string", "description": "Regex pattern"}},
        ["pattern"],
    ),
    _schema(
        "http_request",
        "Send an HTTP request (e.g. to test a local server). Returns status, headers and body.",
        {
            "url": {"type": "string", "description": "Full URL (http:// or https://)"},
            "method": {"type": "string", "description": "GET, POST, PUT, PATCH, DELETE, HEAD or OPTIONS (default GET)"},
            "headers": {"type": "object", "description": "Request headers"},
            "body": {"type": "string", "description": "Request body"},
        },
        ["url"],
    ),
    _schema(
        "memory",
        "Store and recall notes during the run. action is save, recall or list.",
        {
            "action": {"type": "string", "enum": ["save", "recall", "list"]},
            "key": {"type": "string", "description": "Note key (save/recall)"},
            "value": {"type": "string", "description": "Note value (save)"},
        },
        ["action"],
    ),
    _schema(
        "plan_and_track",
        "Call this FIRST for multi-step work: sets the goal and a task checklist. "
        "Also use start_task / complete_task (1-based ids) to track progress.",
        {
            "goal": {"type": "string", "description": "Clear, actionable goal (when setting up a plan)"},
            "tasks": {"type": "array", "items": {"type": "string"},
                      "description": "3-7 concrete task descriptions"},
            "start_task": {"type": "integer", "description": "Task id to mark in progress"},
            "complete_task": {"type": "integer", "description": "Task id to mark complete"},
            "task_note": {"type": "string", "description": "Optional note for the completed task"},
        },
        [],
    ),
    _schema(
        "create_plan",
        "Write an implementation plan: summary, phases with context, technical notes, "
        "and a final flat checklist using '- [ ]' items.",
        {
            "title": {"type": "string", "description": "Descriptive plan title"},
            "content": {"type": "string", "description": "Markdown plan ending with a '- [ ]' checklist"},
        },
        ["title", "content"],
    ),
]

TOOL_DEFINITIONS_BY_NAME: Dict[str, Dict[str, Any]] = {t["name"]: t for t in TOOL_DEFINITIONS}

TOOL_IMPLEMENTATIONS = {
    "read_file": read_file,
    "write_file": write_file,
    "edit_file": edit_file,
    "insert_lines": insert_lines,
    "delete_lines": delete_lines,
    "delete_file": delete_file,
    "list_dir": list_dir,
    "search_files": search_files,
    "shell": shell,
    "run_background": run_background,
    "check_process": check_process,
    "stop_process": stop_process,
    "search_output": search_output,
    "http_request": http_request,
    "memory": memory,
    "plan_and_track": plan_and_track,
    "create_plan": create_plan,
}

FILE_MUTATING_TOOLS: FrozenSet[str] = frozenset({
    "write_file", "edit_file", "insert_lines", "delete_lines", "delete_file",
})
SHELL_TOOLS: FrozenSet[str] = frozenset({"shell", "run_background", "stop_process"})
READ_ONLY_TOOLS: FrozenSet[str] = frozenset({
    "read_file", "list_dir", "search_files", "search_output", "check_process", "memory",
})
# Checklist bookkeeping calls whose results stay out of the context log
BOOKKEEPING_TOOLS: FrozenSet[str] = frozenset({"plan_and_track"})

# Per-mode availability. scout/navigator may only issue read-only HTTP methods.
SCOUT_TOOLS: FrozenSet[str] = READ_ONLY_TOOLS | {"http_request", "plan_and_track"}
NAVIGATOR_TOOLS: FrozenSet[str] = SCOUT_TOOLS | {"create_plan"}
COPILOT_TOOLS: FrozenSet[str] = NAVIGATOR_TOOLS | FILE_MUTATING_TOOLS
PILOT_TOOLS: FrozenSet[str] = frozenset(TOOL_IMPLEMENTATIONS)

MODE_TOOLS: Dict[str, FrozenSet[str]] = {
    "scout": SCOUT_TOOLS,
    "navigator": NAVIGATOR_TOOLS,
    "copilot": COPILOT_TOOLS,
    "pilot": PILOT_TOOLS,
}
READ_ONLY_HTTP_MODES: FrozenSet[str] = frozenset({"scout", "navigator"})
READ_ONLY_HTTP_METHODS: FrozenSet[str] = frozenset({"GET", "HEAD", "OPTIONS"})
