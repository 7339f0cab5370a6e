"""Shell tools: foreground commands, background processes, and search over recent output."""

import logging
import re
import subprocess
import time
from typing import Any, Optional

from backend import Backend, LocalBackend
from tools._common import ToolResult, ToolContext

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 120
_BACKGROUND_TAIL_CHARS = 4000


def _blocked(command: str, context: Optional[ToolContext]) -> Optional[ToolResult]:
    settings = getattr(context, "settings", None)
    if settings is None:
        return None
    pattern = settings.is_command_blocked(command)
    if pattern:
        logger.warning(f"Refused blocked command {command!r} (matched {pattern!r})")
        return ToolResult(success=False, output="",
                          error=f"Command blocked by safety policy (matches '{pattern}'): {command}")
    return None


def format_command_output(stdout: str, stderr: str, rc: int) -> str:
    parts = []
    if stdout:
        parts.append(stdout)
    if stderr:
        parts.append(f"[stderr]\n{stderr}")
    output = "\n".join(parts) if parts else "(no output)"
    if rc != 0:
        output = f"[exit code: {rc}]\n{output}"
    return output


def shell(command: str, timeout: Optional[int] = None,
          backend: Optional[Backend] = None, working_directory: str = ".",
          context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Execute a shell command in the working directory."""
    if not (command or "").strip():
        return ToolResult(success=False, output="", error="command is required")
    refused = _blocked(command, context)
    if refused:
        return refused
    if timeout is None:
        settings = getattr(context, "settings", None)
        timeout = settings.command_timeout if settings is not None else _DEFAULT_TIMEOUT
    try:
        b = backend or LocalBackend(working_directory)
        stdout, stderr, rc = b.run_command(command, cwd=".", timeout=int(timeout))
    except subprocess.TimeoutExpired:
        return ToolResult(success=False, output="", error=f"Command timed out after {timeout}s")
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))

    output = format_command_output(stdout, stderr, rc)
    if context is not None:
        context.remember_output(command, output)
    return ToolResult(
        success=rc == 0, output=output,
        error=None if rc == 0 else f"Command exited with code {rc}",
    )


def _local(backend: Optional[Backend], working_directory: str) -> Optional[LocalBackend]:
    b = backend or LocalBackend(working_directory)
    return b if hasattr(b, "start_background") else None


def run_background(command: str, backend: Optional[Backend] = None, working_directory: str = ".",
                   context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Start a long-running command (dev server, watcher) and return its pid."""
    if not (command or "").strip():
        return ToolResult(success=False, output="", error="command is required")
    refused = _blocked(command, context)
    if refused:
        return refused
    b = _local(backend, working_directory)
    if b is None:
        return ToolResult(success=False, output="", error="Background processes are not supported by this backend")
    try:
        bg = b.start_background(command)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))
    # Give it a moment so immediate failures show up in check_process
    time.sleep(0.2)
    status = "running" if bg.running else f"exited ({bg.returncode})"
    return ToolResult(success=True, output=f"Started background process pid={bg.pid} ({status}): {command}")


def check_process(pid: int, backend: Optional[Backend] = None, working_directory: str = ".",
                  context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Report status and recent output of a background process."""
    b = _local(backend, working_directory)
    bg = b.get_background(int(pid)) if b is not None else None
    if bg is None:
        return ToolResult(success=False, output="", error=f"No background process with pid {pid}")
    text = bg.output_text()
    if len(text) > _BACKGROUND_TAIL_CHARS:
        text = f"... [{len(text) - _BACKGROUND_TAIL_CHARS} earlier characters omitted]\n" + text[-_BACKGROUND_TAIL_CHARS:]
    status = "running" if bg.running else f"exited with code {bg.returncode}"
    uptime = int(time.time() - bg.started_at)
    if context is not None:
        context.remember_output(bg.command, bg.output_text())
    return ToolResult(success=True, output=f"pid={bg.pid} {status} (uptime {uptime}s): {bg.command}\n{text or '(no output yet)'}")


def stop_process(pid: int, backend: Optional[Backend] = None, working_directory: str = ".",
                 **kw: Any) -> ToolResult:
    """Terminate a background process and its process group."""
    b = _local(backend, working_directory)
    if b is None or not b.stop_background(int(pid)):
        return ToolResult(success=False, output="", error=f"No background process with pid {pid}")
    return ToolResult(success=True, output=f"Stopped background process {pid}")


def search_output(pattern: str, context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Search recently captured command output for a regex (case-insensitive)."""
    if not (pattern or "").strip():
        return ToolResult(success=False, output="", error="pattern is required")
    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        return ToolResult(success=False, output="", error=f"Invalid regex: {e}")
    outputs = context.recent_outputs if context is not None else []
    if not outputs:
        return ToolResult(success=True, output="No command output captured yet.")
    hits = []
    for command, output in reversed(outputs):
        for lineno, line in enumerate(output.splitlines(), 1):
            if regex.search(line):
                hits.append(f"[{command}] L{lineno}: {line}")
        if len(hits) >= 100:
            break
    if not hits:
        return ToolResult(success=True, output=f"No matches for '{pattern}' in recent output.")
    return ToolResult(success=True, output="\n".join(hits[:100]))
