"""File operation tools: read, write, edit, line inserts/deletes, delete, listing and search."""

import fnmatch
import logging
import os
import re
from typing import Any, List, Optional

from backend import Backend, LocalBackend
from tools._common import ToolResult, FileChange, unified_diff

logger = logging.getLogger(__name__)

_MAX_FULL_READ_LINES = 2000
_MAX_SEARCH_MATCHES = 100
_SEARCH_SKIP_DIRS = {".git", "node_modules", "__pycache__", "venv", ".venv", "dist", "build"}


def _require_path(path: str, name: str = "path") -> Optional[ToolResult]:
    """Return an error ToolResult if path is empty/whitespace; else None."""
    if not (path or "").strip():
        return ToolResult(success=False, output="", error=f"{name} is required")
    return None


def _backend(backend: Optional[Backend], working_directory: str) -> Backend:
    return backend or LocalBackend(working_directory)


def _numbered(lines: List[str], first: int) -> str:
    return "\n".join(f"{first + i:6}|{line.rstrip(chr(10))}" for i, line in enumerate(lines))


def _write_with_change(b: Backend, path: str, before: Optional[str], after: str, summary: str) -> ToolResult:
    """Write after-content and build the FileChange payload for it."""
    b.write_file(path, after)
    operation = "create" if before is None else "modify"
    diff = unified_diff(before or "", after, path)
    change = FileChange(path=path, operation=operation, before=before, after=after, diff=diff)
    output = f"{summary}\n{diff}" if diff else summary
    return ToolResult(success=True, output=output, file_change=change)


def read_file(path: str, start_line: Optional[int] = None, end_line: Optional[int] = None,
              backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Read a file, returning line-numbered content (optionally a 1-based inclusive range)."""
    err = _require_path(path)
    if err:
        return err
    try:
        b = _backend(backend, working_directory)
        if not b.is_file(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        lines = b.read_file(path).splitlines(keepends=True)
        total = len(lines)

        if start_line is not None or end_line is not None:
            start = max(int(start_line or 1), 1)
            end = min(int(end_line or total), total)
            if start > total:
                return ToolResult(success=False, output="",
                                  error=f"start_line {start} is past the end of {path} ({total} lines)")
            header = f"[{total} lines total] (showing lines {start}-{end})"
            return ToolResult(success=True, output=header + "\n" + _numbered(lines[start - 1:end], start))

        if total > _MAX_FULL_READ_LINES:
            header = (f"[{total} lines total, showing first {_MAX_FULL_READ_LINES}; "
                      f"use start_line/end_line to read more]")
            return ToolResult(success=True, output=header + "\n" + _numbered(lines[:_MAX_FULL_READ_LINES], 1))
        return ToolResult(success=True, output=f"[{total} lines total]\n" + _numbered(lines, 1))
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def write_file(path: str, content: str,
               backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Create a new file or completely overwrite an existing file."""
    err = _require_path(path)
    if err:
        return err
    try:
        b = _backend(backend, working_directory)
        before = b.read_file(path) if b.is_file(path) else None
        line_count = content.count("\n") + (1 if content and not content.endswith("\n") else 0)
        summary = f"{'Created' if before is None else 'Wrote'} {line_count} lines to {path}"
        return _write_with_change(b, path, before, content, summary)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def edit_file(path: str, old_text: str, new_text: str, replace_all: bool = False,
              backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Replace an exact string in a file. By default must match exactly one location."""
    err = _require_path(path)
    if err:
        return err
    if not old_text:
        return ToolResult(success=False, output="", error="old_text is required")
    try:
        b = _backend(backend, working_directory)
        if not b.is_file(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        content = b.read_file(path)
        count = content.count(old_text)
        if count == 0:
            return ToolResult(success=False, output="",
                error=f"old_text not found in {path}. It must match exactly, including whitespace. "
                      f"Re-read the file to see its current content.")
        if count > 1 and not replace_all:
            return ToolResult(success=False, output="",
                error=f"Found {count} occurrences of old_text in {path}. Add surrounding context "
                      f"to make it unique, or set replace_all=true.")
        new_content = content.replace(old_text, new_text, -1 if replace_all else 1)
        replaced = count if replace_all else 1
        summary = f"Applied edit to {path}" + (f" ({replaced} replacements)" if replaced > 1 else "")
        return _write_with_change(b, path, content, new_content, summary)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def insert_lines(path: str, line_number: int, content: str,
                 backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Insert content before the given 1-based line (len+1 appends)."""
    err = _require_path(path)
    if err:
        return err
    try:
        b = _backend(backend, working_directory)
        if not b.is_file(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        original = b.read_file(path)
        lines = original.splitlines(keepends=True)
        line_number = int(line_number)
        if line_number < 1 or line_number > len(lines) + 1:
            return ToolResult(success=False, output="",
                              error=f"line_number {line_number} out of range (1-{len(lines) + 1})")
        if lines and not lines[-1].endswith("\n") and line_number == len(lines) + 1:
            lines[-1] += "\n"
        new_lines = content.splitlines(keepends=True)
        if new_lines and not new_lines[-1].endswith("\n"):
            new_lines[-1] += "\n"
        lines[line_number - 1:line_number - 1] = new_lines
        summary = f"Inserted {len(new_lines)} lines at line {line_number} of {path}"
        return _write_with_change(b, path, original, "".join(lines), summary)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def delete_lines(path: str, start_line: int, end_line: int,
                 backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Delete the 1-based inclusive line range from a file."""
    err = _require_path(path)
    if err:
        return err
    try:
        b = _backend(backend, working_directory)
        if not b.is_file(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        original = b.read_file(path)
        lines = original.splitlines(keepends=True)
        start, end = int(start_line), int(end_line)
        if start < 1 or end < start or end > len(lines):
            return ToolResult(success=False, output="",
                              error=f"Invalid line range {start}-{end} for {path} ({len(lines)} lines)")
        del lines[start - 1:end]
        summary = f"Deleted lines {start}-{end} from {path}"
        return _write_with_change(b, path, original, "".join(lines), summary)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def delete_file(path: str, backend: Optional[Backend] = None, working_directory: str = ".",
                **kw: Any) -> ToolResult:
    """Delete a file."""
    err = _require_path(path)
    if err:
        return err
    try:
        b = _backend(backend, working_directory)
        if not b.is_file(path):
            return ToolResult(success=False, output="", error=f"File not found: {path}")
        before = b.read_file(path)
        b.remove_file(path)
        change = FileChange(path=path, operation="delete", before=before, after=None,
                            diff=unified_diff(before, "", path))
        return ToolResult(success=True, output=f"Deleted {path}", file_change=change)
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def list_dir(path: str = ".", backend: Optional[Backend] = None, working_directory: str = ".",
             **kw: Any) -> ToolResult:
    """List a directory: subdirectories first, then files with sizes."""
    try:
        b = _backend(backend, working_directory)
        entries = b.list_dir(path or ".")
        dirs = [f"{e['name']}/" for e in entries if e["type"] == "directory"]
        files = [f"{e['name']} ({e.get('size', 0)} bytes)" for e in entries if e["type"] == "file"]
        if not dirs and not files:
            return ToolResult(success=True, output=f"{path or '.'} is empty")
        return ToolResult(success=True, output="\n".join(dirs + files))
    except FileNotFoundError:
        return ToolResult(success=False, output="", error=f"Directory not found: {path}")
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))


def search_files(pattern: str, path: Optional[str] = None, include: Optional[str] = None,
                 backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Search file contents for a regex, returning path:line:text matches."""
    if not (pattern or "").strip():
        return ToolResult(success=False, output="", error="pattern is required")
    try:
        regex = re.compile(pattern)
    except re.error as e:
        return ToolResult(success=False, output="", error=f"Invalid regex: {e}")
    try:
        b = _backend(backend, working_directory)
        root = b.resolve_path(path or ".")
        b._ensure_under_working(root)
        matches: List[str] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in _SEARCH_SKIP_DIRS)
            for name in sorted(filenames):
                if include and not fnmatch.fnmatch(name, include):
                    continue
                full = os.path.join(dirpath, name)
                rel = os.path.relpath(full, b.working_directory)
                try:
                    with open(full, "r", encoding="utf-8") as f:
                        for lineno, line in enumerate(f, 1):
                            if regex.search(line):
                                matches.append(f"{rel}:{lineno}:{line.rstrip()}")
                                if len(matches) >= _MAX_SEARCH_MATCHES:
                                    break
                except (UnicodeDecodeError, OSError):
                    continue
                if len(matches) >= _MAX_SEARCH_MATCHES:
                    break
            if len(matches) >= _MAX_SEARCH_MATCHES:
                matches.append(f"... [stopped after {_MAX_SEARCH_MATCHES} matches]")
                break
        if not matches:
            return ToolResult(success=True, output="No matches found.")
        return ToolResult(success=True, output="\n".join(matches))
    except Exception as e:
        return ToolResult(success=False, output="", error=str(e))
