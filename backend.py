"""
Backend abstraction for the file and command operations agent tools perform.
Tools and checkpoint rollback go through a Backend so that the engine can be
pointed at a scratch directory in tests.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple

logger = logging.getLogger(__name__)

# Keep at most this many characters of a background process's output
_BACKGROUND_OUTPUT_LIMIT = 200_000


@dataclass
class BackgroundProcess:
    """A command started with run_background and tracked until stopped."""
    pid: int
    command: str
    started_at: float
    proc: subprocess.Popen
    output: List[str] = field(default_factory=list)

    @property
    def running(self) -> bool:
        return self.proc.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.poll()

    def output_text(self) -> str:
        return "".join(self.output)


class Backend(ABC):
    """Where tools read, write and run things. Paths are relative to working_directory."""

    @property
    @abstractmethod
    def working_directory(self) -> str:
        """Absolute root every tool path is resolved against."""

    @abstractmethod
    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        """Sorted entries of a directory as {name, type} dicts; files add ext and size."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Whole file as UTF-8 text, undecodable bytes replaced."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Replace the file's content, creating parent directories."""

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """Whole file as raw bytes. Checkpoint snapshots use this so rollback is exact."""

    @abstractmethod
    def write_bytes(self, path: str, data: bytes) -> None:
        """Replace the file with exactly these bytes, creating parent directories."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def is_file(self, path: str) -> bool:
        pass

    @abstractmethod
    def remove_file(self, path: str) -> None:
        """Delete a file. Used by delete_file and by rollback of created files."""

    @abstractmethod
    def run_command(self, command: str, cwd: str = ".", timeout: int = 30) -> Tuple[str, str, int]:
        """Run a shell command to completion; (stdout, stderr, exit code). A timeout reports -1."""

    def cancel_running_command(self) -> bool:
        """Stop the foreground command of a cancelled run. True if one was stopped."""
        return False

    def resolve_path(self, path: str) -> str:
        """Absolute, normalized form of a tool path. Snapshots and file locks are keyed by it."""
        if os.path.isabs(path):
            return os.path.normpath(path)
        return os.path.normpath(os.path.join(self.working_directory, path))

    def _ensure_under_working(self, resolved: str) -> None:
        """Refuse paths outside the working directory. No-op unless a backend confines paths."""


class LocalBackend(Backend):
    """Runs tools against the local filesystem, confined to working_directory."""

    def __init__(self, working_directory: str = "."):
        self._working_directory = os.path.abspath(working_directory)
        self._active_process: Optional[subprocess.Popen] = None
        self._background: Dict[int, BackgroundProcess] = {}
        self._bg_lock = threading.Lock()

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def _ensure_under_working(self, resolved: str) -> None:
        real = os.path.abspath(resolved)
        wd = self._working_directory
        if real != wd and not real.startswith(wd + os.sep):
            raise ValueError(f"Path escapes working directory: {resolved!r}")

    def _full(self, path: str) -> str:
        full = self.resolve_path(path) if path else self._working_directory
        self._ensure_under_working(full)
        return full

    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        full = self._full(path)
        entries = []
        for name in sorted(os.listdir(full)):
            child = os.path.join(full, name)
            if os.path.isdir(child):
                entries.append({"name": name, "type": "directory"})
            elif os.path.isfile(child):
                entries.append({
                    "name": name, "type": "file",
                    "ext": os.path.splitext(name)[1].lstrip("."),
                    "size": os.path.getsize(child),
                })
        return entries

    def read_file(self, path: str) -> str:
        with open(self._full(path), "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        full = self._full(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)

    def read_bytes(self, path: str) -> bytes:
        with open(self._full(path), "rb") as f:
            return f.read()

    def write_bytes(self, path: str, data: bytes) -> None:
        full = self._full(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as f:
            f.write(data)

    def file_exists(self, path: str) -> bool:
        return os.path.exists(self._full(path))

    def is_file(self, path: str) -> bool:
        return os.path.isfile(self._full(path))

    def remove_file(self, path: str) -> None:
        os.remove(self._full(path))

    def _cwd(self, cwd: str) -> str:
        return self._full(cwd) if cwd and cwd != "." else self._working_directory

    def run_command(self, command: str, cwd: str = ".", timeout: int = 30) -> Tuple[str, str, int]:
        proc = subprocess.Popen(
            command, shell=True, cwd=self._cwd(cwd),
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
            preexec_fn=os.setsid,  # own process group so a kill takes the children too
        )
        self._active_process = proc
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill_process(proc)
            stdout, stderr = proc.communicate(timeout=5)
            return stdout or "", f"Command timed out after {timeout}s\n{stderr or ''}", -1
        finally:
            self._active_process = None
        return stdout or "", stderr or "", proc.returncode

    def cancel_running_command(self) -> bool:
        """Kill the foreground command and its process group."""
        proc = self._active_process
        if proc and proc.poll() is None:
            self._kill_process(proc)
            return True
        return False

    # ------------------------------------------------------------------
    # Background processes
    # ------------------------------------------------------------------

    def start_background(self, command: str, cwd: str = ".") -> BackgroundProcess:
        """Start a long-running command and collect its merged output on a reader thread."""
        proc = subprocess.Popen(
            command, shell=True, cwd=self._cwd(cwd),
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True,
            bufsize=1, preexec_fn=os.setsid,
        )
        bg = BackgroundProcess(pid=proc.pid, command=command, started_at=time.time(), proc=proc)

        def _reader():
            size = 0
            for line in proc.stdout:
                if size < _BACKGROUND_OUTPUT_LIMIT:
                    bg.output.append(line)
                    size += len(line)
            proc.stdout.close()

        threading.Thread(target=_reader, daemon=True).start()
        with self._bg_lock:
            self._background[proc.pid] = bg
        logger.info(f"Started background process {proc.pid}: {command}")
        return bg

    def get_background(self, pid: int) -> Optional[BackgroundProcess]:
        with self._bg_lock:
            return self._background.get(pid)

    def stop_background(self, pid: int) -> bool:
        with self._bg_lock:
            bg = self._background.pop(pid, None)
        if bg is None:
            return False
        if bg.running:
            self._kill_process(bg.proc)
            try:
                bg.proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning(f"Background process {pid} did not exit after kill")
        logger.info(f"Stopped background process {pid}")
        return True

    def stop_all_background(self) -> int:
        with self._bg_lock:
            pids = list(self._background)
        return sum(1 for pid in pids if self.stop_background(pid))

    @staticmethod
    def _kill_process(proc: subprocess.Popen) -> None:
        """SIGTERM the process group, then kill the leader."""
        try:
            os.killpg(os.getpgid(proc.pid), signal.SIGTERM)
        except (ProcessLookupError, OSError):
            pass
        try:
            proc.kill()
        except (ProcessLookupError, OSError):
            pass
