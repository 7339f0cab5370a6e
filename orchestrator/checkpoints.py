"""
Checkpoints anchored to user messages, with rollback and branching.

A checkpoint captures the content of every file the agent touches after a
user message (first write wins), plus the shell commands it ran. Shell
commands cannot be undone; they are reported back as a warning on rollback.
"""

import base64
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from backend import Backend

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 100


@dataclass
class FileSnapshot:
    """Raw bytes of a file before its first edit. None content means nothing to restore."""
    path: str
    content_before: Optional[bytes]
    was_created: bool
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if isinstance(self.content_before, str):
            self.content_before = self.content_before.encode("utf-8")

    @property
    def file_name(self) -> str:
        return os.path.basename(self.path)

    def to_dict(self) -> Dict[str, Any]:
        encoded = None
        if self.content_before is not None:
            encoded = base64.b64encode(self.content_before).decode("ascii")
        return {
            "path": self.path,
            "content_before_b64": encoded,
            "was_created": self.was_created,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileSnapshot":
        encoded = data.get("content_before_b64")
        if encoded is not None:
            content = base64.b64decode(encoded)
        else:
            # sessions written before snapshots were stored as bytes
            content = data.get("content_before")
        return cls(
            path=data["path"],
            content_before=content,
            was_created=bool(data.get("was_created", False)),
            timestamp=float(data.get("timestamp", time.time())),
        )


@dataclass
class Checkpoint:
    """File state before the agent's edits for one user message."""
    message_index: int
    message_preview: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)
    file_snapshots: Dict[str, FileSnapshot] = field(default_factory=dict)
    shell_commands_run: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.message_preview = (self.message_preview or "")[:_PREVIEW_CHARS]

    @property
    def modified_file_count(self) -> int:
        return len(self.file_snapshots)

    @property
    def has_shell_commands(self) -> bool:
        return bool(self.shell_commands_run)

    @property
    def has_changes(self) -> bool:
        return bool(self.file_snapshots) or self.has_shell_commands

    @property
    def modified_file_paths(self) -> List[str]:
        return sorted(self.file_snapshots)

    @property
    def created_files(self) -> List[FileSnapshot]:
        return [s for s in self.file_snapshots.values() if s.was_created]

    @property
    def short_description(self) -> str:
        parts = []
        if self.file_snapshots:
            n = self.modified_file_count
            parts.append(f"{n} file{'s' if n != 1 else ''}")
        if self.shell_commands_run:
            n = len(self.shell_commands_run)
            parts.append(f"{n} command{'s' if n != 1 else ''}")
        return ", ".join(parts) if parts else "No changes"

    def record_file_change(self, path: str, content_before: Optional[Union[str, bytes]], was_created: bool) -> bool:
        """Capture the pre-edit state of path. Returns False if it was already captured."""
        if path in self.file_snapshots:
            return False
        self.file_snapshots[path] = FileSnapshot(path=path, content_before=content_before, was_created=was_created)
        return True

    def record_shell_command(self, command: str) -> None:
        self.shell_commands_run.append(command)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "message_index": self.message_index,
            "message_preview": self.message_preview,
            "timestamp": self.timestamp,
            "file_snapshots": {p: s.to_dict() for p, s in self.file_snapshots.items()},
            "shell_commands_run": list(self.shell_commands_run),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            id=data.get("id") or uuid.uuid4().hex,
            message_index=int(data["message_index"]),
            message_preview=data.get("message_preview", ""),
            timestamp=float(data.get("timestamp", time.time())),
            file_snapshots={
                p: FileSnapshot.from_dict(s) for p, s in (data.get("file_snapshots") or {}).items()
            },
            shell_commands_run=list(data.get("shell_commands_run") or []),
        )


@dataclass
class RollbackResult:
    success: bool
    restored_files: List[str] = field(default_factory=list)
    failed_files: List[Tuple[str, str]] = field(default_factory=list)
    messages_removed: int = 0
    shell_commands_warning: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.success

    @property
    def summary(self) -> str:
        parts = []
        if self.restored_files:
            parts.append(f"Restored {len(self.restored_files)} file(s)")
        if self.failed_files:
            parts.append(f"Failed to restore {len(self.failed_files)} file(s)")
        if self.messages_removed > 0:
            parts.append(f"Removed {self.messages_removed} message(s)")
        return ". ".join(parts) if parts else "No changes made"


@dataclass(frozen=True)
class CheckpointAction:
    """What the user chose to do with a checkpoint.

    kind: rollback | edit_and_rollback | edit_and_keep_changes
    """
    kind: str
    new_prompt: Optional[str] = None

    @classmethod
    def rollback(cls) -> "CheckpointAction":
        return cls("rollback")

    @classmethod
    def edit_and_rollback(cls, new_prompt: str) -> "CheckpointAction":
        return cls("edit_and_rollback", new_prompt)

    @classmethod
    def edit_and_keep_changes(cls, new_prompt: str) -> "CheckpointAction":
        return cls("edit_and_keep_changes", new_prompt)

    @property
    def restores_files(self) -> bool:
        return self.kind in ("rollback", "edit_and_rollback")


class CheckpointStore:
    """Checkpoints of one session.

    Exactly one checkpoint is current (accepting records) at a time. It is
    sealed by finalize_current(), and kept only if it recorded something.
    """

    def __init__(self, backend: Backend):
        self.backend = backend
        self.checkpoints: List[Checkpoint] = []
        self.current: Optional[Checkpoint] = None

    def create_checkpoint(self, message_index: int, message_preview: str) -> Checkpoint:
        self.finalize_current()
        self.current = Checkpoint(message_index=message_index, message_preview=message_preview)
        logger.debug(f"Created checkpoint at message index {message_index}")
        return self.current

    def record_file_change(self, path: str, content_before: Optional[Union[str, bytes]], was_created: bool) -> bool:
        if self.current is None:
            logger.debug(f"No current checkpoint; file change not recorded for {path}")
            return False
        return self.current.record_file_change(path, content_before, was_created)

    def snapshot_file(self, path: str) -> bool:
        """Record the current on-disk state of path before it is modified."""
        if self.current is None:
            return False
        full = self.backend.resolve_path(path)
        if full in self.current.file_snapshots:
            return False
        try:
            if not self.backend.is_file(full):
                return self.record_file_change(full, None, was_created=True)
            content = self.backend.read_bytes(full)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not snapshot {full}: {e}")
            return False
        return self.record_file_change(full, content, was_created=False)

    def record_shell_command(self, command: str) -> None:
        if self.current is None:
            return
        self.current.record_shell_command(command)

    def finalize_current(self) -> Optional[Checkpoint]:
        """Seal the current checkpoint. Returns it if it was kept."""
        cp = self.current
        self.current = None
        if cp is None:
            return None
        if not cp.has_changes:
            logger.debug(f"Discarding empty checkpoint at message index {cp.message_index}")
            return None
        self.checkpoints.append(cp)
        logger.info(f"Finalized checkpoint: {cp.short_description} (message {cp.message_index})")
        return cp

    def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        for cp in self.checkpoints:
            if cp.id == checkpoint_id:
                return cp
        if self.current is not None and self.current.id == checkpoint_id:
            return self.current
        return None

    def changes_since(self, checkpoint: Checkpoint) -> Tuple[Dict[str, FileSnapshot], List[str]]:
        """Files and commands touched from checkpoint onwards; earliest snapshot per path."""
        files = dict(checkpoint.file_snapshots)
        commands = list(checkpoint.shell_commands_run)
        later = [cp for cp in self.checkpoints if cp.message_index > checkpoint.message_index]
        if self.current is not None and self.current is not checkpoint \
                and self.current.message_index > checkpoint.message_index:
            later.append(self.current)
        for cp in sorted(later, key=lambda c: c.message_index):
            for path, snap in cp.file_snapshots.items():
                files.setdefault(path, snap)
            commands.extend(cp.shell_commands_run)
        return files, commands

    def _restore(self, snap: FileSnapshot) -> bool:
        """Put one file back. Returns True if anything was written or deleted."""
        if snap.was_created:
            if self.backend.file_exists(snap.path):
                self.backend.remove_file(snap.path)
                logger.debug(f"Deleted created file: {snap.path}")
                return True
            return False
        if snap.content_before is not None:
            self.backend.write_bytes(snap.path, snap.content_before)
            logger.debug(f"Restored file: {snap.path}")
            return True
        return False

    def _drop_from(self, checkpoint: Checkpoint) -> None:
        self.checkpoints = [cp for cp in self.checkpoints if cp.message_index < checkpoint.message_index]
        self.current = None

    def rollback(
        self,
        checkpoint: Checkpoint,
        remove_anchor_message: bool = False,
        messages: Optional[List[Any]] = None,
    ) -> RollbackResult:
        """Restore every file touched since checkpoint and truncate messages in place.

        Every snapshot is attempted; failures are collected, not raised.
        """
        files, commands = self.changes_since(checkpoint)
        restored: List[str] = []
        failed: List[Tuple[str, str]] = []
        for path in sorted(files):
            try:
                if self._restore(files[path]):
                    restored.append(path)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to revert {path}: {e}")
                failed.append((path, str(e)))

        removed = 0
        if messages is not None:
            target = checkpoint.message_index if remove_anchor_message else checkpoint.message_index + 1
            target = max(0, target)
            if len(messages) > target:
                removed = len(messages) - target
                del messages[target:]

        self._drop_from(checkpoint)
        result = RollbackResult(
            success=not failed,
            restored_files=restored,
            failed_files=failed,
            messages_removed=removed,
            shell_commands_warning=commands,
        )
        logger.info(f"Rollback completed: {result.summary}")
        return result

    def branch(self, checkpoint: Checkpoint, new_prompt: str, messages: Optional[List[Any]] = None) -> int:
        """Fork at checkpoint without touching files. Returns the number of messages dropped."""
        removed = 0
        if messages is not None and len(messages) > checkpoint.message_index:
            removed = len(messages) - checkpoint.message_index
            del messages[checkpoint.message_index:]
        self._drop_from(checkpoint)
        logger.info(f"Branched from checkpoint at message {checkpoint.message_index}: {new_prompt[:50]!r}")
        return removed

    def preview(self, checkpoint: Checkpoint, message_count: int) -> Tuple[List[FileSnapshot], List[str], int]:
        """(files to restore, non-undoable commands, messages to remove) for a rollback."""
        files, commands = self.changes_since(checkpoint)
        to_remove = max(0, message_count - (checkpoint.message_index + 1))
        return [files[p] for p in sorted(files)], commands, to_remove

    def clear(self) -> None:
        self.checkpoints = []
        self.current = None

    def to_dict(self) -> Dict[str, Any]:
        return {"checkpoints": [cp.to_dict() for cp in self.checkpoints]}

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.checkpoints = [Checkpoint.from_dict(d) for d in (data or {}).get("checkpoints", [])]
        self.current = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], backend: Backend) -> "CheckpointStore":
        store = cls(backend)
        store.load_dict(data)
        return store
