"""
Session persistence for TermAI Orchestrator.
Stores message history, checkpoints and session settings as one JSON file per
session id. Writes are debounced; flush() writes everything pending at shutdown.
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from config import app_config

logger = logging.getLogger(__name__)

SESSION_VERSION = 1


@dataclass
class Session:
    """A persisted orchestrator session."""
    session_id: str = ""
    version: int = SESSION_VERSION
    title: str = ""
    working_directory: str = ""
    model_id: str = ""
    created_at: str = ""
    updated_at: str = ""
    messages: List[Dict[str, Any]] = field(default_factory=list)
    checkpoints: Dict[str, Any] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)
    checklist: Optional[Dict[str, Any]] = None
    token_usage: Dict[str, int] = field(default_factory=lambda: {"session_tokens": 0})

    @property
    def message_count(self) -> int:
        """Number of user turns in the saved conversation."""
        return sum(1 for m in self.messages if m.get("role") == "user")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            session_id=data.get("session_id", ""),
            version=data.get("version", SESSION_VERSION),
            title=data.get("title", ""),
            working_directory=data.get("working_directory", ""),
            model_id=data.get("model_id", ""),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
            messages=data.get("messages", []),
            checkpoints=data.get("checkpoints", {}),
            settings=data.get("settings", {}),
            checklist=data.get("checklist"),
            token_usage=data.get("token_usage", {"session_tokens": 0}),
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def auto_title(first_task: str) -> str:
    """Generate a session title from the first user task."""
    words = first_task.strip().split()
    title = " ".join(words[:6])
    if len(words) > 6:
        title += "..."
    return title or "Untitled"


class SessionStore:
    """
    Manages session files on disk.

    File layout:  {base_dir}/{session_id}.json

    schedule_save() coalesces bursts of writes per session into one write after
    debounce_seconds; flush() performs pending writes synchronously.
    """

    def __init__(self, base_dir: Optional[str] = None, debounce_seconds: Optional[float] = None):
        self.base_dir = base_dir or app_config.sessions_dir
        self.debounce_seconds = app_config.save_debounce_seconds if debounce_seconds is None else debounce_seconds
        os.makedirs(self.base_dir, exist_ok=True)
        self._pending: Dict[str, Session] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def save(self, session: Session) -> str:
        """Save a session to disk atomically. Returns the file path."""
        if not session.session_id:
            session.session_id = uuid.uuid4().hex[:12]
        session.updated_at = _now_iso()
        if not session.created_at:
            session.created_at = session.updated_at

        path = self._path_for(session.session_id)
        data = asdict(session)

        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp_path, path)
            logger.debug(f"Session saved: {path}")
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return path

    def schedule_save(self, session: Session) -> None:
        """Debounced save; the latest state wins."""
        if not session.session_id:
            session.session_id = uuid.uuid4().hex[:12]
        sid = session.session_id
        with self._lock:
            self._pending[sid] = session
            timer = self._timers.pop(sid, None)
            if timer is not None:
                timer.cancel()
            if self.debounce_seconds <= 0:
                timer = None
            else:
                timer = threading.Timer(self.debounce_seconds, self._flush_one, args=(sid,))
                timer.daemon = True
                self._timers[sid] = timer
        if timer is None:
            self._flush_one(sid)
        else:
            timer.start()

    def _flush_one(self, session_id: str) -> None:
        with self._lock:
            session = self._pending.pop(session_id, None)
            self._timers.pop(session_id, None)
        if session is None:
            return
        try:
            self.save(session)
        except OSError as e:
            logger.error(f"Failed to save session {session_id}: {e}")

    def flush(self) -> int:
        """Write every pending session now. Returns the number written."""
        with self._lock:
            pending = list(self._pending)
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
        for sid in pending:
            self._flush_one(sid)
        if pending:
            logger.info(f"Flushed {len(pending)} pending session write(s)")
        return len(pending)

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def load(self, session_id: str) -> Optional[Session]:
        """Load a session by ID. A pending (unsaved) state takes precedence."""
        with self._lock:
            pending = self._pending.get(session_id)
        if pending is not None:
            return pending
        path = self._path_for(session_id)
        if not os.path.exists(path):
            return None
        return self._read_file(path)

    def delete(self, session_id: str) -> bool:
        """Remove the session file and any pending write for it."""
        with self._lock:
            self._pending.pop(session_id, None)
            timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()
        path = self._path_for(session_id)
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Session deleted: {path}")
            return True
        return False

    def list_sessions(self, working_directory: Optional[str] = None) -> List[Session]:
        """List sessions, newest first, optionally only those for a working directory."""
        wd = os.path.abspath(working_directory) if working_directory else None
        sessions: List[Session] = []
        for fname in os.listdir(self.base_dir):
            if not fname.endswith(".json"):
                continue
            sess = self._read_file(os.path.join(self.base_dir, fname))
            if sess and (wd is None or sess.working_directory == wd):
                sessions.append(sess)
        sessions.sort(key=lambda s: s.updated_at or "", reverse=True)
        return sessions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def create_session(self, working_directory: str, model_id: str, title: str = "",
                       session_id: Optional[str] = None) -> Session:
        """New in-memory session; nothing is written until save or schedule_save."""
        now = _now_iso()
        return Session(
            session_id=session_id or uuid.uuid4().hex[:12],
            title=title,
            working_directory=os.path.abspath(working_directory),
            model_id=model_id,
            created_at=now,
            updated_at=now,
        )

    def _path_for(self, session_id: str) -> str:
        return os.path.join(self.base_dir, f"{session_id}.json")

    def _read_file(self, path: str) -> Optional[Session]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Session.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read session {path}: {e}")
            return None
