"""
File lock coordination between in-flight agent runs.

Writers to the same path are serialized: the first session to ask holds the
lock, later sessions queue FIFO and are handed the lock on release. A session
re-entering a path it already holds proceeds immediately.
"""

import asyncio
import inspect
import logging
import os
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class LockOutcome(Enum):
    ACQUIRED = "acquired"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"  # the waiter was dropped by release_all


@dataclass
class _Waiter:
    session_id: str
    operation: str
    future: "asyncio.Future[bool]"
    queued_at: float = field(default_factory=time.time)


@dataclass
class FileLock:
    session_id: str
    path: str
    operation: str
    acquired_at: float = field(default_factory=time.time)
    depth: int = 1
    waiters: Deque[_Waiter] = field(default_factory=deque)


def normalize_path(path: str) -> str:
    return os.path.normcase(os.path.realpath(os.path.abspath(os.path.expanduser(path))))


class FileLockCoordinator:
    """Per-path writer locks shared by every orchestrator that should contend.

    All methods must be called from the same event loop.
    """

    def __init__(self, default_timeout: float = 30.0):
        self.default_timeout = default_timeout
        self._locks: Dict[str, FileLock] = {}

    async def acquire(
        self,
        session_id: str,
        path: str,
        operation: str = "write",
        timeout: Optional[float] = None,
        on_wait: Optional[Callable[[str], Any]] = None,
    ) -> LockOutcome:
        """Acquire the lock for path. timeout <= 0 waits indefinitely.

        on_wait(holder_session_id) is called (and awaited if it returns an
        awaitable) once, when the caller has to queue.
        """
        key = normalize_path(path)
        lock = self._locks.get(key)
        if lock is None:
            self._locks[key] = FileLock(session_id=session_id, path=key, operation=operation)
            return LockOutcome.ACQUIRED
        if lock.session_id == session_id:
            lock.depth += 1
            return LockOutcome.ACQUIRED

        waiter = _Waiter(session_id=session_id, operation=operation,
                         future=asyncio.get_running_loop().create_future())
        lock.waiters.append(waiter)
        logger.info(f"Session {session_id} waiting for {key} (held by {lock.session_id}, "
                    f"{len(lock.waiters)} in queue)")
        if on_wait is not None:
            maybe = on_wait(lock.session_id)
            if inspect.isawaitable(maybe):
                await maybe

        if timeout is None:
            timeout = self.default_timeout
        try:
            if timeout and timeout > 0:
                granted = await asyncio.wait_for(waiter.future, timeout)
            else:
                granted = await waiter.future
        except asyncio.TimeoutError:
            self._drop_waiter(key, waiter)
            logger.warning(f"Session {session_id} timed out after {timeout}s waiting for {key}")
            return LockOutcome.TIMEOUT
        except asyncio.CancelledError:
            self._drop_waiter(key, waiter)
            # Handed the lock just as we were cancelled: give it back
            current = self._locks.get(key)
            if current is not None and current.session_id == session_id:
                self._handoff(key)
            raise
        return LockOutcome.ACQUIRED if granted else LockOutcome.CANCELLED

    def _drop_waiter(self, key: str, waiter: _Waiter) -> None:
        lock = self._locks.get(key)
        if lock is not None and waiter in lock.waiters:
            lock.waiters.remove(waiter)

    def _handoff(self, key: str) -> None:
        """Pass the lock at key to the next live waiter, or remove it."""
        lock = self._locks.get(key)
        if lock is None:
            return
        while lock.waiters:
            nxt = lock.waiters.popleft()
            if nxt.future.done():
                continue
            self._locks[key] = FileLock(session_id=nxt.session_id, path=key, operation=nxt.operation,
                                        waiters=lock.waiters)
            nxt.future.set_result(True)
            logger.info(f"Lock on {key} handed to session {nxt.session_id}")
            return
        del self._locks[key]

    def release(self, session_id: str, path: str) -> bool:
        """Release one hold on path. Returns False if session does not hold it."""
        key = normalize_path(path)
        lock = self._locks.get(key)
        if lock is None or lock.session_id != session_id:
            return False
        lock.depth -= 1
        if lock.depth <= 0:
            self._handoff(key)
        return True

    def release_all(self, session_id: str) -> int:
        """Release every lock held by session and drop it from every wait queue."""
        released = 0
        for key in list(self._locks):
            lock = self._locks.get(key)
            if lock is None:
                continue
            for waiter in [w for w in lock.waiters if w.session_id == session_id]:
                lock.waiters.remove(waiter)
                if not waiter.future.done():
                    waiter.future.set_result(False)
            if lock.session_id == session_id:
                self._handoff(key)
                released += 1
        if released:
            logger.info(f"Released {released} file lock(s) held by session {session_id}")
        return released

    def holder(self, path: str) -> Optional[str]:
        lock = self._locks.get(normalize_path(path))
        return lock.session_id if lock else None

    def locked_paths(self, session_id: Optional[str] = None) -> List[str]:
        return sorted(k for k, lock in self._locks.items()
                      if session_id is None or lock.session_id == session_id)

    def waiting_sessions(self) -> Dict[str, str]:
        """session id -> path for every queued waiter."""
        return {w.session_id: key for key, lock in self._locks.items() for w in lock.waiters}
