"""
Stuck detection over the most recent shell-like commands.
"""

import os
from typing import List, Optional


class StuckDetector:
    """Flags a run whose last `window` commands are near-identical.

    Two commands are similar when their common prefix covers more than
    `similarity_threshold` of the longer of the two.
    """

    def __init__(self, window: int = 3, similarity_threshold: float = 0.7):
        self.window = max(1, window)
        self.similarity_threshold = similarity_threshold
        self.recent: List[str] = []

    def record(self, command: str) -> None:
        self.recent.append(command)
        # Enough history to evaluate a window and report it
        if len(self.recent) > self.window * 4:
            del self.recent[:-self.window * 4]

    def reset(self) -> None:
        self.recent.clear()

    @staticmethod
    def similarity(a: str, b: str) -> float:
        prefix = len(os.path.commonprefix([a, b]))
        return prefix / max(len(a), len(b), 1)

    def last_commands(self) -> List[str]:
        return self.recent[-self.window:]

    def is_stuck(self, commands: Optional[List[str]] = None) -> bool:
        cmds = self.last_commands() if commands is None else list(commands)[-self.window:]
        if len(cmds) < self.window:
            return False
        first = cmds[0]
        return all(self.similarity(cmd, first) > self.similarity_threshold for cmd in cmds)
