"""Tool registry: name lookup, per-mode availability and provider-shaped schemas."""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from backend import Backend
from tools._common import ToolResult, ToolContext
from tools.dispatch import invoke_handler
from tools.schemas import (
    TOOL_IMPLEMENTATIONS, TOOL_DEFINITIONS_BY_NAME, MODE_TOOLS,
    READ_ONLY_HTTP_MODES, READ_ONLY_HTTP_METHODS,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., ToolResult]


@dataclass
class Tool:
    name: str
    handler: ToolHandler
    schema: Dict[str, Any]

    def execute(self, args: Dict[str, Any], cwd: str = ".", backend: Optional[Backend] = None,
                context: Optional[ToolContext] = None) -> ToolResult:
        return invoke_handler(self.name, self.handler, args, cwd, backend, context)


def _mode_name(mode: Any) -> str:
    return getattr(mode, "value", mode) or "pilot"


class ToolRegistry:
    """Registry keyed by tool name. Construct one per orchestrator (or share one)."""

    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}

    @classmethod
    def default(cls) -> "ToolRegistry":
        reg = cls()
        for name, handler in TOOL_IMPLEMENTATIONS.items():
            reg.register(name, handler, TOOL_DEFINITIONS_BY_NAME[name])
        return reg

    def register(self, name: str, handler: ToolHandler, schema: Dict[str, Any]) -> None:
        self._tools[name] = Tool(name=name, handler=handler, schema=schema)

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def list_tools(self) -> List[Tool]:
        return list(self._tools.values())

    def is_available(self, name: str, mode: Any, args: Optional[Dict[str, Any]] = None) -> bool:
        """Capability gate: is this tool (with these args) allowed in the mode?"""
        if name not in self._tools:
            return False
        mode_name = _mode_name(mode)
        allowed = MODE_TOOLS.get(mode_name)
        if allowed is None:
            logger.warning(f"Unknown agent mode {mode_name!r}; treating as scout")
            allowed = MODE_TOOLS["scout"]
        if name not in allowed:
            return False
        if name == "http_request" and mode_name in READ_ONLY_HTTP_MODES and args is not None:
            method = str(args.get("method") or "GET").upper()
            return method in READ_ONLY_HTTP_METHODS
        return True

    def schemas(self, mode: Any, provider: str = "anthropic") -> List[Dict[str, Any]]:
        """Schemas for the tools available in mode, shaped for the provider."""
        out: List[Dict[str, Any]] = []
        for tool in self._tools.values():
            if not self.is_available(tool.name, mode):
                continue
            schema = copy.deepcopy(tool.schema)
            if provider == "openai":
                out.append({
                    "type": "function",
                    "function": {
                        "name": schema["name"],
                        "description": schema["description"],
                        "parameters": schema["input_schema"],
                    },
                })
            else:
                out.append(schema)
        return out
