"""
Agent event data type.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional


@dataclass
class AgentEvent:
    """Event emitted during an agent run"""
    type: str  # phase, tool_call, tool_result, tool_rejected, text, checklist, profile_switch, error, done, etc.
    content: str = ""
    data: Optional[Dict[str, Any]] = None
