"""
Agent modes (what the agent may do) and profiles (how it approaches the work),
plus the selector that retargets the active profile in auto mode.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .decisions import DecisionCaller
from .events import AgentEvent
from .prompts import (
    profile_system_addition, profile_planning_guidance, profile_reflection_prompt,
    profile_analysis_prompt,
)

logger = logging.getLogger(__name__)


class AgentMode(Enum):
    SCOUT = "scout"
    NAVIGATOR = "navigator"
    COPILOT = "copilot"
    PILOT = "pilot"

    @property
    def can_write_files(self) -> bool:
        return self in (AgentMode.COPILOT, AgentMode.PILOT)

    @property
    def can_execute_shell(self) -> bool:
        return self is AgentMode.PILOT

    @property
    def can_create_plans(self) -> bool:
        return self is AgentMode.NAVIGATOR

    @property
    def is_read_only(self) -> bool:
        return not self.can_write_files

    @property
    def description(self) -> str:
        return {
            AgentMode.SCOUT: "Read-only exploration",
            AgentMode.NAVIGATOR: "Create implementation plans",
            AgentMode.COPILOT: "File operations, no shell",
            AgentMode.PILOT: "Full autonomous agent",
        }[self]

    @classmethod
    def from_string(cls, value: str) -> Optional["AgentMode"]:
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None


class AgentProfile(Enum):
    AUTO = "auto"
    GENERAL = "general"
    CODING = "coding"
    CODE_REVIEW = "code_review"
    TESTING = "testing"
    DEBUGGING = "debugging"
    SECURITY = "security"
    REFACTORING = "refactoring"
    DEVOPS = "devops"
    DOCUMENTATION = "documentation"
    PRODUCT_MANAGEMENT = "product_management"

    @property
    def is_auto(self) -> bool:
        return self is AgentProfile.AUTO

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @classmethod
    def specializable(cls) -> List["AgentProfile"]:
        """Profiles auto mode may switch between (general is the fallback)."""
        return [p for p in cls if p not in (cls.AUTO, cls.GENERAL)]

    @classmethod
    def from_string(cls, value: str) -> Optional["AgentProfile"]:
        if not value:
            return None
        # camelCase -> snake_case, then normalize separators
        snake = re.sub(r"(?<=[a-z])(?=[A-Z])", "_", value.strip())
        key = re.sub(r"[\s\-]+", "_", snake).lower()
        return _ALIASES.get(key)

    def system_prompt_addition(self, mode: AgentMode) -> str:
        return profile_system_addition(self.value, mode is AgentMode.SCOUT)

    def planning_guidance(self, mode: AgentMode) -> str:
        base = AgentProfile.GENERAL if self.is_auto else self
        return profile_planning_guidance(base.value, mode is AgentMode.SCOUT)

    def reflection_prompt(self, mode: AgentMode) -> str:
        base = AgentProfile.GENERAL if self.is_auto else self
        return profile_reflection_prompt(base.value)


_DESCRIPTIONS = {
    AgentProfile.AUTO: "Automatically adapts profile based on task",
    AgentProfile.GENERAL: "Balanced general-purpose assistant",
    AgentProfile.CODING: "Code quality, architecture and clean design",
    AgentProfile.CODE_REVIEW: "PR feedback, bug detection and style consistency",
    AgentProfile.TESTING: "Test coverage, TDD and quality assurance",
    AgentProfile.DEBUGGING: "Root cause analysis and systematic bug hunting",
    AgentProfile.SECURITY: "Vulnerability analysis and secure coding",
    AgentProfile.REFACTORING: "Code smell detection and incremental improvement",
    AgentProfile.DEVOPS: "Infrastructure and safety focus",
    AgentProfile.DOCUMENTATION: "Content quality and clarity focus",
    AgentProfile.PRODUCT_MANAGEMENT: "User value and requirements focus",
}

_ALIASES = {p.value: p for p in AgentProfile}
_ALIASES.update({
    "codereview": AgentProfile.CODE_REVIEW,
    "review": AgentProfile.CODE_REVIEW,
    "code": AgentProfile.CODING,
    "test": AgentProfile.TESTING,
    "tests": AgentProfile.TESTING,
    "debug": AgentProfile.DEBUGGING,
    "sec": AgentProfile.SECURITY,
    "refactor": AgentProfile.REFACTORING,
    "ops": AgentProfile.DEVOPS,
    "dev_ops": AgentProfile.DEVOPS,
    "docs": AgentProfile.DOCUMENTATION,
    "doc": AgentProfile.DOCUMENTATION,
    "productmanagement": AgentProfile.PRODUCT_MANAGEMENT,
    "pm": AgentProfile.PRODUCT_MANAGEMENT,
})


@dataclass(frozen=True)
class ProfileAnalysis:
    profile: AgentProfile
    reason: str
    confidence: str


class ProfileSelector:
    """Tracks the selected and active profile of a run.

    The active profile only differs from the selected one in auto mode,
    where analyze() + switch_if_needed() retarget it as work progresses.
    """

    def __init__(
        self,
        selected: AgentProfile,
        decisions: DecisionCaller,
        context_log: List[str],
        on_event: Optional[Callable[[AgentEvent], Awaitable[None]]] = None,
    ):
        self.selected = selected
        self.active = AgentProfile.GENERAL if selected.is_auto else selected
        self.decisions = decisions
        self.context_log = context_log
        self.on_event = on_event

    @property
    def is_auto(self) -> bool:
        return self.selected.is_auto

    def reset(self) -> None:
        self.active = AgentProfile.GENERAL if self.selected.is_auto else self.selected

    async def analyze(self, task: str, next_tasks: Optional[List[str]] = None,
                      recent_context: str = "") -> Optional[ProfileAnalysis]:
        """Ask which profile fits the work. None means keep the current one."""
        options = [(p.value, p.description) for p in AgentProfile.specializable()]
        prompt = profile_analysis_prompt(options, self.active.value, task, next_tasks or [], recent_context)
        result = await self.decisions.call_json(prompt)
        logger.debug(f"Profile analysis result: {result.raw}")
        suggested = AgentProfile.from_string(result.suggested_profile or "")
        if suggested is None or suggested.is_auto:
            logger.debug("Could not parse suggested profile from response")
            return None
        confidence = (result.confidence or "medium").strip().lower()
        if confidence == "low" or suggested is self.active:
            return None
        return ProfileAnalysis(profile=suggested, reason=result.reason or "Task analysis", confidence=confidence)

    async def switch_if_needed(self, new_profile: AgentProfile, reason: str) -> bool:
        if not self.is_auto or new_profile is self.active:
            return False
        previous = self.active
        self.active = new_profile
        self.context_log.append(f"PROFILE SWITCH: {previous.value} → {new_profile.value} ({reason})")
        logger.info(f"Profile switch: {previous.value} -> {new_profile.value} ({reason})")
        if self.on_event is not None:
            await self.on_event(AgentEvent(
                type="profile_switch",
                content=f"{previous.value} → {new_profile.value}",
                data={"from": previous.value, "to": new_profile.value, "reason": reason},
            ))
        return True

    async def reevaluate(self, task: str, next_tasks: Optional[List[str]] = None,
                         recent_context: str = "") -> bool:
        """analyze() then switch_if_needed(); a no-op outside auto mode."""
        if not self.is_auto:
            return False
        analysis = await self.analyze(task, next_tasks, recent_context)
        if analysis is None:
            return False
        return await self.switch_if_needed(analysis.profile, analysis.reason)
