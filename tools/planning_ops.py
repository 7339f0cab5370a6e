"""Planning tools: goal/checklist tracking, implementation plans, and a per-run scratchpad."""

import json
import logging
import os
import re
import uuid
from typing import Any, List, Optional, Tuple, Union

from tools._common import ToolResult, ToolContext

logger = logging.getLogger(__name__)


def _parse_tasks(tasks: Union[str, List[Any], None]) -> Optional[List[str]]:
    """Accept a list, a JSON array string, or a newline/comma separated string."""
    if tasks is None or tasks == "":
        return None
    if isinstance(tasks, list):
        return [str(t).strip() for t in tasks if str(t).strip()]
    text = str(tasks).strip()
    try:
        parsed = json.loads(text)
        if isinstance(parsed, list):
            return [str(t).strip() for t in parsed if str(t).strip()]
    except json.JSONDecodeError:
        pass
    cleaned = text.strip("[]")
    if "\n" in cleaned:
        return [t.strip() for t in cleaned.split("\n") if t.strip()]
    if "," in cleaned:
        return [t.strip().strip('"').strip() for t in cleaned.split(",") if t.strip().strip('"').strip()]
    return [cleaned] if cleaned else None


def _int_or_none(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def plan_and_track(goal: Optional[str] = None, tasks: Union[str, List[Any], None] = None,
                   start_task: Any = None, complete_task: Any = None, task_note: Optional[str] = None,
                   context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Set the goal and task checklist, or mark a task started/complete."""
    checklist = getattr(context, "checklist", None)
    if checklist is None:
        return ToolResult(success=False, output="", error="No checklist is attached to this run")

    start_id = _int_or_none(start_task)
    if start_id is not None:
        checklist.mark_in_progress(start_id)
        return ToolResult(success=True, output=f"Started task {start_id}.\n\nCurrent checklist:\n{checklist.display_string}")

    complete_id = _int_or_none(complete_task)
    if complete_id is not None:
        checklist.mark_completed(complete_id, task_note or None)
        return ToolResult(success=True,
                          output=f"Marked task {complete_id} complete.\n\nCurrent checklist:\n{checklist.display_string}")

    if not (goal or "").strip():
        return ToolResult(success=False, output="",
                          error="Missing required argument: goal. Provide a clear, actionable goal statement.")

    task_list = _parse_tasks(tasks)
    checklist.set_goal(goal.strip(), task_list or [])
    response = f"Goal set: {goal.strip()}"
    if task_list:
        response += f"\n\nTask checklist created with {len(task_list)} items:"
        for idx, task in enumerate(task_list, 1):
            response += f"\n  {idx}. {task}"
    logger.info(f"Checklist set: {goal.strip()} ({len(task_list or [])} tasks)")
    return ToolResult(success=True, output=response)


_CHECKBOX_RE = re.compile(r"^\s*[-*]\s+\[( |x|X)\]\s+(.+?)\s*$")


def extract_checklist_entries(content: str) -> List[Tuple[str, bool]]:
    """Pull '- [ ] item' / '- [x] item' lines out of a markdown plan as (description, checked)."""
    entries = []
    for line in content.splitlines():
        m = _CHECKBOX_RE.match(line)
        if m and m.group(2).strip():
            entries.append((m.group(2).strip(), m.group(1) in ("x", "X")))
    return entries


def extract_checklist_items(content: str) -> List[str]:
    return [desc for desc, _ in extract_checklist_entries(content)]


def create_plan(title: str, content: str, context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Record an implementation plan; the trailing checklist seeds a later build run."""
    if not (title or "").strip():
        return ToolResult(success=False, output="",
                          error="Missing required argument: title. Provide a clear, descriptive title for the plan.")
    if not (content or "").strip():
        return ToolResult(success=False, output="",
                          error="Missing required argument: content. Provide the full markdown plan.")
    items = extract_checklist_items(content)
    if not items:
        return ToolResult(success=False, output="",
                          error="Plan content must include a checklist with '- [ ]' items.")

    plan_id = uuid.uuid4().hex
    document = f"# {title.strip()}\n\n{content.strip()}\n"
    if context is not None:
        context.plans[plan_id] = document
        if context.plans_dir:
            os.makedirs(context.plans_dir, exist_ok=True)
            path = os.path.join(context.plans_dir, f"{plan_id}.md")
            with open(path, "w", encoding="utf-8") as f:
                f.write(document)
    logger.info(f"Plan created {plan_id}: {title.strip()} ({len(items)} checklist items)")
    return ToolResult(success=True, output=(
        f"PLAN CREATED\n\nPlan ID: {plan_id}\nTitle: {title.strip()}\n"
        f"Checklist items: {len(items)}\n\n"
        "Planning is complete. Stop here; the user will review the plan and start a build run."
    ))


def memory(action: str, key: Optional[str] = None, value: Optional[str] = None,
           context: Optional[ToolContext] = None, **kw: Any) -> ToolResult:
    """Save, recall or list notes for the rest of the run."""
    action = (action or "").strip().lower()
    store = context.memory if context is not None else {}
    if action == "save":
        if not key:
            return ToolResult(success=False, output="", error="Missing required argument: key")
        if value is None:
            return ToolResult(success=False, output="", error="Missing required argument: value")
        store[key] = str(value)
        return ToolResult(success=True, output=f"Saved '{key}'")
    if action == "recall":
        if not key:
            return ToolResult(success=False, output="", error="Missing required argument: key")
        if key in store:
            return ToolResult(success=True, output=store[key])
        return ToolResult(success=True, output=f"No value stored for '{key}'")
    if action == "list":
        if not store:
            return ToolResult(success=True, output="No stored memories")
        return ToolResult(success=True, output=f"Stored keys: {', '.join(sorted(store))}")
    if not action:
        return ToolResult(success=False, output="", error="Missing required argument: action (save/recall/list)")
    return ToolResult(success=False, output="", error=f"Unknown action: {action}. Use save/recall/list")
