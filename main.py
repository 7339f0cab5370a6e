"""
TermAI Orchestrator - an autonomous coding agent powered by Amazon Bedrock.
Command-line front end built with Rich.
"""

import asyncio
import argparse
import logging
import os
import signal
import sys
from typing import Any, Dict

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from backend import LocalBackend
from bedrock_service import BedrockService, BedrockError
from config import agent_settings, app_config, get_credentials_info, get_model_name, model_config
from orchestrator import AgentEvent, AgentMode, AgentOrchestrator, AgentProfile, CheckpointAction, TaskChecklist
from sessions import SessionStore

# Log to a file so records don't interleave with console output
logging.basicConfig(
    filename=app_config.log_file,
    level=app_config.effective_log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

console = Console()

TOOL_ICONS = {
    "read_file":      "\U0001f4c4 ",
    "write_file":     "✏️ ",
    "edit_file":      "\U0001f527 ",
    "shell":          "▶ ",
    "run_background": "▶ ",
    "search_files":   "\U0001f50d ",
    "list_dir":       "\U0001f4c2 ",
    "http_request":   "\U0001f310 ",
}


# ============================================================
# Rendering
# ============================================================

def checklist_table(checklist: TaskChecklist) -> Table:
    table = Table(title=checklist.goal_description or "Tasks", show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="#58a6ff")
    table.add_column("Status", justify="center")
    table.add_column("Task")
    table.add_column("Note", style="#8b949e")
    for item in checklist.items:
        table.add_row(str(item.id), item.status.emoji, rich_escape(item.description),
                      rich_escape(item.verification_note or ""))
    table.caption = f"{checklist.completed_count}/{len(checklist.items)} done ({checklist.progress_percent}%)"
    return table


def _preview(text: str, limit: int = 400) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else text[:limit] + "…"


class EventRenderer:
    """Prints orchestrator events to the console."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    async def __call__(self, event: AgentEvent) -> None:
        data: Dict[str, Any] = event.data or {}
        kind = event.type

        if kind == "phase":
            if self.verbose:
                console.print(f"[#6e7681]· {rich_escape(event.content)}[/#6e7681]")
        elif kind == "tool_call":
            icon = TOOL_ICONS.get(event.content, "• ")
            args = data.get("input") or {}
            detail = args.get("path") or args.get("command") or args.get("url") or ""
            console.print(f"   {icon}[bold]{rich_escape(event.content)}[/bold] [#8b949e]{rich_escape(str(detail))}[/#8b949e]")
        elif kind == "tool_result":
            if data.get("success"):
                if self.verbose and event.content:
                    console.print(f"     [#6e7681]{rich_escape(_preview(event.content, 200))}[/#6e7681]")
            else:
                console.print(f"     [#f85149]✗ {rich_escape(_preview(event.content, 300))}[/#f85149]")
        elif kind == "tool_rejected":
            console.print(f"   [#e3b341]⊘ Rejected {rich_escape(event.content)}[/#e3b341]")
        elif kind == "text":
            if event.content:
                console.print(f"\n[#c9d1d9]{rich_escape(event.content)}[/#c9d1d9]")
        elif kind == "checklist":
            if event.content:
                console.print(f"[#8b949e]{rich_escape(event.content)}[/#8b949e]")
        elif kind == "profile_switch":
            console.print(f"   [#58a6ff]↻ Profile: {rich_escape(event.content)}[/#58a6ff]")
        elif kind == "waiting_for_lock":
            console.print(f"   [#e3b341]⏳ Waiting for lock on {rich_escape(event.content)}[/#e3b341]")
        elif kind == "context_summarized":
            console.print(f"   [#8957e5]⧖ {rich_escape(event.content)}[/#8957e5]")
        elif kind in ("stuck", "verification", "reflection"):
            if event.content:
                console.print(f"   [#e3b341]⚠ {kind}: {rich_escape(event.content)}[/#e3b341]")
        elif kind == "feedback_applied":
            console.print("   [#3fb950]✓ Feedback applied[/#3fb950]")
        elif kind == "error":
            console.print(f"\n   [bold #f85149]✗ {rich_escape(event.content)}[/bold #f85149]")


async def _confirm(tool_name: str, description: str, tool_input: Dict[str, Any]) -> bool:
    prompt = f"[bold #e3b341]Allow[/bold #e3b341] {rich_escape(description)}?"
    return await asyncio.to_thread(Confirm.ask, prompt, console=console, default=False)


# ============================================================
# Commands
# ============================================================

def list_sessions(store: SessionStore, working_dir: str) -> None:
    sessions = store.list_sessions(working_dir)
    if not sessions:
        console.print("[#8b949e]No saved sessions for this directory.[/#8b949e]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="#58a6ff")
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Updated", style="#8b949e")
    for s in sessions:
        table.add_row(s.session_id, rich_escape(s.title or "Untitled"), str(s.message_count), s.updated_at[:19])
    console.print(table)


def list_checkpoints(agent: AgentOrchestrator) -> None:
    if not agent.checkpoints.checkpoints:
        console.print("[#8b949e]No checkpoints in this session.[/#8b949e]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="#58a6ff")
    table.add_column("Message", justify="right")
    table.add_column("Prompt")
    table.add_column("Changes", style="#8b949e")
    table.add_column("Files")
    for cp in agent.checkpoints.checkpoints:
        files = ", ".join(os.path.relpath(p, agent.working_directory) for p in cp.modified_file_paths)
        table.add_row(cp.id[:12], str(cp.message_index), rich_escape(cp.message_preview),
                      cp.short_description, rich_escape(files))
    console.print(table)


def rollback(agent: AgentOrchestrator, checkpoint_id: str) -> int:
    matches = [cp for cp in agent.checkpoints.checkpoints if cp.id.startswith(checkpoint_id)]
    if len(matches) != 1:
        console.print(f"[bold #f85149]✗ No unique checkpoint matches {rich_escape(checkpoint_id)}[/bold #f85149]")
        return 1
    result, _ = agent.apply_checkpoint_action(matches[0], CheckpointAction.rollback())
    for path in result.restored_files:
        console.print(f"   [#3fb950]↶[/#3fb950] {rich_escape(path)}")
    for path, err in result.failed_files:
        console.print(f"   [#f85149]✗ {rich_escape(path)}: {rich_escape(err)}[/#f85149]")
    if result.shell_commands_warning:
        console.print("[#e3b341]Shell commands cannot be undone:[/#e3b341]")
        for cmd in result.shell_commands_warning:
            console.print(f"   [#8b949e]$ {rich_escape(cmd)}[/#8b949e]")
    console.print(result.summary)
    agent.session_store.flush()
    return 0 if result.success else 1


async def run_goal(agent: AgentOrchestrator, goal: str, auto_approve: bool, verbose: bool) -> int:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, agent.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl-C will abort instead of cancel")

    console.print(f"[bold #f0f6fc]❯ [/bold #f0f6fc][#c9d1d9]{rich_escape(goal)}[/#c9d1d9]")
    try:
        result = await agent.run(
            goal,
            on_event=EventRenderer(verbose),
            request_approval=None if auto_approve else _confirm,
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    if result.checklist is not None:
        console.print(checklist_table(result.checklist))
    if result.cancelled:
        console.print("\n[#e3b341]Cancelled.[/#e3b341]")
        return 130
    if result.caveat:
        console.print(f"\n[#e3b341]⚠ {rich_escape(result.caveat)}[/#e3b341]")
    status = "[#f85149]with errors[/#f85149]" if result.error else "[#3fb950]ok[/#3fb950]"
    console.print(Panel(
        f"Finished {status} after {result.iterations} iteration(s) · "
        f"{agent.context.session_tokens_used:,} tokens · {agent.context.usage_percent:.0f}% of context · "
        f"session {agent.session_id}",
        border_style="#30363d",
    ))
    return 1 if result.error else 0


# ============================================================
# Entry Point
# ============================================================

def main():
    parser = argparse.ArgumentParser(
        description="TermAI Orchestrator - autonomous coding agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py "add a /health route"             Run in the current directory
  python main.py -d ~/app --mode scout "explain"   Read-only exploration
  python main.py --session 3f2a9c1b "continue"     Resume a saved session
  python main.py --list-sessions                   Show saved sessions
        """,
    )
    parser.add_argument("goal", nargs="?", help="What the agent should accomplish")
    parser.add_argument(
        "-d", "--directory",
        default=app_config.working_directory,
        help="Working directory for the agent (default: current directory)",
    )
    parser.add_argument("--mode", default=None, choices=[m.value for m in AgentMode],
                        help="Capability mode (default: pilot)")
    parser.add_argument("--profile", default="auto", help="Agent profile, e.g. coding, debugging, auto")
    parser.add_argument("--model", default=None, help=f"Bedrock model id (default: {model_config.model_id})")
    parser.add_argument("--max-iterations", type=int, default=None, help="Iteration cap (0 = unlimited)")
    parser.add_argument("-y", "--yes", action="store_true", help="Approve every tool call without asking")
    parser.add_argument("--session", default=None, help="Resume (or create) the session with this id")
    parser.add_argument("--list-sessions", action="store_true", help="List saved sessions and exit")
    parser.add_argument("--list-checkpoints", action="store_true", help="List checkpoints of --session and exit")
    parser.add_argument("--rollback", metavar="CHECKPOINT", default=None,
                        help="Roll --session back to a checkpoint (id prefix) and exit")
    parser.add_argument("--check", action="store_true", help="Check AWS credentials and model access, then exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show phases and tool output")

    args = parser.parse_args()

    working_dir = os.path.abspath(args.directory)
    if not os.path.isdir(working_dir):
        console.print(f"Error: {working_dir} is not a directory")
        sys.exit(1)

    store = SessionStore()
    if args.list_sessions:
        list_sessions(store, working_dir)
        return

    profile = AgentProfile.from_string(args.profile)
    if profile is None:
        console.print(f"Error: unknown profile {args.profile!r}")
        sys.exit(2)
    if args.max_iterations is not None:
        agent_settings.max_iterations = args.max_iterations

    try:
        llm = BedrockService(model_id=args.model)
    except BedrockError as e:
        console.print(f"[bold #f85149]✗ Failed to initialize: {rich_escape(str(e))}[/bold #f85149]")
        sys.exit(1)
    if args.check:
        console.print(f"[#8b949e]{get_credentials_info()}[/#8b949e]")
        ok, message = llm.test_connection()
        marker = "[#3fb950]✓[/#3fb950]" if ok else "[#f85149]✗[/#f85149]"
        console.print(f"{marker} {get_model_name(llm.model_id)}: {rich_escape(message)}")
        sys.exit(0 if ok else 1)

    agent = AgentOrchestrator(
        llm,
        settings=agent_settings,
        working_directory=working_dir,
        mode=AgentMode(args.mode or "pilot"),
        profile=profile,
        session_id=args.session,
        session_store=store,
    )
    if args.session:
        saved = store.load(args.session)
        if saved is not None:
            agent.restore_session(saved)
            if args.mode:
                agent.mode = AgentMode(args.mode)
            console.print(f"[#8b949e]Resumed session {saved.session_id}: {rich_escape(saved.title)}[/#8b949e]")

    if args.list_checkpoints:
        list_checkpoints(agent)
        return
    if args.rollback:
        sys.exit(rollback(agent, args.rollback))

    if not args.goal:
        parser.error("a goal is required")

    console.print(
        f"[bold]{app_config.title}[/bold] [#8b949e]· {get_model_name(llm.model_id)} · "
        f"{agent.mode.value} · {rich_escape(working_dir)}[/#8b949e]"
    )
    try:
        code = asyncio.run(run_goal(agent, args.goal, args.yes, args.verbose))
    finally:
        if isinstance(agent.backend, LocalBackend):
            agent.backend.stop_all_background()
        store.flush()
    sys.exit(code)


if __name__ == "__main__":
    main()
