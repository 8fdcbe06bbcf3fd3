"""Translation of conversation log events into session updates.

Assistant text is relayed from the live stdout stream; the log only
contributes the tool-call lifecycle and plans. Assistant ``content`` in the
log is therefore ignored here so the same text is never shown twice.
"""

from __future__ import annotations

import re
import uuid
from typing import Any

import structlog
from acp import plan_entry, start_tool_call, text_block, tool_content, update_plan, update_tool_call
from acp.schema import TerminalToolCallContent, ToolCallLocation

from autohand_acp.models import ConversationEvent, ToolCallDescriptor, ToolCallStatus, ToolKind
from autohand_acp.session import Session, ToolCallRecord

logger = structlog.get_logger(__name__)

TOOL_KIND_MAP: dict[str, ToolKind] = {
    "read_file": ToolKind.READ,
    "list_tree": ToolKind.READ,
    "file_stats": ToolKind.READ,
    "search": ToolKind.SEARCH,
    "search_with_context": ToolKind.SEARCH,
    "semantic_search": ToolKind.SEARCH,
    "write_file": ToolKind.EDIT,
    "append_file": ToolKind.EDIT,
    "apply_patch": ToolKind.EDIT,
    "format_file": ToolKind.EDIT,
    "replace_in_file": ToolKind.EDIT,
    "search_replace": ToolKind.EDIT,
    "create_directory": ToolKind.EDIT,
    "rename_path": ToolKind.MOVE,
    "copy_path": ToolKind.MOVE,
    "delete_path": ToolKind.DELETE,
    "run_command": ToolKind.EXECUTE,
    "git_status": ToolKind.EXECUTE,
    "git_diff": ToolKind.EXECUTE,
    "git_commit": ToolKind.EXECUTE,
    "git_add": ToolKind.EXECUTE,
    "git_init": ToolKind.EXECUTE,
    "git_log": ToolKind.EXECUTE,
    "git_list_untracked": ToolKind.EXECUTE,
    "todo_write": ToolKind.THINK,
    "plan": ToolKind.THINK,
    "smart_context_cropper": ToolKind.THINK,
    "save_memory": ToolKind.OTHER,
    "recall_memory": ToolKind.OTHER,
    "tools_registry": ToolKind.OTHER,
}

TOOL_DISPLAY_NAMES: dict[str, str] = {
    "read_file": "Read",
    "list_tree": "List",
    "file_stats": "Stats",
    "search": "Search",
    "search_with_context": "Search",
    "semantic_search": "Search",
    "write_file": "Write",
    "append_file": "Append",
    "apply_patch": "Patch",
    "format_file": "Format",
    "replace_in_file": "Replace",
    "search_replace": "Replace",
    "create_directory": "Create",
    "rename_path": "Rename",
    "copy_path": "Copy",
    "delete_path": "Delete",
    "run_command": "Run",
    "git_status": "Git Status",
    "git_diff": "Git Diff",
    "git_commit": "Git Commit",
    "git_add": "Git Add",
    "git_init": "Git Init",
    "git_log": "Git Log",
    "git_list_untracked": "Git Untracked",
    "todo_write": "Todo",
    "plan": "Plan",
    "smart_context_cropper": "Thinking",
    "save_memory": "Save Memory",
    "recall_memory": "Recall Memory",
    "tools_registry": "Tools",
}

# Tools whose output is streamed while they run.
STREAMING_TOOLS = frozenset({"run_command"})

FAILURE_PATTERN = re.compile(r"error|failed|exception", re.IGNORECASE)

PLAN_STATUSES = ("pending", "in_progress", "completed")


def tool_kind(name: str | None) -> ToolKind:
    return TOOL_KIND_MAP.get(name or "", ToolKind.OTHER)


def is_failure(output: str) -> bool:
    return FAILURE_PATTERN.search(output) is not None


def build_tool_title(tool: str, args: Any = None) -> str:
    """Display name plus the most telling argument (path, query or command)."""
    name = TOOL_DISPLAY_NAMES.get(tool, tool)
    if not isinstance(args, dict):
        return name
    if args.get("path"):
        return f"{name} {args['path']}"
    if args.get("query"):
        return f'{name} "{args["query"]}"'
    if args.get("command"):
        return f"{name} {args['command']}"
    return name


def resolve_locations(args: Any) -> list[ToolCallLocation] | None:
    if isinstance(args, dict) and isinstance(args.get("path"), str) and args["path"]:
        return [ToolCallLocation(path=args["path"])]
    return None


def normalize_plan_status(status: Any) -> str:
    return status if status in PLAN_STATUSES else "pending"


def plan_from_todo(args: Any):
    if not isinstance(args, dict) or not isinstance(args.get("tasks"), list):
        return None
    entries = []
    for task in args["tasks"]:
        if not isinstance(task, dict):
            continue
        title = str(task.get("title") or "")
        description = task.get("description")
        content = f"{title} — {description}" if description else title
        entries.append(
            plan_entry(content, priority="medium", status=normalize_plan_status(task.get("status")))
        )
    return update_plan(entries)


def plan_from_notes(args: Any):
    if not isinstance(args, dict) or not args.get("notes"):
        return None
    return update_plan([plan_entry(str(args["notes"]), priority="low", status="in_progress")])


class EventTranslator:
    """Turns conversation events into updates while keeping per-call state on the session.

    Status only moves forward: a start seen after a result, or a second
    result for the same id, produces no update.
    """

    def __init__(self, session: Session, *, terminal_output: bool = False) -> None:
        self.session = session
        self.terminal_output = terminal_output

    def translate(self, event: ConversationEvent) -> list[Any]:
        if event.role == "assistant":
            updates: list[Any] = []
            for call in event.tool_calls:
                updates.extend(self._start(call))
            return updates
        if event.role == "tool":
            if event.stream is not None:
                return self._delta(event, event.stream)
            return self._result(event)
        return []

    # ------------------------------------------------------------------
    # Tool call lifecycle
    # ------------------------------------------------------------------

    def _start(self, call: ToolCallDescriptor) -> list[Any]:
        tool = call.tool or "tool"
        call_id = call.id or str(uuid.uuid4())
        if call_id in self.session.tool_calls:
            logger.debug("Ignoring repeated tool call start", tool_call_id=call_id)
            return []

        kind = tool_kind(tool)
        title = build_tool_title(tool, call.args)
        status = ToolCallStatus.IN_PROGRESS if tool in STREAMING_TOOLS else ToolCallStatus.PENDING
        terminal = self.terminal_output and tool in STREAMING_TOOLS

        record = ToolCallRecord(tool_call_id=call_id, title=title, kind=kind, status=status, terminal=terminal)
        self.session.tool_calls[call_id] = record

        start = start_tool_call(
            tool_call_id=call_id,
            title=title,
            kind=kind.value,
            status=status.value,
            content=[TerminalToolCallContent(type="terminal", terminal_id=call_id)] if terminal else None,
            locations=resolve_locations(call.args),
            raw_input=call.args,
        )
        if terminal:
            start.field_meta = {"terminal_info": {"terminal_id": call_id, "cwd": self.session.cwd}}

        updates: list[Any] = [start]
        if tool == "todo_write":
            plan = plan_from_todo(call.args)
            if plan is not None:
                updates.append(plan)
        elif tool == "plan":
            plan = plan_from_notes(call.args)
            if plan is not None:
                updates.append(plan)
        return updates

    def _delta(self, event: ConversationEvent, stream: str) -> list[Any]:
        if not event.content:
            return []
        call_id = event.tool_call_id or str(uuid.uuid4())
        updates: list[Any] = []

        record = self.session.tool_calls.get(call_id)
        if record is None:
            record, start = self._synthesize(call_id, event.name)
            updates.append(start)
        if record.done:
            logger.debug("Ignoring output for finished tool call", tool_call_id=call_id)
            return updates

        record.advance(ToolCallStatus.IN_PROGRESS)
        self.session.streaming.add(call_id)

        if record.terminal:
            update = update_tool_call(tool_call_id=call_id, status=ToolCallStatus.IN_PROGRESS.value)
            update.field_meta = {
                "terminal_output": {"terminal_id": call_id, "data": event.content, "stream": stream}
            }
            updates.append(update)
            return updates

        record.output += event.content
        updates.append(
            update_tool_call(
                tool_call_id=call_id,
                status=ToolCallStatus.IN_PROGRESS.value,
                content=[tool_content(text_block(record.output))],
            )
        )
        return updates

    def _result(self, event: ConversationEvent) -> list[Any]:
        call_id = event.tool_call_id or str(uuid.uuid4())
        output = event.content
        updates: list[Any] = []

        record = self.session.tool_calls.get(call_id)
        if record is None:
            record, start = self._synthesize(call_id, event.name)
            updates.append(start)
        if record.done:
            logger.debug("Ignoring repeated tool call result", tool_call_id=call_id)
            return updates

        streaming = call_id in self.session.streaming
        if record.terminal and streaming:
            text = None
        elif streaming:
            text = record.output or output
        else:
            text = output

        status = ToolCallStatus.FAILED if is_failure(output) else ToolCallStatus.COMPLETED
        record.advance(status)
        updates.append(
            update_tool_call(
                tool_call_id=call_id,
                status=status.value,
                content=[tool_content(text_block(text))] if text else None,
                raw_output=output,
            )
        )

        record.output = ""
        record.terminal = False
        self.session.streaming.discard(call_id)
        return updates

    def _synthesize(self, call_id: str, name: str | None) -> tuple[ToolCallRecord, Any]:
        """Record a call first seen through its output or result."""
        title = name or "tool"
        record = ToolCallRecord(
            tool_call_id=call_id,
            title=title,
            kind=tool_kind(name),
            status=ToolCallStatus.IN_PROGRESS,
        )
        self.session.tool_calls[call_id] = record
        logger.debug("Synthesized record for unknown tool call", tool_call_id=call_id, name=name)
        start = start_tool_call(
            tool_call_id=call_id,
            title=title,
            kind=record.kind.value,
            status=record.status.value,
        )
        return record, start
