"""Slash commands answered by the bridge without launching a prompt run."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog
from acp.schema import CurrentModeUpdate, PermissionOption, ToolCallUpdate

from autohand_acp.models import SessionIndexEntry
from autohand_acp.session import Session
from autohand_acp.settings import settings
from autohand_acp.tailer import read_session_index

logger = structlog.get_logger(__name__)

CANCEL_OPTION_ID = "__cancel__"
RESUME_LIST_LIMIT = 10


@dataclass
class ParsedCommand:
    name: str
    args: list[str] = field(default_factory=list)


def parse_slash_command(text: str) -> ParsedCommand | None:
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None
    parts = stripped[1:].split()
    if not parts:
        return ParsedCommand(name="")
    return ParsedCommand(name=parts[0].lower(), args=parts[1:])


class CommandHandler:
    """Runs a slash command for one session and reports whether it was consumed.

    Unrecognized commands return False so the text is passed to the CLI.
    ``run_resume`` continues a stored CLI session in the session workspace.
    """

    def __init__(
        self,
        session: Session,
        run_resume: Callable[[Session, str], Awaitable[None]],
    ) -> None:
        self.session = session
        self.run_resume = run_resume

    def _say(self, text: str) -> None:
        self.session.relay.send_text(text)

    async def handle(self, command: ParsedCommand) -> bool:
        handler = {
            "help": self._help,
            "?": self._help,
            "new": self._new,
            "model": self._model,
            "mode": self._mode,
            "resume": self._resume,
            "threads": self._resume,
            "sessions": self._sessions,
            "session": self._session_info,
            "status": self._status,
        }.get(command.name)
        if handler is None:
            return False
        logger.info("Handling slash command", session_id=self.session.id, command=command.name)
        await handler(command.args)
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _help(self, args: list[str]) -> None:
        lines = ["Available commands:", ""]
        lines += [f"  /{command.name:<12} {command.description}" for command in self.session.commands]
        lines += ["", "File mentions: Use @filename to include file content in your prompt", ""]
        self._say("\n".join(lines) + "\n")

    async def _new(self, args: list[str]) -> None:
        self.session.reset_conversation()
        self._say("Started a new conversation. History cleared.\n")

    async def _model(self, args: list[str]) -> None:
        session = self.session
        if args:
            wanted = " ".join(args)
            model = next((m for m in session.models if wanted in (m.model_id, m.name)), None)
            if model is None:
                available = ", ".join(m.model_id for m in session.models) or "(none configured)"
                self._say(f"Unknown model: {wanted}\nAvailable models: {available}\n")
                return
            session.model_id = model.model_id
            self._say(f"Model changed to: {model.model_id}\n")
            return

        if not session.models:
            self._say(
                f"Current model: {session.model_id or '(default)'}\n"
                "No models configured. Set AUTOHAND_AVAILABLE_MODELS to enable model selection.\n"
            )
            return

        selected = await self._pick(
            "Select a model",
            [(m.model_id, m.name or m.model_id) for m in session.models],
        )
        if selected is None:
            self._say("Model selection cancelled.\n")
            return
        session.model_id = selected
        self._say(f"Model changed to: {selected}\n")

    async def _mode(self, args: list[str]) -> None:
        session = self.session
        if args:
            wanted = " ".join(args)
            mode = next(
                (m for m in session.modes if m.id == wanted or m.name.lower() == wanted.lower()),
                None,
            )
            if mode is None:
                available = ", ".join(m.id for m in session.modes)
                self._say(f"Unknown mode: {wanted}\nAvailable modes: {available}\n")
                return
            self._set_mode(mode.id)
            self._say(f"Mode changed to: {mode.name}\n")
            return

        if not session.modes:
            self._say(f"Current mode: {session.mode_id}\n")
            return

        selected = await self._pick(
            "Select a mode",
            [(m.id, f"{m.name} - {m.description}" if m.description else m.name) for m in session.modes],
        )
        if selected is None:
            self._say("Mode selection cancelled.\n")
            return
        self._set_mode(selected)
        name = next((m.name for m in session.modes if m.id == selected), selected)
        self._say(f"Mode changed to: {name}\n")

    async def _resume(self, args: list[str]) -> None:
        session = self.session
        entries = await _index_for(session)
        if not entries:
            self._say("No sessions found to resume.\n")
            return

        if not args:
            lines = [
                f"  {i}. {entry.id[:8]} - {os.path.basename(entry.project_path)} ({entry.created_at.split('T')[0]})"
                for i, entry in enumerate(entries[:RESUME_LIST_LIMIT], start=1)
            ]
            self._say(
                "Select a session to resume:\n"
                + "\n".join(lines)
                + "\n\nType /resume <number> or /resume <session-id>\n"
            )
            return

        target = args[0]
        chosen: SessionIndexEntry | None = None
        if target.isdigit() and 1 <= int(target) <= len(entries):
            chosen = entries[int(target) - 1]
        else:
            chosen = next((e for e in entries if e.id == target or e.id.startswith(target)), None)
        if chosen is None:
            self._say(f"Session not found: {target}\n")
            return
        await self.run_resume(session, chosen.id)

    async def _sessions(self, args: list[str]) -> None:
        entries = await asyncio.to_thread(read_session_index, self.session.home)
        if not entries:
            self._say("No sessions found.\n")
            return
        lines = [f"  {e.id[:8]}  {e.created_at}  {e.project_path}" for e in entries[:RESUME_LIST_LIMIT]]
        self._say("Recent sessions:\n" + "\n".join(lines) + "\n")

    async def _session_info(self, args: list[str]) -> None:
        session = self.session
        info = [
            f"Session ID: {session.id}",
            f"Workspace: {session.cwd}",
            f"Model: {session.model_id or '(default)'}",
            f"Mode: {session.mode_id}",
            f"History entries: {len(session.history)}",
            f"Tool calls tracked: {len(session.tool_calls)}",
        ]
        self._say("\n".join(info) + "\n")

    async def _status(self, args: list[str]) -> None:
        config_path = settings.config_path()
        exists = "exists" if os.path.exists(config_path) else "not found"
        status = [
            f"Autohand command: {settings.command()}",
            f"Config file: {config_path} ({exists})",
            f"Permission mode: {self.session.config.permission_mode}",
            f"Session workspace: {self.session.cwd}",
        ]
        self._say("\n".join(status) + "\n")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_mode(self, mode_id: str) -> None:
        self.session.mode_id = mode_id
        self.session.relay.send(
            CurrentModeUpdate(session_update="current_mode_update", current_mode_id=mode_id)
        )

    async def _pick(self, title: str, choices: list[tuple[str, str]]) -> str | None:
        """Ask the client to choose through a permission prompt; None if cancelled."""
        client = self.session.relay.client
        if client is None:
            return None
        options = [PermissionOption(option_id=value, name=name, kind="allow_once") for value, name in choices]
        options.append(PermissionOption(option_id=CANCEL_OPTION_ID, name="Cancel", kind="reject_once"))
        try:
            response = await client.request_permission(
                options=options,
                session_id=self.session.id,
                tool_call=ToolCallUpdate(tool_call_id=f"picker-{self.session.id}", title=title, kind="other"),
            )
        except Exception:
            logger.exception("Picker request failed", session_id=self.session.id, title=title)
            return None
        outcome = response.outcome
        if getattr(outcome, "outcome", None) != "selected" or outcome.option_id == CANCEL_OPTION_ID:
            return None
        return outcome.option_id


async def _index_for(session: Session) -> list[SessionIndexEntry]:
    """Index entries for the session workspace, or every entry when none match."""
    entries = await asyncio.to_thread(read_session_index, session.home)
    cwd = os.path.abspath(session.cwd)
    matching = [entry for entry in entries if entry.project_path == cwd]
    return matching or entries
