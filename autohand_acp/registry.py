"""Ownership of live sessions: creation, fork, resume, load and settings changes."""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import functools
import os
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import structlog
from acp import text_block, update_agent_message
from acp.interfaces import Client
from acp.schema import (
    AvailableCommandsUpdate,
    ConfigOptionUpdate,
    CurrentModeUpdate,
    SessionConfigOption,
    SessionInfo,
    SessionInfoUpdate,
    UserMessageChunk,
)

from autohand_acp import options
from autohand_acp.errors import InvalidArgument, SessionBusy, UnknownSession
from autohand_acp.models import HistoryTurn
from autohand_acp.relay import UpdateRelay
from autohand_acp.scheduler import PromptScheduler
from autohand_acp.session import Session, utc_now
from autohand_acp.settings import settings
from autohand_acp.tailer import conversation_path, parse_event, read_session_index

logger = structlog.get_logger(__name__)

Executor = Callable[[Session, Any], Awaitable[Any]]


def _require_absolute(cwd: str) -> None:
    if not cwd or not os.path.isabs(cwd):
        raise InvalidArgument("Session cwd must be an absolute path.", cwd=cwd)


def _read_log_events(path: Path) -> list | None:
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return None
    return [event for event in map(parse_event, lines) if event is not None]


class SessionRegistry:
    """Maps session ids to sessions; the only state shared between sessions.

    ``execute`` runs one prompt for a session. Each session gets its own
    scheduler bound to it, so prompts of one session never overlap while
    different sessions progress independently.
    """

    def __init__(self, execute: Executor, client: Client | None = None) -> None:
        self.client = client
        self._execute = execute
        self._sessions: dict[str, Session] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, cwd: str) -> Session:
        _require_absolute(cwd)
        modes = options.build_modes()
        models = options.build_models()
        session = self._register(
            Session(
                id=str(uuid.uuid4()),
                cwd=cwd,
                home=Path(settings.home()),
                modes=modes,
                mode_id=options.default_mode(modes),
                models=models,
                model_id=options.default_model(models),
                commands=options.build_commands(),
                config=options.SessionConfig.from_settings(),
                relay=UpdateRelay(self.client, ""),
            )
        )
        self._announce_commands(session)
        logger.info("Session created", session_id=session.id, cwd=cwd)
        return session

    def fork(self, parent_id: str, cwd: str) -> Session:
        parent = self.get(parent_id)
        _require_absolute(cwd)
        session = self._register(
            Session(
                id=str(uuid.uuid4()),
                cwd=cwd,
                home=parent.home,
                modes=copy.deepcopy(parent.modes),
                mode_id=parent.mode_id,
                models=copy.deepcopy(parent.models),
                model_id=parent.model_id,
                commands=copy.deepcopy(parent.commands),
                config=dataclasses.replace(parent.config),
                relay=UpdateRelay(self.client, ""),
                history=copy.deepcopy(parent.history),
                title=f"{parent.title} (fork)" if parent.title else None,
                parent_id=parent.id,
            )
        )
        session.relay.send_text(f"Forked from session {parent.id[:8]}. History preserved.\n")
        logger.info("Session forked", session_id=session.id, parent_id=parent.id)
        return session

    async def resume(self, session_id: str, cwd: str) -> Session:
        """Continue a session recorded by the CLI; later output is tailed from the end of its log."""
        _require_absolute(cwd)
        entries = await asyncio.to_thread(read_session_index, settings.home())
        if not any(entry.id == session_id for entry in entries):
            raise UnknownSession(session_id, "Session not found.")
        await self._evict(session_id)

        session = self._register(self._stored_session(session_id, cwd, title=f"Resumed: {session_id[:8]}"))
        session.cursor.bind(conversation_path(session.home, session_id), at_end=True)
        asyncio.get_running_loop().call_soon(
            session.relay.send,
            SessionInfoUpdate(session_update="session_info_update", title=session.title, updated_at=utc_now()),
        )
        logger.info("Session resumed", session_id=session_id, cwd=cwd)
        return session

    async def load(self, session_id: str, cwd: str) -> Session:
        """Rebuild a session from its log, replaying user and assistant turns to the client."""
        _require_absolute(cwd)
        await self._evict(session_id)

        session = self._register(self._stored_session(session_id, cwd, title=f"Loaded: {session_id[:8]}"))
        path = conversation_path(session.home, session_id)
        events = await asyncio.to_thread(_read_log_events, path)
        if events is None:
            session.relay.send_text(f"Session {session_id} loaded.\n")
        else:
            for event in events:
                if event.role not in ("user", "assistant") or not event.content:
                    continue
                if event.role == "user":
                    session.relay.send(
                        UserMessageChunk(session_update="user_message_chunk", content=text_block(event.content))
                    )
                else:
                    session.relay.send(update_agent_message(text_block(event.content)))
                session.history.append(HistoryTurn(role=event.role, content=event.content))
            session.relay.send_text(f"\n--- Resumed session {session_id[:8]} ---\n\n")
            session.cursor.bind(path, at_end=True)

        await session.relay.flush()
        self._announce_commands(session)
        logger.info("Session loaded", session_id=session_id, replayed=len(session.history))
        return session

    async def list_sessions(self, cwd: str | None = None) -> list[SessionInfo]:
        entries = await asyncio.to_thread(read_session_index, settings.home())
        if cwd:
            resolved = os.path.abspath(cwd)
            entries = [entry for entry in entries if entry.project_path == resolved]
        entries.sort(key=lambda entry: entry.created_at, reverse=True)
        return [
            SessionInfo(
                session_id=entry.id,
                cwd=entry.project_path,
                title=f"Session {entry.id[:8]}",
                updated_at=entry.created_at or None,
            )
            for entry in entries
        ]

    async def discard(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        if session.scheduler is not None:
            await session.scheduler.close()
        await session.relay.close()
        logger.info("Session discarded", session_id=session_id)

    async def close(self) -> None:
        for session_id in list(self._sessions):
            await self.discard(session_id)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def submit(self, session_id: str, prompt: Any) -> Any:
        session = self.get(session_id)
        return await session.scheduler.submit(prompt)

    def set_mode(self, session_id: str, mode_id: str) -> None:
        session = self.get(session_id)
        session.mode_id = mode_id
        session.relay.send(CurrentModeUpdate(session_update="current_mode_update", current_mode_id=mode_id))

    def set_model(self, session_id: str, model_id: str) -> None:
        session = self.get(session_id)
        session.model_id = model_id
        logger.info("Session model changed", session_id=session_id, model_id=model_id)

    def set_config_option(self, session_id: str, config_id: str, value: str) -> list[SessionConfigOption]:
        session = self.get(session_id)
        session.config.apply(config_id, value)
        config_options = session.config.options()
        session.relay.send(ConfigOptionUpdate(session_update="config_option_update", config_options=config_options))
        return config_options

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _register(self, session: Session) -> Session:
        session.relay.session_id = session.id
        session.scheduler = PromptScheduler(session.id, functools.partial(self._execute, session))
        self._sessions[session.id] = session
        return session

    def _stored_session(self, session_id: str, cwd: str, *, title: str) -> Session:
        modes = options.build_modes()
        models = options.build_models()
        return Session(
            id=session_id,
            cwd=cwd,
            home=Path(settings.home()),
            modes=modes,
            mode_id=options.default_mode(modes),
            models=models,
            model_id=options.default_model(models),
            commands=options.build_commands(),
            config=options.SessionConfig.from_settings(),
            relay=UpdateRelay(self.client, session_id),
            title=title,
            title_generated=True,
        )

    async def _evict(self, session_id: str) -> None:
        """Drop an idle live session with this id before it is rebuilt."""
        existing = self._sessions.get(session_id)
        if existing is None:
            return
        scheduler = existing.scheduler
        if existing.busy or (scheduler is not None and (scheduler.busy or scheduler.waiting)):
            raise SessionBusy(session_id)
        await self.discard(session_id)

    def _announce_commands(self, session: Session) -> None:
        update = AvailableCommandsUpdate(
            session_update="available_commands_update",
            available_commands=session.commands,
        )
        asyncio.get_running_loop().call_soon(session.relay.send, update)
