"""Discovery and incremental tailing of the agent's conversation log."""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog
from pydantic import ValidationError

from autohand_acp.models import ConversationEvent, SessionIndexEntry
from autohand_acp.session import LogCursor

logger = structlog.get_logger(__name__)

TAIL_POLL_SECONDS = 0.25
DISCOVERY_ATTEMPTS = 40
DISCOVERY_INTERVAL_SECONDS = 0.2
READ_CHUNK_BYTES = 64 * 1024
TAIL_JOIN_TIMEOUT_SECONDS = 2.0

CONVERSATION_FILE = "conversation.jsonl"


def sessions_dir(home: str | Path) -> Path:
    return Path(home) / "sessions"


def conversation_path(home: str | Path, session_id: str) -> Path:
    return sessions_dir(home) / session_id / CONVERSATION_FILE


def read_session_index(home: str | Path) -> list[SessionIndexEntry]:
    """Entries of ``sessions/index.json``; missing or unreadable index yields []."""
    path = sessions_dir(home) / "index.json"
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return []
    raw = data.get("sessions") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        return []

    entries: list[SessionIndexEntry] = []
    for item in raw:
        try:
            entries.append(SessionIndexEntry.model_validate(item))
        except ValidationError:
            continue
    return entries


def snapshot_session_ids(home: str | Path) -> set[str]:
    """Ids of every session that exists before a run starts."""
    ids = {entry.id for entry in read_session_index(home)}
    directory = sessions_dir(home)
    try:
        ids.update(child.name for child in directory.iterdir() if child.is_dir())
    except OSError:
        pass
    return ids


def _find_new_session(home: str | Path, cwd: str, snapshot: set[str]) -> Path | None:
    resolved_cwd = os.path.abspath(cwd)
    entries = read_session_index(home)
    candidates = [entry for entry in entries if entry.id not in snapshot and entry.project_path == resolved_cwd]
    if candidates:
        latest = max(candidates, key=lambda entry: entry.created_at)
        return conversation_path(home, latest.id)

    # Directories indexed under another workspace belong to a concurrent run.
    foreign = {entry.id for entry in entries if entry.project_path != resolved_cwd}
    directory = sessions_dir(home)
    try:
        names = sorted(child.name for child in directory.iterdir() if child.is_dir())
    except OSError:
        return None
    for name in names:
        if name not in snapshot and name not in foreign:
            return conversation_path(home, name)
    return None


async def discover(
    home: str | Path,
    cwd: str,
    snapshot: set[str],
    stop: asyncio.Event,
    *,
    attempts: int = DISCOVERY_ATTEMPTS,
    interval: float = DISCOVERY_INTERVAL_SECONDS,
) -> Path | None:
    """Wait for the log of the session the current run created.

    Prefers index entries for ``cwd`` (newest ``createdAt`` first), then any
    session directory absent from ``snapshot`` that the index does not assign
    to another workspace. Gives up after ``attempts``
    polls, or after one last look once ``stop`` is set.
    """
    for _ in range(attempts):
        path = await asyncio.to_thread(_find_new_session, home, cwd, snapshot)
        if path is not None or stop.is_set():
            return path
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    return None


def parse_event(line: str) -> ConversationEvent | None:
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except ValueError:
        logger.debug("Skipping malformed conversation line", line=line[:200])
        return None
    if not isinstance(data, dict):
        return None
    try:
        return ConversationEvent.model_validate(data)
    except ValidationError:
        logger.debug("Skipping invalid conversation event", line=line[:200])
        return None


def read_new_events(cursor: LogCursor) -> list[ConversationEvent]:
    """Read at most one chunk past ``cursor.offset`` and return complete events.

    A trailing line without a newline stays in ``cursor.remainder`` until the
    rest of it arrives. Multibyte characters split across chunk boundaries
    are carried by the cursor's incremental decoder.
    """
    if cursor.path is None:
        return []
    try:
        with open(cursor.path, "rb") as handle:
            size = os.fstat(handle.fileno()).st_size
            if size <= cursor.offset:
                return []
            handle.seek(cursor.offset)
            data = handle.read(min(size - cursor.offset, READ_CHUNK_BYTES))
    except OSError:
        return []
    if not data:
        return []

    cursor.offset += len(data)
    lines = (cursor.remainder + cursor.decoder.decode(data)).split("\n")
    cursor.remainder = lines.pop()

    events: list[ConversationEvent] = []
    for line in lines:
        event = parse_event(line)
        if event is not None:
            events.append(event)
    return events


class ConversationTailer:
    """Follows one run's conversation log and hands each event to ``on_event``."""

    def __init__(
        self,
        *,
        home: str | Path,
        cwd: str,
        cursor: LogCursor,
        snapshot: set[str],
        on_event: Callable[[ConversationEvent], Awaitable[None] | None],
        session_id: str = "",
        poll_interval: float = TAIL_POLL_SECONDS,
    ) -> None:
        self.home = home
        self.cwd = cwd
        self.cursor = cursor
        self.snapshot = snapshot
        self.on_event = on_event
        self.session_id = session_id
        self.poll_interval = poll_interval

    async def run(self, stop: asyncio.Event) -> None:
        path = await discover(self.home, self.cwd, self.snapshot, stop)
        if path is not None:
            self.cursor.bind(path)
            logger.info("Tailing conversation log", session_id=self.session_id, path=str(path))
        elif self.cursor.path is not None:
            logger.debug(
                "No new session log, following bound log",
                session_id=self.session_id,
                path=str(self.cursor.path),
            )
        else:
            logger.debug("No conversation log found", session_id=self.session_id)
            return

        while not stop.is_set():
            await self._drain()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        await self._drain()

    async def _drain(self) -> None:
        while True:
            offset = self.cursor.offset
            events = await asyncio.to_thread(read_new_events, self.cursor)
            if self.cursor.offset == offset:
                return
            for event in events:
                try:
                    result = self.on_event(event)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    logger.exception(
                        "Failed to handle conversation event",
                        session_id=self.session_id,
                        role=event.role,
                    )
