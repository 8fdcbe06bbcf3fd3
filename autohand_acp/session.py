"""Runtime session state owned by the session registry."""

from __future__ import annotations

import asyncio
import codecs
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from acp.schema import AvailableCommand, ModelInfo, SessionMode, SessionModelState, SessionModeState

from autohand_acp.models import HistoryTurn, ToolCallStatus, ToolKind
from autohand_acp.options import SessionConfig

if TYPE_CHECKING:
    from autohand_acp.permissions import PermissionServer
    from autohand_acp.relay import UpdateRelay
    from autohand_acp.scheduler import PromptScheduler
    from autohand_acp.supervisor import ExitOutcome, ProcessSupervisor

_STATUS_RANK = {
    ToolCallStatus.PENDING: 0,
    ToolCallStatus.IN_PROGRESS: 1,
    ToolCallStatus.COMPLETED: 2,
    ToolCallStatus.FAILED: 2,
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _utf8_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@dataclass
class ToolCallRecord:
    """Display state of one tool call."""

    tool_call_id: str
    title: str
    kind: ToolKind
    status: ToolCallStatus = ToolCallStatus.PENDING
    output: str = ""  # buffered partial output, cleared on completion
    terminal: bool = False  # output is forwarded raw instead of buffered

    @property
    def done(self) -> bool:
        return self.status in (ToolCallStatus.COMPLETED, ToolCallStatus.FAILED)

    def advance(self, status: ToolCallStatus) -> bool:
        """Move forward to ``status``; returns False if that would regress."""
        if self.done:
            return False
        if _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            return False
        self.status = status
        return True


@dataclass
class LogCursor:
    """Read position within the conversation log of a session."""

    path: Path | None = None
    offset: int = 0
    remainder: str = ""
    decoder: codecs.IncrementalDecoder = field(default_factory=_utf8_decoder)

    def bind(self, path: Path, *, at_end: bool = False) -> None:
        """Point at ``path``. Rebinding the same path keeps the position."""
        if self.path == path:
            return
        self.reset()
        self.path = path
        if at_end:
            try:
                self.offset = path.stat().st_size
            except OSError:
                self.offset = 0

    def reset(self) -> None:
        self.path = None
        self.offset = 0
        self.remainder = ""
        self.decoder = _utf8_decoder()


@dataclass
class ActiveRun:
    """Handles held by the one prompt execution in flight for a session."""

    stop: asyncio.Event = field(default_factory=asyncio.Event)
    supervisor: ProcessSupervisor | None = None
    permission_server: PermissionServer | None = None
    terminator: asyncio.Task | None = None
    server_stopper: asyncio.Task | None = None
    tail_task: asyncio.Task | None = None
    outcome: ExitOutcome | None = None  # set once the process has exited


@dataclass
class Session:
    """One conversation bound to a fixed working directory."""

    id: str
    cwd: str
    home: Path
    modes: list[SessionMode]
    mode_id: str
    models: list[ModelInfo]
    model_id: str
    commands: list[AvailableCommand]
    config: SessionConfig
    relay: UpdateRelay
    scheduler: PromptScheduler | None = None
    history: list[HistoryTurn] = field(default_factory=list)
    tool_calls: dict[str, ToolCallRecord] = field(default_factory=dict)
    streaming: set[str] = field(default_factory=set)
    cursor: LogCursor = field(default_factory=LogCursor)
    title: str | None = None
    title_generated: bool = False
    parent_id: str | None = None
    cancelled: bool = False
    run: ActiveRun | None = None

    @property
    def busy(self) -> bool:
        return self.run is not None

    def mode_state(self) -> SessionModeState | None:
        if not self.modes:
            return None
        return SessionModeState(available_modes=self.modes, current_mode_id=self.mode_id)

    def model_state(self) -> SessionModelState | None:
        if not self.models:
            return None
        return SessionModelState(available_models=self.models, current_model_id=self.model_id)

    def clear_tool_calls(self) -> None:
        self.tool_calls.clear()
        self.streaming.clear()

    def reset_conversation(self) -> None:
        """Forget history and tool-call bookkeeping, keeping settings."""
        self.history.clear()
        self.clear_tool_calls()
        self.cursor.reset()
