"""ACP agent exposing the Autohand CLI to editors."""

from __future__ import annotations

from typing import Any

import structlog
from acp import Agent, InitializeResponse, NewSessionResponse, PromptResponse
from acp.interfaces import Client
from acp.schema import (
    AgentCapabilities,
    AuthenticateResponse,
    ClientCapabilities,
    ForkSessionResponse,
    HttpMcpServer,
    Implementation,
    ListSessionsResponse,
    LoadSessionResponse,
    McpCapabilities,
    McpServerStdio,
    PromptCapabilities,
    ResumeSessionResponse,
    SessionCapabilities,
    SessionForkCapabilities,
    SessionListCapabilities,
    SessionResumeCapabilities,
    SetSessionConfigOptionResponse,
    SetSessionModelResponse,
    SetSessionModeResponse,
    SseMcpServer,
)

from autohand_acp import __version__
from autohand_acp.errors import UnknownSession, as_request_errors
from autohand_acp.executor import PromptExecutor
from autohand_acp.registry import SessionRegistry
from autohand_acp.session import Session
from autohand_acp.settings import settings

logger = structlog.get_logger(__name__)

LIST_PAGE_SIZE = 50

McpServers = list[HttpMcpServer | SseMcpServer | McpServerStdio]


def _session_state(session: Session) -> dict[str, Any]:
    return {
        "modes": session.mode_state(),
        "models": session.model_state(),
        "config_options": session.config.options(),
    }


class AutohandAgent(Agent):
    """Protocol surface; all state lives in the registry and the executor."""

    def __init__(self, executor: PromptExecutor | None = None) -> None:
        self._conn: Client | None = None
        self.executor = executor or PromptExecutor()
        self.registry = SessionRegistry(self.executor.execute)

    def on_connect(self, conn: Client) -> None:
        self._conn = conn
        self.executor.client = conn
        self.registry.client = conn
        logger.info("ACP connection established")

    async def initialize(
        self,
        protocol_version: int,
        client_capabilities: ClientCapabilities | None = None,
        client_info: Implementation | None = None,
        **kwargs: Any,
    ) -> InitializeResponse:
        self.executor.capabilities = client_capabilities
        logger.info(
            "ACP initialize",
            protocol_version=protocol_version,
            client=client_info.name if client_info else None,
            terminal=self.executor.terminal_output,
            fs_read=self.executor.can_read_files,
        )
        return InitializeResponse(
            protocol_version=protocol_version,
            agent_info=Implementation(name="autohand-acp", title="Autohand CLI", version=__version__),
            agent_capabilities=AgentCapabilities(
                load_session=True,
                prompt_capabilities=PromptCapabilities(
                    image=True,
                    embedded_context=True,
                    audio=settings.supports_audio(),
                ),
                mcp_capabilities=McpCapabilities(http=True, sse=True),
                session_capabilities=SessionCapabilities(
                    fork=SessionForkCapabilities(),
                    list=SessionListCapabilities(),
                    resume=SessionResumeCapabilities(),
                ),
            ),
        )

    async def authenticate(self, method_id: str, **kwargs: Any) -> AuthenticateResponse | None:
        return AuthenticateResponse()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def new_session(
        self,
        cwd: str,
        mcp_servers: McpServers | None = None,
        **kwargs: Any,
    ) -> NewSessionResponse:
        with as_request_errors():
            session = self.registry.create(cwd)
        return NewSessionResponse(session_id=session.id, **_session_state(session))

    async def load_session(
        self,
        cwd: str,
        session_id: str,
        mcp_servers: McpServers | None = None,
        **kwargs: Any,
    ) -> LoadSessionResponse | None:
        with as_request_errors():
            session = await self.registry.load(session_id, cwd)
        return LoadSessionResponse(**_session_state(session))

    async def list_sessions(
        self,
        cursor: str | None = None,
        cwd: str | None = None,
        **kwargs: Any,
    ) -> ListSessionsResponse:
        sessions = await self.registry.list_sessions(cwd)
        start = int(cursor) if cursor and cursor.isdigit() else 0
        end = start + LIST_PAGE_SIZE
        return ListSessionsResponse(
            sessions=sessions[start:end],
            next_cursor=str(end) if end < len(sessions) else None,
        )

    async def resume_session(
        self,
        cwd: str,
        session_id: str,
        mcp_servers: McpServers | None = None,
        **kwargs: Any,
    ) -> ResumeSessionResponse:
        with as_request_errors():
            session = await self.registry.resume(session_id, cwd)
        return ResumeSessionResponse(**_session_state(session))

    async def fork_session(
        self,
        cwd: str,
        session_id: str,
        mcp_servers: McpServers | None = None,
        **kwargs: Any,
    ) -> ForkSessionResponse:
        with as_request_errors():
            session = self.registry.fork(session_id, cwd)
        return ForkSessionResponse(session_id=session.id, **_session_state(session))

    async def set_session_mode(self, mode_id: str, session_id: str, **kwargs: Any) -> SetSessionModeResponse | None:
        with as_request_errors():
            self.registry.set_mode(session_id, mode_id)
        return SetSessionModeResponse()

    async def set_session_model(self, model_id: str, session_id: str, **kwargs: Any) -> SetSessionModelResponse | None:
        with as_request_errors():
            self.registry.set_model(session_id, model_id)
        return SetSessionModelResponse()

    async def set_config_option(
        self,
        config_id: str,
        session_id: str,
        value: str,
        **kwargs: Any,
    ) -> SetSessionConfigOptionResponse | None:
        with as_request_errors():
            config_options = self.registry.set_config_option(session_id, config_id, value)
        return SetSessionConfigOptionResponse(config_options=config_options)

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    async def prompt(self, prompt: list[Any], session_id: str, **kwargs: Any) -> PromptResponse:
        with as_request_errors():
            self.registry.get(session_id)
        stop_reason = await self.registry.submit(session_id, prompt)
        return PromptResponse(stop_reason=stop_reason)

    async def cancel(self, session_id: str, **kwargs: Any) -> None:
        try:
            session = self.registry.get(session_id)
        except UnknownSession:
            logger.info("Cancel for unknown session ignored", session_id=session_id)
            return
        self.executor.cancel(session)
