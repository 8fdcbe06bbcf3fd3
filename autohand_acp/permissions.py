"""Local HTTP callback through which the agent asks the client for approval.

The agent POSTs to ``/permission``; each request is turned into a
``session/request_permission`` call and the client's answer is returned as
``{"allowed": ..., "reason": ...}``. Anything that goes wrong resolves to a
denial.
"""

from __future__ import annotations

import asyncio
import socket
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from typing import Any

import structlog
import uvicorn
from acp.interfaces import Client
from acp.schema import PermissionOption, ToolCallUpdate
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from autohand_acp.models import PermissionContext, PermissionDecision, PermissionRequest

logger = structlog.get_logger(__name__)

APPROVED = "external_approved"
DENIED = "external_denied"
ERROR = "external_error"

START_TIMEOUT_SECONDS = 5.0
STOP_TIMEOUT_SECONDS = 2.0

TOOL_PERMISSION_OPTIONS = (
    ("allow_once", "Allow", "allow_once"),
    ("allow_always", "Always Allow", "allow_always"),
    ("reject_once", "Reject", "reject_once"),
)

CONFIRM_OPTIONS = (
    ("allow", "Allow", "allow_once"),
    ("reject", "Reject", "reject_once"),
)


def build_description(context: PermissionContext) -> str:
    """``tool: command args: path: - description``, skipping missing parts."""
    parts = [context.tool]
    if context.command:
        args = " ".join(context.args or [])
        parts.append(f"{context.command} {args}" if args else context.command)
    if context.path:
        parts.append(context.path)
    if context.description:
        parts.append(f"- {context.description}")
    return ": ".join(parts)


def _options(spec) -> list[PermissionOption]:
    return [PermissionOption(option_id=option_id, name=name, kind=kind) for option_id, name, kind in spec]


def _denied() -> PermissionDecision:
    return PermissionDecision(allowed=False, reason=DENIED)


class PermissionBroker:
    """Forwards approval questions to the client for one session."""

    def __init__(self, client: Client, session_id: str) -> None:
        self.client = client
        self.session_id = session_id

    async def request_tool_permission(self, context: PermissionContext) -> PermissionDecision:
        description = build_description(context)
        selected = await self._ask(
            _options(TOOL_PERMISSION_OPTIONS),
            title=description,
            raw_input=context.model_dump(exclude_none=True),
        )
        if selected in ("allow_once", "allow_always"):
            return PermissionDecision(allowed=True, reason=APPROVED)
        return _denied()

    async def request_prompt(self, request: PermissionRequest) -> PermissionDecision:
        if request.type == "input":
            logger.info("Denying free-text input prompt", session_id=self.session_id)
            return _denied()
        if request.type == "select" and not request.choices:
            return _denied()

        raw_input = request.context.model_dump(exclude_none=True) if request.context else None
        if request.type == "confirm":
            selected = await self._ask(_options(CONFIRM_OPTIONS), title=request.message, raw_input=raw_input)
            if selected == "allow":
                return PermissionDecision(allowed=True, reason=APPROVED)
            return _denied()

        options = [
            PermissionOption(option_id=choice.name, name=choice.message or choice.name, kind="allow_once")
            for choice in request.choices or []
        ]
        selected = await self._ask(options, title=request.message, raw_input=raw_input)
        if selected is None:
            return _denied()
        return PermissionDecision(allowed=True, reason=APPROVED, choice=selected)

    async def _ask(self, options: list[PermissionOption], *, title: str, raw_input: Any) -> str | None:
        """Selected option id, or None when the client cancelled or failed."""
        tool_call = ToolCallUpdate(
            tool_call_id=f"permission-{uuid.uuid4()}",
            title=title or "Permission request",
            kind="other",
            raw_input=raw_input,
        )
        try:
            response = await self.client.request_permission(
                options=options,
                session_id=self.session_id,
                tool_call=tool_call,
            )
        except Exception:
            logger.exception("Permission request to client failed", session_id=self.session_id)
            return None

        outcome = response.outcome
        if getattr(outcome, "outcome", None) != "selected":
            logger.info("Permission request cancelled", session_id=self.session_id)
            return None
        return outcome.option_id


def create_app(broker: PermissionBroker) -> FastAPI:
    app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)

    @app.post("/permission")
    async def permission(request: Request):
        try:
            body = await request.json()
            kind = body.get("type") if isinstance(body, dict) else None
            if kind == "permission_request":
                context = PermissionContext.model_validate(body.get("context") or {})
                decision = await broker.request_tool_permission(context)
            elif kind in ("confirm", "select", "input"):
                decision = await broker.request_prompt(PermissionRequest.model_validate(body))
            else:
                logger.warning("Invalid permission request type", request_type=kind)
                return PlainTextResponse("Invalid request type", status_code=400)
        except (ValueError, ValidationError):
            logger.exception("Malformed permission request", session_id=broker.session_id)
            return JSONResponse({"allowed": False, "reason": ERROR}, status_code=500)

        logger.info(
            "Permission decision",
            session_id=broker.session_id,
            request_type=kind,
            allowed=decision.allowed,
        )
        return JSONResponse(decision.model_dump(exclude_none=True))

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves the host process's signal handling alone."""

    def install_signal_handlers(self) -> None:
        pass

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class PermissionServer:
    """Runs the callback app on an ephemeral loopback port for one prompt."""

    def __init__(self, broker: PermissionBroker) -> None:
        self.broker = broker
        self.port: int | None = None
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}/permission"

    async def start(self) -> str:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(("127.0.0.1", 0))
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            create_app(self.broker),
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        deadline = time.monotonic() + START_TIMEOUT_SECONDS
        while not self._server.started:
            if self._task.done():
                sock.close()
                self._task.result()
                raise RuntimeError("Permission server exited during startup")
            if time.monotonic() > deadline:
                await self.stop()
                raise RuntimeError("Permission server did not start in time")
            await asyncio.sleep(0.01)

        logger.info("Permission server started", session_id=self.broker.session_id, url=self.url)
        return self.url

    async def stop(self) -> None:
        server, task = self._server, self._task
        self._server = None
        self._task = None
        if server is None or task is None:
            return
        server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        except Exception:
            logger.exception("Permission server failed while stopping", session_id=self.broker.session_id)
        logger.info("Permission server stopped", session_id=self.broker.session_id)
