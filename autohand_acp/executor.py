"""One prompt execution: launch the CLI, relay its output and tear everything down."""

from __future__ import annotations

import asyncio
import os
from contextlib import suppress
from typing import Any

import structlog
from acp.schema import SessionInfoUpdate

from autohand_acp.command import LaunchConfig, build_command, build_resume_command
from autohand_acp.commands import CommandHandler, parse_slash_command
from autohand_acp.models import ConversationEvent, HistoryTurn
from autohand_acp.permissions import PermissionBroker, PermissionServer
from autohand_acp.prompt import (
    build_instruction,
    generate_session_title,
    prompt_to_text,
    resolve_prompt_blocks,
)
from autohand_acp.session import ActiveRun, Session, utc_now
from autohand_acp.settings import settings
from autohand_acp.supervisor import KILL_GRACE_SECONDS, ProcessSupervisor
from autohand_acp.tailer import TAIL_JOIN_TIMEOUT_SECONDS, ConversationTailer, snapshot_session_ids
from autohand_acp.text import normalize_prompt_text
from autohand_acp.thinking import THOUGHT, StdoutRouter, ThinkingClassifier
from autohand_acp.translator import EventTranslator

logger = structlog.get_logger(__name__)

END_TURN = "end_turn"
CANCELLED = "cancelled"


class PromptExecutor:
    """Runs prompts for sessions. Every call resolves to ``end_turn`` or ``cancelled``."""

    def __init__(self, client: Any = None, classifier: ThinkingClassifier | None = None) -> None:
        self.client = client
        self.classifier = classifier
        self.capabilities: Any = None

    # ------------------------------------------------------------------
    # Client capabilities
    # ------------------------------------------------------------------

    @property
    def terminal_output(self) -> bool:
        return bool(getattr(self.capabilities, "terminal", False))

    @property
    def can_read_files(self) -> bool:
        fs = getattr(self.capabilities, "fs", None)
        return bool(getattr(fs, "read_text_file", False))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, session: Session, prompt: list[Any]) -> str:
        run = ActiveRun()
        session.run = run
        session.cancelled = False
        try:
            return await self._execute(session, prompt, run)
        except Exception:
            logger.exception("Prompt execution failed", session_id=session.id)
            session.relay.send_text("Autohand bridge error while running the prompt. See the bridge log.\n")
            await session.relay.flush()
            return CANCELLED if session.cancelled else END_TURN
        finally:
            run.stop.set()
            await self._teardown(run)
            session.run = None

    async def _teardown(self, run: ActiveRun) -> None:
        """Release whatever the run still holds; also reached when the run is cancelled."""
        if run.tail_task is not None and not run.tail_task.done():
            run.tail_task.cancel()
            with suppress(asyncio.CancelledError):
                await run.tail_task
        if run.terminator is not None:
            await run.terminator
        if run.permission_server is not None:
            server, run.permission_server = run.permission_server, None
            await server.stop()
        if run.server_stopper is not None:
            await run.server_stopper

    async def _execute(self, session: Session, prompt: list[Any], run: ActiveRun) -> str:
        if not await asyncio.to_thread(os.path.isdir, session.cwd):
            logger.warning("Workspace not found", session_id=session.id, cwd=session.cwd)
            session.relay.send_text(f"Workspace not found: {session.cwd}\n")
            await session.relay.flush()
            return END_TURN

        blocks = await resolve_prompt_blocks(
            prompt,
            cwd=session.cwd,
            read_file=lambda path: self._read_file(session, path),
        )
        user_text = normalize_prompt_text(prompt_to_text(blocks))

        if not session.title_generated and user_text:
            session.title = generate_session_title(user_text)
            session.title_generated = True
            session.relay.send(
                SessionInfoUpdate(session_update="session_info_update", title=session.title, updated_at=utc_now())
            )

        command = parse_slash_command(user_text)
        if command is not None:
            handler = CommandHandler(session, self.run_resume)
            if await handler.handle(command):
                await session.relay.flush()
                return CANCELLED if session.cancelled else END_TURN

        instruction = build_instruction(
            user_text,
            mode_id=session.mode_id,
            history=session.history,
            include_history=session.config.include_history,
            history_limit=settings.history_limit(),
            max_chars=settings.max_history_chars(),
        )
        session.history.append(HistoryTurn(role="user", content=user_text))
        if any(_block_type(block) == "image" for block in blocks):
            logger.info("Prompt includes images, passing descriptions only", session_id=session.id)

        launch = LaunchConfig.for_session(session)
        callback_url = None
        if launch.permission_mode == "external" and not run.stop.is_set():
            server = PermissionServer(PermissionBroker(self.client, session.id))
            run.permission_server = server
            try:
                callback_url = await server.start()
            except Exception:
                logger.exception("Failed to start permission server", session_id=session.id)
                run.permission_server = None

        snapshot = await asyncio.to_thread(snapshot_session_ids, session.home)
        spec = build_command(launch, instruction=instruction, cwd=session.cwd, permission_callback_url=callback_url)
        if launch.config_path and not await asyncio.to_thread(os.path.exists, launch.config_path):
            session.relay.send_text(
                f"Autohand config not found at {launch.config_path}. "
                "Run autohand once to create it or set AUTOHAND_CONFIG.\n"
            )

        # Tool-call ids are only unique within one run's log.
        session.clear_tool_calls()
        translator = EventTranslator(session, terminal_output=self.terminal_output)

        def on_event(event: ConversationEvent) -> None:
            for update in translator.translate(event):
                session.relay.send(update)

        tailer = ConversationTailer(
            home=session.home,
            cwd=session.cwd,
            cursor=session.cursor,
            snapshot=snapshot,
            on_event=on_event,
            session_id=session.id,
        )
        run.tail_task = asyncio.create_task(tailer.run(run.stop))

        router = StdoutRouter(self.classifier)
        assistant_parts: list[str] = []

        def relay(pieces: list[tuple[str, str]]) -> None:
            for kind, text in pieces:
                if kind == THOUGHT:
                    session.relay.send_thought(text)
                else:
                    assistant_parts.append(text)
                    session.relay.send_text(text)

        supervisor = ProcessSupervisor(spec, session_id=session.id)
        run.supervisor = supervisor
        if run.stop.is_set():
            outcome = None
        else:
            outcome = await supervisor.run(lambda text: relay(router.feed(text)))
            run.outcome = outcome
        relay(router.flush())

        run.stop.set()
        try:
            await asyncio.wait_for(run.tail_task, timeout=TAIL_JOIN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Conversation tailer did not stop in time", session_id=session.id)
        await self._teardown(run)

        if session.cancelled:
            await session.relay.flush()
            logger.info("Prompt cancelled", session_id=session.id)
            return CANCELLED

        if outcome is not None:
            for message in outcome.report():
                session.relay.send_text(message)
        assistant_text = "".join(assistant_parts).strip()
        if assistant_text:
            session.history.append(HistoryTurn(role="assistant", content=assistant_text))
        await session.relay.flush()
        return END_TURN

    def cancel(self, session: Session) -> None:
        """Stop the active run of ``session``; a no-op when nothing is running."""
        run = session.run
        if run is None:
            logger.debug("Cancel with no active prompt", session_id=session.id)
            return
        if run.outcome is not None:
            logger.debug("Cancel after the process exited, ignoring", session_id=session.id)
            return
        session.cancelled = True
        run.stop.set()
        if run.terminator is None and run.supervisor is not None:
            run.terminator = asyncio.create_task(run.supervisor.terminate(KILL_GRACE_SECONDS))
        if run.permission_server is not None:
            server, run.permission_server = run.permission_server, None
            run.server_stopper = asyncio.create_task(server.stop())
        logger.info("Prompt cancellation requested", session_id=session.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def run_resume(self, session: Session, stored_id: str) -> None:
        """Run ``autohand resume`` for a stored session and relay all of its output."""
        spec = build_resume_command(LaunchConfig.for_session(session), session_id=stored_id, cwd=session.cwd)
        supervisor = ProcessSupervisor(spec, session_id=session.id)
        run = session.run
        if run is not None:
            run.supervisor = supervisor
            if run.stop.is_set():
                return

        parts: list[str] = []

        def relay(text: str) -> None:
            parts.append(text)
            session.relay.send_text(text)

        outcome = await supervisor.run(relay, relay)
        if run is not None and run.terminator is not None:
            await run.terminator
        if outcome.launch_error is not None:
            for message in outcome.report():
                session.relay.send_text(message)
        output = "".join(parts).strip()
        if output:
            session.history.append(HistoryTurn(role="assistant", content=output))

    async def _read_file(self, session: Session, path: str) -> str | None:
        if self.can_read_files and self.client is not None:
            try:
                response = await self.client.read_text_file(path=path, session_id=session.id)
                return response.content
            except Exception:
                logger.debug("Client file read failed, reading directly", session_id=session.id, path=path)
        return await asyncio.to_thread(_read_text, path)


def _read_text(path: str) -> str | None:
    try:
        with open(path, encoding="utf-8") as handle:
            return handle.read()
    except (OSError, UnicodeDecodeError):
        return None


def _block_type(block: Any) -> str | None:
    if isinstance(block, dict):
        return block.get("type")
    return getattr(block, "type", None)
