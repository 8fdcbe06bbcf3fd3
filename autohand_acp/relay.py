"""Per-session ordered delivery of session updates to the protocol client."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Any

import structlog
from acp import text_block, update_agent_message, update_agent_thought_text
from acp.interfaces import Client

from autohand_acp.text import chunk_text

logger = structlog.get_logger(__name__)

MAX_UPDATE_CHUNK = 4000


class UpdateRelay:
    """Single FIFO queue drained by one background task per session.

    Enqueueing is synchronous, so updates issued from concurrent sources
    (live stdout, the tailed log) reach the client in the order they were
    handed over. A failed delivery is logged and the queue moves on.
    """

    def __init__(self, client: Client | None, session_id: str) -> None:
        self.client = client
        self.session_id = session_id
        self._queue: asyncio.Queue[tuple[Any, asyncio.Future]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._closed = False

    def send(self, update: Any) -> asyncio.Future:
        """Queue one update; the returned future resolves once it was handed to the client."""
        future = asyncio.get_running_loop().create_future()
        if self._closed:
            future.set_result(None)
            return future
        self._queue.put_nowait((update, future))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
        return future

    def send_text(self, text: str) -> asyncio.Future:
        return self._send_chunks(text, lambda chunk: update_agent_message(text_block(chunk)))

    def send_thought(self, text: str) -> asyncio.Future:
        return self._send_chunks(text, update_agent_thought_text)

    async def flush(self) -> None:
        """Wait until everything queued so far has been delivered."""
        await self.send(None)

    async def close(self) -> None:
        self._closed = True
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.set_result(None)

    def _send_chunks(self, text: str, build) -> asyncio.Future:
        future = None
        for chunk in chunk_text(text, MAX_UPDATE_CHUNK):
            if chunk:
                future = self.send(build(chunk))
        if future is None:
            future = asyncio.get_running_loop().create_future()
            future.set_result(None)
        return future

    async def _drain(self) -> None:
        while True:
            update, future = await self._queue.get()
            try:
                if update is not None:
                    if self.client is None:
                        logger.warning("No client connection, dropping update", session_id=self.session_id)
                    else:
                        await self.client.session_update(session_id=self.session_id, update=update)
            except asyncio.CancelledError:
                if not future.done():
                    future.set_result(None)
                raise
            except Exception:
                logger.exception("Failed to deliver session update", session_id=self.session_id)
            finally:
                if not future.done():
                    future.set_result(None)
                self._queue.task_done()
