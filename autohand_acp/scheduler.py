"""Per-session serialization of prompt executions."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class PendingPrompt:
    """A queued prompt and the future its caller is waiting on."""

    content: Any
    future: asyncio.Future


class PromptScheduler:
    """Runs at most one prompt at a time for a session, in submission order.

    A worker task pulls ``PendingPrompt`` items off a FIFO queue. A failing
    execution resolves only its own future; the worker continues with the
    next item. Prompts whose caller gave up before they started are skipped.
    """

    def __init__(self, session_id: str, execute: Callable[[Any], Awaitable[Any]]) -> None:
        self.session_id = session_id
        self._execute = execute
        self._queue: asyncio.Queue[PendingPrompt] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._current: PendingPrompt | None = None

    @property
    def busy(self) -> bool:
        return self._current is not None

    @property
    def waiting(self) -> int:
        return self._queue.qsize()

    async def submit(self, content: Any) -> Any:
        pending = PendingPrompt(content=content, future=asyncio.get_running_loop().create_future())
        self._queue.put_nowait(pending)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._work())
        logger.debug(
            "Prompt queued",
            session_id=self.session_id,
            busy=self.busy,
            waiting=self._queue.qsize(),
        )
        return await pending.future

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            with suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        while not self._queue.empty():
            self._queue.get_nowait().future.cancel()

    async def _work(self) -> None:
        while True:
            pending = await self._queue.get()
            if pending.future.done():
                self._queue.task_done()
                continue
            self._current = pending
            try:
                result = await self._execute(pending.content)
            except asyncio.CancelledError:
                pending.future.cancel()
                raise
            except Exception as exc:
                logger.exception("Prompt execution failed", session_id=self.session_id)
                if not pending.future.done():
                    pending.future.set_exception(exc)
            else:
                if not pending.future.done():
                    pending.future.set_result(result)
            finally:
                self._current = None
                self._queue.task_done()
