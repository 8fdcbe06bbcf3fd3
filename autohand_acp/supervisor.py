"""Lifecycle of one Autohand child process."""

from __future__ import annotations

import asyncio
import codecs
import signal
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass

import structlog

from autohand_acp.command import LaunchSpec
from autohand_acp.text import strip_ansi

logger = structlog.get_logger(__name__)

MAX_STDERR = 8000
KILL_GRACE_SECONDS = 2.0
READ_CHUNK = 4096


@dataclass
class ExitOutcome:
    """How the child ended. ``signal`` is set when it was killed by one."""

    returncode: int | None = None
    signal: str | None = None
    launch_error: str | None = None
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.launch_error is None and self.signal is None and not self.returncode

    def report(self) -> list[str]:
        """User-facing notices for an unsuccessful run; empty on success."""
        if self.launch_error is not None:
            return [f"Failed to launch Autohand: {self.launch_error}\n"]
        detail = f"\n{self.stderr.strip()}\n" if self.stderr.strip() else ""
        if self.signal:
            return [f"Autohand terminated with signal {self.signal}.\n{detail}"]
        if self.returncode:
            return [f"Autohand exited with code {self.returncode}.\n{detail}"]
        return []


def _signal_name(returncode: int) -> str:
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return str(-returncode)


class ProcessSupervisor:
    """Spawns the CLI, streams its output and guarantees it is reaped.

    ``terminate`` may be called at any point, including while the spawn is
    still in progress; the process is then stopped as soon as it exists.
    """

    def __init__(self, spec: LaunchSpec, *, session_id: str = "") -> None:
        self.spec = spec
        self.session_id = session_id
        self._proc: asyncio.subprocess.Process | None = None
        self._stop_requested = False
        self._stopper: asyncio.Task | None = None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def run(
        self,
        on_stdout: Callable[[str], None],
        on_stderr: Callable[[str], None] | None = None,
    ) -> ExitOutcome:
        """Run to completion, feeding ANSI-stripped text to the callbacks."""
        logger.info(
            "Spawning autohand process",
            session_id=self.session_id,
            command=self.spec.command,
            cwd=self.spec.cwd,
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.spec.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.spec.cwd,
                env=self.spec.env or None,
            )
        except OSError as exc:
            logger.warning("Failed to launch autohand", session_id=self.session_id, error=str(exc))
            return ExitOutcome(launch_error=exc.strerror or str(exc))

        self._proc = proc
        if self._stop_requested:
            self._stopper = asyncio.create_task(self._stop(proc, KILL_GRACE_SECONDS))

        stderr_parts: list[str] = []
        stderr_len = 0

        def collect_stderr(text: str) -> None:
            nonlocal stderr_len
            if stderr_len < MAX_STDERR:
                piece = text[: MAX_STDERR - stderr_len]
                stderr_parts.append(piece)
                stderr_len += len(piece)
            if on_stderr is not None:
                on_stderr(text)

        try:
            await asyncio.gather(
                self._pump(proc.stdout, on_stdout),
                self._pump(proc.stderr, collect_stderr),
            )
            returncode = await proc.wait()
            if self._stopper is not None:
                await self._stopper
        finally:
            # The caller may be cancelled mid-run; never leave the child behind.
            if proc.returncode is None:
                logger.info("Reaping autohand process", session_id=self.session_id, pid=proc.pid)
                await asyncio.shield(self._stop(proc, KILL_GRACE_SECONDS))

        outcome = ExitOutcome(returncode=returncode, stderr="".join(stderr_parts))
        if returncode < 0:
            outcome.signal = _signal_name(returncode)
        logger.info(
            "Autohand process exited",
            session_id=self.session_id,
            pid=proc.pid,
            returncode=returncode,
        )
        return outcome

    async def terminate(self, grace: float = KILL_GRACE_SECONDS) -> None:
        """SIGTERM, then SIGKILL after ``grace`` seconds. Safe to call repeatedly."""
        self._stop_requested = True
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        await self._stop(proc, grace)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _stop(self, proc: asyncio.subprocess.Process, grace: float) -> None:
        with suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace)
            return
        except asyncio.TimeoutError:
            logger.warning(
                "Autohand process did not exit in time, killing",
                session_id=self.session_id,
                pid=proc.pid,
            )
        with suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()

    @staticmethod
    async def _pump(stream: asyncio.StreamReader | None, emit: Callable[[str], None]) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_CHUNK)
            text = decoder.decode(data, final=not data)
            if text:
                text = strip_ansi(text)
                if text:
                    emit(text)
            if not data:
                return
