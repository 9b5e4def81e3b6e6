"""
Per‑connection execution supervisor.

A supervisor owns at most one child process at a time together with the
transient files written for it.  It translates client commands into
process lifecycle actions and process activity into client events:

* ``run`` writes the source into the session's scratch directory, runs the
  optional compile step, then launches the program with piped stdio.
* ``input`` writes one line to the running program's stdin.
* stdout chunks become ``output`` events, stderr chunks ``error`` events,
  and the exit status a final ``done`` event.

State is mutated from a single task that consumes one queue.  Client frames,
stream chunks, exit notifications and timeouts are all posted to that
queue, so no two handlers for the same session ever run concurrently and
no locks are needed.  Stream pumps, the stdin writer and the exit watcher
never touch state themselves; the exit notification is posted only after
both pipes reach EOF, which keeps ``done`` the last event of a run.  Input
lines are queued for a per-run writer task, so a program that stops
reading stdin cannot hold up output, timeouts or other commands.

Whatever ends a run (normal exit, a process error, a timeout or the
channel closing) goes through the same cleanup: kill the process if it is
still alive, delete the run's files on a best effort basis and reset the
session to idle.

A failed compile step is reported but does not prevent the run command from
executing; the run's own failure (for example a missing class) is what the
client sees next.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Union

from pydantic import ValidationError

from ..channel import Channel
from ..models import EventType, InputCommand, OutputEvent, RunCommand, parse_inbound
from ..storage import ScratchStorage
from .process import kill_process, pump_stream, run_compile_step, spawn_run_process
from .toolchain import ToolchainSpec, resolve_toolchain

logger = logging.getLogger("coderelay.supervisor")


class SessionState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class _Frame:
    raw: Union[str, bytes]


@dataclass
class _Chunk:
    run_id: int
    kind: EventType
    text: str


@dataclass
class _Exited:
    run_id: int
    returncode: int


@dataclass
class _Crashed:
    run_id: int
    reason: str


@dataclass
class _TimedOut:
    run_id: int


@dataclass
class _InputFailed:
    run_id: int
    reason: str


_Event = Union[_Frame, _Chunk, _Exited, _Crashed, _TimedOut, _InputFailed]


class ExecutionSupervisor:
    """State machine governing the runs of one session."""

    def __init__(
        self,
        session_id: str,
        channel: Channel,
        toolchains: Mapping[str, ToolchainSpec],
        storage: ScratchStorage,
        max_run_seconds: float = 0,
        compile_timeout_seconds: float = 0,
    ) -> None:
        """
        Parameters
        ----------
        session_id: str
            Unique identifier; also names the session's scratch subdirectory.
        channel: Channel
            Where events for the client are sent.
        toolchains: Mapping[str, ToolchainSpec]
            Languages this session may run.
        storage: ScratchStorage
            Scratch storage for source files.
        max_run_seconds: float, optional
            Kill a run that is still alive after this many seconds.  ``0``
            lets runs live until they exit or the channel closes.
        compile_timeout_seconds: float, optional
            Limit for the compile step.  ``0`` waits indefinitely.
        """
        self.session_id = session_id
        self.channel = channel
        self.toolchains = toolchains
        self.storage = storage
        self.max_run_seconds = max_run_seconds
        self.compile_timeout_seconds = compile_timeout_seconds

        self.active_process: Optional[asyncio.subprocess.Process] = None
        self.active_file_paths: List[Path] = []

        self._run_id = 0
        self._events: asyncio.Queue[_Event] = asyncio.Queue()
        self._actor: Optional[asyncio.Task] = None
        self._watcher: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._writer: Optional[asyncio.Task] = None
        self._pending_input: Optional[asyncio.Queue[bytes]] = None

    @property
    def state(self) -> SessionState:
        return SessionState.IDLE if self.active_process is None else SessionState.RUNNING

    def start(self) -> None:
        """Start consuming events.  Must be called from the event loop."""
        if self._actor is None:
            self._actor = asyncio.create_task(self._serve(), name=f"session-{self.session_id}")

    def submit(self, raw: Union[str, bytes]) -> None:
        """Queue one inbound frame from the client."""
        self._events.put_nowait(_Frame(raw))

    async def close(self) -> None:
        """Tear the session down after the channel has gone away.

        No further events reach the client.  A running process is killed
        and every transient file of the session is removed.
        """
        self.channel.mark_closed()
        if self._actor is not None:
            self._actor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._actor
            self._actor = None

        process = self.active_process
        if process is not None:
            logger.info("Session %s: channel closed, killing pid %s", self.session_id, process.pid)
            await kill_process(process)
        await self._release_run()
        await asyncio.to_thread(self.storage.delete_session, self.session_id)
        logger.info("Session %s: closed", self.session_id)

    # -- event loop ---------------------------------------------------------

    async def _serve(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._dispatch(event)
            except Exception:
                logger.exception(
                    "Session %s: unhandled error while handling %s",
                    self.session_id,
                    type(event).__name__,
                )
                await self._emit("error", "Internal server error")

    async def _dispatch(self, event: _Event) -> None:
        if isinstance(event, _Frame):
            await self._handle_frame(event.raw)
            return
        # Anything else belongs to a run; drop leftovers of runs already cleaned up
        if event.run_id != self._run_id or self.active_process is None:
            return
        if isinstance(event, _Chunk):
            await self._emit(event.kind, event.text)
        elif isinstance(event, _Exited):
            await self._finish_run(event.returncode)
        elif isinstance(event, _Crashed):
            await self._fail_run(event.reason)
        elif isinstance(event, _TimedOut):
            await self._expire_run()
        elif isinstance(event, _InputFailed):
            await self._emit("error", f"Failed to send input: {event.reason}")

    async def _emit(self, kind: EventType, data: str) -> None:
        await self.channel.send(OutputEvent(type=kind, data=data))

    # -- client commands ----------------------------------------------------

    async def _handle_frame(self, raw: Union[str, bytes]) -> None:
        try:
            command = parse_inbound(raw)
        except ValidationError as exc:
            logger.info(
                "Session %s: rejected malformed message (%d validation errors)",
                self.session_id,
                exc.error_count(),
            )
            await self._emit("error", "Invalid message format")
            return
        if isinstance(command, RunCommand):
            await self._start_run(command)
        else:
            await self._forward_input(command)

    async def _start_run(self, command: RunCommand) -> None:
        if self.active_process is not None:
            await self._emit("error", "Another program is running")
            return

        spec = resolve_toolchain(self.toolchains, command.language)
        if spec is None:
            logger.info("Session %s: unsupported language %r", self.session_id, command.language)
            await self._emit("error", "Unsupported language")
            return

        workdir = self.storage.session_dir(self.session_id)
        try:
            source_path = await asyncio.to_thread(
                self.storage.save, self.session_id, spec.source_file, command.code
            )
        except OSError as exc:
            logger.warning("Session %s: failed to write source: %s", self.session_id, exc)
            await self._emit("error", f"Failed to write code file: {exc}")
            return
        self.active_file_paths = [source_path] + [workdir / name for name in spec.artifacts]

        if spec.compile_command is not None:
            result = await run_compile_step(spec, workdir, self.compile_timeout_seconds)
            logger.info(
                "Session %s: compiled %s in %sms (exit code %s)",
                self.session_id,
                spec.source_file,
                result.duration_ms,
                result.returncode,
            )
            if result.failed:
                await self._emit("error", result.describe())

        try:
            process = await spawn_run_process(spec, workdir)
        except OSError as exc:
            logger.warning("Session %s: failed to start %s: %s", self.session_id, spec.run_command[0], exc)
            await self._release_run()
            await self._emit("error", f"Process error: {exc}")
            return

        self._run_id += 1
        self.active_process = process
        self._watcher = asyncio.create_task(self._watch(self._run_id, process))
        self._pending_input = asyncio.Queue()
        self._writer = asyncio.create_task(
            self._feed_stdin(self._run_id, process, self._pending_input)
        )
        if self.max_run_seconds > 0:
            self._timer = asyncio.create_task(self._expire_after(self._run_id, self.max_run_seconds))
        logger.info(
            "Session %s: running %s program as pid %s", self.session_id, spec.language, process.pid
        )

    async def _forward_input(self, command: InputCommand) -> None:
        process = self.active_process
        if process is None:
            logger.debug("Session %s: ignoring input while idle", self.session_id)
            return
        stdin = process.stdin
        if stdin is None or stdin.is_closing():
            await self._emit("error", "Failed to send input: stdin is closed")
            return
        # Only the writer task waits on the pipe
        self._pending_input.put_nowait(f"{command.input}\n".encode("utf-8"))

    # -- process lifecycle --------------------------------------------------

    async def _watch(self, run_id: int, process: asyncio.subprocess.Process) -> None:
        def _deliver(kind: EventType):
            return lambda text: self._events.put_nowait(_Chunk(run_id, kind, text))

        try:
            await asyncio.gather(
                pump_stream(process.stdout, _deliver("output")),
                pump_stream(process.stderr, _deliver("error")),
            )
            returncode = await process.wait()
        except Exception as exc:
            self._events.put_nowait(_Crashed(run_id, str(exc) or type(exc).__name__))
            return
        self._events.put_nowait(_Exited(run_id, returncode))

    async def _feed_stdin(
        self, run_id: int, process: asyncio.subprocess.Process, lines: asyncio.Queue[bytes]
    ) -> None:
        stdin = process.stdin
        while True:
            line = await lines.get()
            if stdin.is_closing():
                self._events.put_nowait(_InputFailed(run_id, "stdin is closed"))
                continue
            try:
                stdin.write(line)
                await stdin.drain()
            except OSError as exc:
                self._events.put_nowait(_InputFailed(run_id, str(exc) or type(exc).__name__))

    async def _expire_after(self, run_id: int, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self._events.put_nowait(_TimedOut(run_id))

    async def _finish_run(self, returncode: int) -> None:
        logger.info("Session %s: program exited with code %s", self.session_id, returncode)
        await self._release_run()
        await self._emit("done", f"Program finished (exit code: {returncode})")

    async def _fail_run(self, reason: str) -> None:
        logger.warning("Session %s: process error: %s", self.session_id, reason)
        if self.active_process is not None:
            await kill_process(self.active_process)
        await self._release_run()
        await self._emit("error", f"Process error: {reason}")

    async def _expire_run(self) -> None:
        process = self.active_process
        logger.info(
            "Session %s: pid %s exceeded %ss, killing", self.session_id, process.pid, self.max_run_seconds
        )
        await self._emit("error", f"Execution timed out after {self.max_run_seconds:g} seconds")
        # The watcher reports the exit, which produces the final ``done``
        with contextlib.suppress(ProcessLookupError):
            process.kill()

    async def _release_run(self) -> None:
        for task in (self._timer, self._watcher, self._writer):
            if task is not None and not task.done():
                task.cancel()
        self._timer = None
        self._watcher = None
        self._writer = None
        self._pending_input = None

        if self.active_file_paths:
            await asyncio.to_thread(self._delete_files, list(self.active_file_paths))
        self.active_file_paths = []
        self.active_process = None

    def _delete_files(self, paths: List[Path]) -> None:
        for path in paths:
            self.storage.delete(path)
