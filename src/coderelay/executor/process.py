"""
Child process helpers used by the execution supervisor.

Two kinds of processes are started for a run.  The optional compile step
is run to completion and only its exit status and stderr matter; it is
represented by :class:`CompileResult`.  The run step is long lived: its
stdin stays open for client input and its stdout/stderr are pumped chunk
by chunk while it runs.

All helpers are coroutines on the server's event loop.  A compile step
awaited by one session never blocks other sessions, and cancelling the
awaiting task kills the compiler.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .toolchain import ToolchainSpec

CHUNK_SIZE = 4096


@dataclass
class CompileResult:
    """Outcome of a compile step.

    Attributes
    ----------
    returncode: int, optional
        Exit status of the compiler; ``None`` if it could not be started or
        was killed after the timeout.
    stderr: str
        Diagnostics written by the compiler.
    duration_ms: int
        Wall‑clock compile time in milliseconds.
    error: str, optional
        Description of a failure to start or finish the compiler.
    """

    returncode: Optional[int]
    stderr: str
    duration_ms: int
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None or self.returncode != 0 or bool(self.stderr)

    def describe(self) -> str:
        """Message relayed to the client for a failed compile."""
        if self.stderr:
            return self.stderr
        if self.error is not None:
            return self.error
        return f"Compilation failed (exit code: {self.returncode})"


def _process_env(spec: ToolchainSpec) -> dict[str, str]:
    return {**os.environ, **spec.env}


async def run_compile_step(
    spec: ToolchainSpec, workdir: Path, timeout: float = 0
) -> CompileResult:
    """Run ``spec.compile_command`` in ``workdir`` and wait for it.

    ``timeout`` is in seconds; ``0`` waits indefinitely.  The compiler is
    killed when the timeout expires or the calling task is cancelled.
    Raises ``ValueError`` when ``spec`` declares no compile command.
    """
    if spec.compile_command is None:
        raise ValueError(f"Toolchain {spec.language!r} has no compile step")
    start_time = time.perf_counter()

    def _elapsed() -> int:
        return int((time.perf_counter() - start_time) * 1000)

    try:
        process = await asyncio.create_subprocess_exec(
            *spec.compile_command,
            cwd=str(workdir),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            env=_process_env(spec),
        )
    except OSError as exc:
        return CompileResult(None, "", _elapsed(), error=f"Failed to start compiler: {exc}")

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout or None)
    except asyncio.TimeoutError:
        await kill_process(process)
        return CompileResult(
            None, "", _elapsed(), error=f"Compilation timed out after {timeout:g} seconds"
        )
    except asyncio.CancelledError:
        await kill_process(process)
        raise

    return CompileResult(
        process.returncode,
        stderr.decode("utf-8", errors="replace"),
        _elapsed(),
    )


async def spawn_run_process(spec: ToolchainSpec, workdir: Path) -> asyncio.subprocess.Process:
    """Start ``spec.run_command`` with all three standard streams piped.

    Raises ``OSError`` when the executable cannot be started.
    """
    return await asyncio.create_subprocess_exec(
        *spec.run_command,
        cwd=str(workdir),
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=_process_env(spec),
    )


async def pump_stream(stream: asyncio.StreamReader, deliver: Callable[[str], None]) -> None:
    """Forward text read from ``stream`` to ``deliver`` until EOF.

    Chunks are delivered as soon as they arrive.  Decoding is incremental so
    a multi‑byte character split across two reads is never mangled.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            tail = decoder.decode(b"", final=True)
            if tail:
                deliver(tail)
            return
        text = decoder.decode(chunk)
        if text:
            deliver(text)


async def kill_process(process: asyncio.subprocess.Process) -> None:
    """Kill ``process`` without a grace period and reap it."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()
