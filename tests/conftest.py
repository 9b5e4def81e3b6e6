"""Shared fixtures for the relay tests.

The environment is prepared before any test module imports
``coderelay.api.main`` so that importing the app neither touches the
default scratch directory nor depends on a ``python`` binary on ``PATH``.
"""

from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import List

import pytest

os.environ.setdefault("CODERELAY_SCRATCH_PATH", tempfile.mkdtemp(prefix="coderelay-tests-"))
os.environ.setdefault("CODERELAY_PYTHON_BIN", sys.executable)

from coderelay.channel import Channel  # noqa: E402
from coderelay.executor import DEFAULT_TOOLCHAINS, ToolchainSpec  # noqa: E402
from coderelay.models import OutputEvent  # noqa: E402
from coderelay.storage import ScratchStorage  # noqa: E402


class RecordingChannel(Channel):
    """In‑memory channel that keeps every delivered event."""

    def __init__(self) -> None:
        super().__init__()
        self.events: List[OutputEvent] = []
        self._queue: asyncio.Queue[OutputEvent] = asyncio.Queue()

    async def _deliver(self, event: OutputEvent) -> None:
        self.events.append(event)
        self._queue.put_nowait(event)

    async def next_event(self, timeout: float = 10.0) -> OutputEvent:
        return await asyncio.wait_for(self._queue.get(), timeout)

    async def until_done(self, timeout: float = 15.0) -> List[OutputEvent]:
        """Collect events up to and including the next ``done``."""
        collected: List[OutputEvent] = []
        while True:
            event = await self.next_event(timeout)
            collected.append(event)
            if event.type == "done":
                return collected


@pytest.fixture
def storage(tmp_path: Path) -> ScratchStorage:
    scratch = ScratchStorage(tmp_path / "scratch")
    scratch.prepare()
    return scratch


@pytest.fixture
def toolchains() -> dict[str, ToolchainSpec]:
    """Toolchains that only need the interpreter running the tests."""
    python = replace(DEFAULT_TOOLCHAINS["python"], run_command=(sys.executable, "code.py"))
    return {
        "python": python,
        # Compiler always fails; the run step must still execute
        "broken-build": ToolchainSpec(
            language="broken-build",
            source_file="prog.py",
            compile_command=(
                sys.executable,
                "-c",
                "import sys; sys.stderr.write('compile failed'); sys.exit(1)",
            ),
            run_command=(sys.executable, "prog.py"),
            env=python.env,
        ),
        # Compiler leaves an artifact behind that the run reads
        "two-step": ToolchainSpec(
            language="two-step",
            source_file="prog.py",
            compile_command=(
                sys.executable,
                "-c",
                "open('prog.out', 'w').write('built')",
            ),
            run_command=(sys.executable, "prog.py"),
            artifacts=("prog.out",),
            env=python.env,
        ),
        "slow-build": ToolchainSpec(
            language="slow-build",
            source_file="prog.py",
            compile_command=(sys.executable, "-c", "import time; time.sleep(30)"),
            run_command=(sys.executable, "prog.py"),
        ),
        "missing": ToolchainSpec(
            language="missing",
            source_file="code.txt",
            run_command=("coderelay-no-such-binary",),
        ),
    }
