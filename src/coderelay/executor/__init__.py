"""
Execution machinery for the relay.

The toolchain table maps a language tag to the commands that build and run
a program.  The supervisor drives one session: it writes user code into the
session's scratch directory, runs the optional compile step, launches the
program and relays its streams until it exits.  Additional languages are
added by extending the table in ``toolchain.py``.
"""

from .process import CompileResult
from .supervisor import ExecutionSupervisor, SessionState
from .toolchain import DEFAULT_TOOLCHAINS, ToolchainSpec, build_toolchains, resolve_toolchain

__all__ = [
    "CompileResult",
    "DEFAULT_TOOLCHAINS",
    "ExecutionSupervisor",
    "SessionState",
    "ToolchainSpec",
    "build_toolchains",
    "resolve_toolchain",
]
