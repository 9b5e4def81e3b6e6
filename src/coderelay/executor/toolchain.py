"""
Toolchain table.

A toolchain describes how one language is turned into a running process:
which file the source is written to, an optional compile command executed
before the run, and the run command itself.  Commands are argument lists
evaluated with the session's scratch directory as working directory, so
they refer to files by their bare names.

This table is the only language‑specific knowledge in the relay.  Adding a
language means adding an entry here; the supervisor never changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from ..config import Config

logger = logging.getLogger("coderelay.toolchain")


@dataclass(frozen=True)
class ToolchainSpec:
    """How to build and run programs written in one language.

    Attributes
    ----------
    language: str
        Tag clients use in ``run`` messages.
    source_file: str
        File name the submitted code is written to.
    run_command: tuple[str, ...]
        Command launched as the interactive child process.
    compile_command: tuple[str, ...], optional
        Command run to completion before ``run_command``.
    artifacts: tuple[str, ...]
        Files produced by the compile step that must be removed after the run.
    env: Mapping[str, str]
        Extra environment variables for the run process.
    """

    language: str
    source_file: str
    run_command: Tuple[str, ...]
    compile_command: Optional[Tuple[str, ...]] = None
    artifacts: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


DEFAULT_TOOLCHAINS: Mapping[str, ToolchainSpec] = MappingProxyType(
    {
        "python": ToolchainSpec(
            language="python",
            source_file="code.py",
            run_command=("python", "code.py"),
            # Pipes are block buffered; prompts must reach the client before input() blocks
            env=MappingProxyType({"PYTHONUNBUFFERED": "1"}),
        ),
        "javascript": ToolchainSpec(
            language="javascript",
            source_file="code.js",
            run_command=("node", "code.js"),
        ),
        "java": ToolchainSpec(
            language="java",
            source_file="Main.java",
            compile_command=("javac", "Main.java"),
            # The submitted source must declare ``public class Main``
            run_command=("java", "Main"),
            artifacts=("Main.class",),
        ),
    }
)


def build_toolchains(config: Config) -> Dict[str, ToolchainSpec]:
    """Return the toolchains enabled by ``config`` with its binaries substituted."""
    binaries = {
        "python": config.python_bin,
        "node": config.node_bin,
        "javac": config.javac_bin,
        "java": config.java_bin,
    }

    def _substitute(command: Optional[Tuple[str, ...]]) -> Optional[Tuple[str, ...]]:
        if command is None:
            return None
        head, *rest = command
        return (binaries.get(head, head), *rest)

    toolchains: Dict[str, ToolchainSpec] = {}
    for language in config.allowed_langs:
        spec = DEFAULT_TOOLCHAINS.get(language)
        if spec is None:
            logger.warning("No toolchain known for allowed language %r; skipping", language)
            continue
        toolchains[language] = replace(
            spec,
            run_command=_substitute(spec.run_command),
            compile_command=_substitute(spec.compile_command),
        )
    return toolchains


def resolve_toolchain(
    toolchains: Mapping[str, ToolchainSpec], language: object
) -> Optional[ToolchainSpec]:
    """Look up the toolchain for ``language``; ``None`` when it is not offered."""
    if not isinstance(language, str):
        return None
    return toolchains.get(language.strip().lower())
