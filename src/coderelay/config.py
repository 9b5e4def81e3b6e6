"""Configuration loader.

The relay reads its configuration from environment variables so the same
image can run locally, in docker‑compose or behind a reverse proxy.
Reasonable defaults are provided so that local development works out of
the box.

Environment variables:

``CODERELAY_SCRATCH_PATH``
    Base directory for transient source files.  Each session writes into its
    own subdirectory.  Defaults to ``/tmp/coderelay``.

``CODERELAY_CLEAR_SCRATCH``
    If ``true``, leftovers from a previous server run are removed from the
    scratch directory at startup.  Defaults to ``true``.

``CODERELAY_ALLOWED_LANGS``
    Comma‑separated list of languages offered to clients.  Defaults to
    ``python,javascript,java``.

``CODERELAY_MAX_RUN_SECONDS``
    Wall‑clock limit (in seconds) for a single run.  ``0`` disables the limit,
    which leaves a silent program running until the client disconnects.
    Defaults to ``0``.

``CODERELAY_COMPILE_TIMEOUT_SECONDS``
    Wall‑clock limit for the compile step of compiled languages.  ``0``
    disables the limit.  Defaults to ``60``.

``CODERELAY_PYTHON_BIN`` / ``CODERELAY_NODE_BIN`` / ``CODERELAY_JAVAC_BIN`` / ``CODERELAY_JAVA_BIN``
    Executables used by the toolchain table.  Default to ``python``,
    ``node``, ``javac`` and ``java`` resolved from ``PATH``.

``CODERELAY_LOG_LEVEL``
    Level of the ``coderelay`` logger.  Defaults to ``INFO``.

``PORT``
    The port on which the server listens.  Defaults to 5001.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y"}


@dataclass
class Config:
    """Centralised configuration object."""

    scratch_path: str
    clear_scratch_on_startup: bool
    allowed_langs: List[str]
    max_run_seconds: float
    compile_timeout_seconds: float
    python_bin: str
    node_bin: str
    javac_bin: str
    java_bin: str
    log_level: str
    port: int

    @classmethod
    def load(cls) -> "Config":
        scratch_path = os.getenv("CODERELAY_SCRATCH_PATH", "/tmp/coderelay")
        clear_scratch = _parse_bool(os.getenv("CODERELAY_CLEAR_SCRATCH"), True)

        allowed_langs_env = os.getenv("CODERELAY_ALLOWED_LANGS", "python,javascript,java")
        allowed_langs = [lang.strip().lower() for lang in allowed_langs_env.split(",") if lang.strip()]

        def _int_var(name: str, default: int) -> int:
            val = os.getenv(name)
            if val is None:
                return default
            try:
                return int(val)
            except ValueError:
                raise ValueError(f"Invalid integer for {name}: {val}")

        def _seconds_var(name: str, default: float) -> float:
            val = os.getenv(name)
            if val is None:
                return default
            try:
                seconds = float(val)
            except ValueError:
                raise ValueError(f"Invalid number for {name}: {val}")
            if seconds < 0:
                raise ValueError(f"{name} must not be negative: {val}")
            return seconds

        max_run_seconds = _seconds_var("CODERELAY_MAX_RUN_SECONDS", 0)
        compile_timeout_seconds = _seconds_var("CODERELAY_COMPILE_TIMEOUT_SECONDS", 60)
        log_level = os.getenv("CODERELAY_LOG_LEVEL", "INFO").upper()
        port = _int_var("PORT", 5001)

        return cls(
            scratch_path=scratch_path,
            clear_scratch_on_startup=clear_scratch,
            allowed_langs=allowed_langs,
            max_run_seconds=max_run_seconds,
            compile_timeout_seconds=compile_timeout_seconds,
            python_bin=os.getenv("CODERELAY_PYTHON_BIN", "python"),
            node_bin=os.getenv("CODERELAY_NODE_BIN", "node"),
            javac_bin=os.getenv("CODERELAY_JAVAC_BIN", "javac"),
            java_bin=os.getenv("CODERELAY_JAVA_BIN", "java"),
            log_level=log_level,
            port=port,
        )

    @classmethod
    def from_env(cls) -> "Config":
        """
        Alternate constructor used by the API to load configuration.

        This wrapper calls :meth:`load` to construct the configuration.
        It exists to provide a more intuitive name when consumed in
        application code.
        """
        return cls.load()
