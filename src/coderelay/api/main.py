"""
FastAPI application for the code relay.

This module configures logging and the scratch directory, builds the
toolchain table from the environment and registers the WebSocket endpoint
through which clients run programs interactively.  Each connection gets
its own :class:`~coderelay.executor.ExecutionSupervisor`; sessions share
nothing but the read‑only toolchain table.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict

from fastapi import FastAPI, WebSocket

from ..channel import WebSocketChannel
from ..config import Config
from ..executor import ExecutionSupervisor, build_toolchains
from ..models import OutputEvent
from ..storage import ScratchStorage


logger = logging.getLogger("coderelay")

if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[coderelay] %(levelname)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


config = Config.from_env()

logger.setLevel(config.log_level)

logger.info(
    "Loaded config: scratch_path=%s, allowed_langs=%s, max_run=%s, compile_timeout=%s",
    config.scratch_path,
    config.allowed_langs,
    config.max_run_seconds,
    config.compile_timeout_seconds,
)

storage = ScratchStorage(config.scratch_path)
storage.prepare(clear=config.clear_scratch_on_startup)

TOOLCHAINS = build_toolchains(config)


app = FastAPI(title="Code Relay", version="0.1.0")


@app.get("/health")
async def health() -> Dict[str, str]:
    """Return a simple health check response."""
    return {"status": "ok"}


@app.websocket("/")
async def session_endpoint(websocket: WebSocket) -> None:
    """Serve one client session until the connection closes."""
    await websocket.accept()
    session_id = uuid.uuid4().hex
    client = getattr(websocket.client, "host", "unknown")
    logger.info("Session %s: connected from %s", session_id, client)

    channel = WebSocketChannel(websocket)
    supervisor = ExecutionSupervisor(
        session_id,
        channel,
        TOOLCHAINS,
        storage,
        max_run_seconds=config.max_run_seconds,
        compile_timeout_seconds=config.compile_timeout_seconds,
    )
    await channel.send(OutputEvent(type="info", data="Connected to server"))
    supervisor.start()
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("Session %s: client disconnected", session_id)
                break
            if message.get("text") is not None:
                supervisor.submit(message["text"])
            elif message.get("bytes") is not None:
                supervisor.submit(message["bytes"])
    except Exception as exc:
        # Transport failures count as a close; cleanup runs below
        logger.warning("Session %s: channel error: %s", session_id, exc)
    finally:
        await supervisor.close()
