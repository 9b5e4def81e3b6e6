"""
API tests for the code relay.

These tests exercise the WebSocket endpoint using FastAPI's TestClient.
They verify that programs stream their output in order, that input typed
by the client reaches the program, that a session only runs one program
at a time and that disconnecting kills the program and removes its files.
"""

from __future__ import annotations

import os
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from coderelay.api.main import app, storage


@pytest.fixture(autouse=True)
def isolate_storage(tmp_path, monkeypatch):
    """Provide a temporary scratch directory during tests."""
    monkeypatch.setattr(storage, "base_dir", Path(tmp_path))
    yield


def _until_done(ws) -> list:
    events = []
    while True:
        event = ws.receive_json()
        events.append(event)
        if event["type"] == "done":
            return events


def _stdout(events) -> str:
    return "".join(e["data"] for e in events if e["type"] == "output")


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def test_health():
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_connection_notice():
    client = TestClient(app)
    with client.websocket_connect("/") as ws:
        assert ws.receive_json() == {"type": "info", "data": "Connected to server"}


def test_run_python_streams_output_then_done():
    client = TestClient(app)
    with client.websocket_connect("/") as ws:
        ws.receive_json()
        ws.send_json({"type": "run", "code": "print('A')\nprint('B')", "language": "python"})
        events = _until_done(ws)
    out = _stdout(events)
    assert out.index("A") < out.index("B")
    assert events[-1] == {"type": "done", "data": "Program finished (exit code: 0)"}


def test_interactive_input_and_single_run():
    client = TestClient(app)
    code = 'name = input("Enter your name: ")\nprint("Hello, " + name)'
    with client.websocket_connect("/") as ws:
        ws.receive_json()
        ws.send_json({"type": "run", "code": code, "language": "python"})
        prompt = ""
        while prompt != "Enter your name: ":
            event = ws.receive_json()
            assert event["type"] == "output"
            prompt += event["data"]
        ws.send_json({"type": "run", "code": "print('again')", "language": "python"})
        assert ws.receive_json() == {"type": "error", "data": "Another program is running"}
        ws.send_json({"type": "input", "input": "Alice"})
        events = _until_done(ws)
        assert _stdout(events) == "Hello, Alice\n"
        # The session is idle again and accepts a new run
        ws.send_json({"type": "run", "code": "print('again')", "language": "python"})
        assert _stdout(_until_done(ws)) == "again\n"


def test_unsupported_language():
    client = TestClient(app)
    with client.websocket_connect("/") as ws:
        ws.receive_json()
        ws.send_json({"type": "run", "code": "puts 'hi'", "language": "ruby"})
        assert ws.receive_json() == {"type": "error", "data": "Unsupported language"}
        assert [p for p in storage.base_dir.rglob("*") if p.is_file()] == []


def test_invalid_message_format():
    client = TestClient(app)
    with client.websocket_connect("/") as ws:
        ws.receive_json()
        ws.send_text("this is not json")
        assert ws.receive_json() == {"type": "error", "data": "Invalid message format"}
        ws.send_json({"type": "launch", "code": "print(1)"})
        assert ws.receive_json() == {"type": "error", "data": "Invalid message format"}


def test_disconnect_kills_running_program():
    client = TestClient(app)
    code = "import os, time\nprint(os.getpid())\ntime.sleep(60)"
    with client.websocket_connect("/") as ws:
        ws.receive_json()
        ws.send_json({"type": "run", "code": code, "language": "python"})
        pid = int(ws.receive_json()["data"].strip())
        assert _pid_alive(pid)
        assert list(storage.base_dir.rglob("code.py"))

    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        if not _pid_alive(pid) and not list(storage.base_dir.rglob("code.py")):
            break
        time.sleep(0.05)
    assert not _pid_alive(pid)
    assert list(storage.base_dir.rglob("code.py")) == []
