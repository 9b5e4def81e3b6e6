"""Pydantic models for the messages exchanged over a session channel.

Clients send JSON text frames tagged with a ``type`` field.  Two inbound
kinds are understood (``run`` and ``input``); the server answers with
``output``, ``error``, ``info`` and ``done`` events, each carrying a single
text payload in ``data``.  The shapes mirror the browser editor that talks
to the relay, so field names are kept short and flat.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class RunCommand(BaseModel):
    """Request to compile (if needed) and run a program."""

    type: Literal["run"]
    code: str = Field(..., description="Source code to execute.")
    language: str = Field(
        ..., description="Language tag, e.g. 'python', 'javascript' or 'java'."
    )


class InputCommand(BaseModel):
    """One line of standard input for the running program."""

    type: Literal["input"]
    input: str = Field(
        ..., description="Text forwarded to stdin; a trailing newline is appended."
    )


InboundMessage = Annotated[Union[RunCommand, InputCommand], Field(discriminator="type")]

_inbound_adapter = TypeAdapter(InboundMessage)


def parse_inbound(raw: str | bytes) -> Union[RunCommand, InputCommand]:
    """Decode a raw frame into a command.

    Raises ``pydantic.ValidationError`` for anything that is not valid JSON
    or does not match one of the known message kinds.
    """
    return _inbound_adapter.validate_json(raw)


EventType = Literal["output", "error", "info", "done"]


class OutputEvent(BaseModel):
    """Event delivered to the client."""

    type: EventType
    data: str
