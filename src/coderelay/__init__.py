"""Interactive code relay package.

This package exposes a WebSocket service that runs submitted programs and
streams their standard output and error back to the client while
forwarding lines the client types to the program's standard input.
Python, JavaScript and Java are supported through a pluggable toolchain
table.

The top‑level modules include:

* ``config`` – configuration handling for environment variables.
* ``models`` – Pydantic models for inbound commands and outbound events.
* ``storage`` – per‑session scratch directories for transient source files.
* ``channel`` – ordered delivery of events to one client.
* ``executor`` – toolchain table, process helpers and the session supervisor.
* ``api`` – FastAPI application exposing the WebSocket endpoint.
"""
