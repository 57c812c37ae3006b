# src/procdash/socket_client.py
"""Async client for the procdash daemon socket.

Wraps the newline-delimited JSON protocol in typed calls: one-shot
list_processes(), kill() and facts(), plus subscribe() and stream() for
live process lists. Error replies are raised as DaemonError.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from procdash.errors import DaemonError
from procdash.models import ProcessRecord, SystemSummary

# Process lists for busy hosts exceed asyncio's default 64KB line limit
READ_LIMIT = 16 * 1024 * 1024


def _records(message: dict[str, Any]) -> list[ProcessRecord]:
    return [ProcessRecord.from_dict(p) for p in message["processes"]]


class SocketClient:
    """One connection to the daemon.

    Connects or throws; reconnection is up to the caller.
    """

    def __init__(self, socket_path: Path, *, timeout: float = 10.0):
        self.socket_path = socket_path
        self.timeout = timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._ids = itertools.count(1)

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        """Open the connection.

        Raises:
            FileNotFoundError: If the socket file is missing (daemon not running)
        """
        if not self.socket_path.exists():
            raise FileNotFoundError(f"Socket not found: {self.socket_path}")
        self._reader, self._writer = await asyncio.open_unix_connection(
            str(self.socket_path), limit=READ_LIMIT
        )

    async def disconnect(self) -> None:
        if self._writer is None:
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass
        self._reader = self._writer = None

    def close(self) -> None:
        """Close without waiting, e.g. to interrupt a pending stream read."""
        if self._writer is not None:
            self._writer.close()

    async def list_processes(self) -> list[ProcessRecord]:
        """Run one sampling pass on the daemon."""
        reply = await self._call({"type": "list"}, "processes")
        return _records(reply)

    async def kill(self, pid: int) -> str:
        """Ask the daemon to terminate a process.

        Returns the daemon's confirmation message.

        Raises:
            DaemonError: kind "validation" or "termination" if refused.
        """
        reply = await self._call({"type": "kill", "pid": pid}, "kill_result")
        return reply["message"]

    async def facts(self) -> SystemSummary:
        reply = await self._call({"type": "facts"}, "facts")
        return SystemSummary.from_dict(reply["facts"])

    async def subscribe(self) -> None:
        """Start the live stream; read it with stream()."""
        await self.send_message({"type": "subscribe"})

    async def unsubscribe(self) -> None:
        await self.send_message({"type": "unsubscribe"})

    async def stream(self, timeout: float | None = None) -> AsyncIterator[list[ProcessRecord]]:
        """Yield each process list pushed by the daemon.

        Kill acknowledgements on the same connection are skipped.

        Raises:
            TimeoutError: If no message arrives within timeout.
            ConnectionError: If the daemon closes the connection.
            DaemonError: If the daemon sends an error reply.
        """
        while True:
            message = await self.read_message(timeout if timeout is not None else self.timeout)
            msg_type = message.get("type")
            if msg_type == "process_data":
                yield _records(message)
            elif msg_type == "error":
                raise DaemonError(message.get("kind", "internal"), message.get("error", ""))

    async def read_message(self, timeout: float = 1.0) -> dict[str, Any]:
        """Read one message.

        Raises:
            ConnectionError: If not connected or the connection was closed.
            TimeoutError: If nothing arrives within timeout.
        """
        if self._reader is None:
            raise ConnectionError("Not connected")
        line = await asyncio.wait_for(self._reader.readline(), timeout=timeout)
        if not line:
            raise ConnectionError("Connection closed by daemon")
        return json.loads(line.decode())

    async def send_message(self, msg: dict[str, Any]) -> None:
        """Send one message.

        Raises:
            ConnectionError: If not connected or the write fails.
        """
        if self._writer is None or self._writer.is_closing():
            raise ConnectionError("Not connected")
        try:
            self._writer.write(json.dumps(msg).encode() + b"\n")
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise ConnectionError(f"Send failed: {e}") from e

    async def _call(self, request: dict[str, Any], expected: str) -> dict[str, Any]:
        """Send a request tagged with a fresh id and wait for its reply.

        Stream pushes and replies to other requests are skipped.
        """
        request_id = next(self._ids)
        await self.send_message({**request, "id": request_id})
        while True:
            reply = await self.read_message(self.timeout)
            # Errors without an id (capacity, malformed line) are connection-wide
            if reply.get("type") == "error" and reply.get("id") in (None, request_id):
                raise DaemonError(reply.get("kind", "internal"), reply.get("error", ""))
            if reply.get("id") != request_id:
                continue
            if reply.get("type") != expected:
                raise DaemonError("protocol", f"Unexpected reply type: {reply.get('type')!r}")
            return reply
