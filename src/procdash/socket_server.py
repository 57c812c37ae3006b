# src/procdash/socket_server.py
"""Unix socket server exposing the control surface and the process stream.

Protocol: newline-delimited JSON in both directions. Every client request
has a "type" and may carry an "id" that is echoed on the reply.

One-shot requests (answered once):
- list: {"type": "processes", "processes": [...]}
- facts: {"type": "facts", "facts": {...}}
- kill: {"type": "kill_result", ...} on a connection that is not subscribed

Streaming:
- subscribe: process_data now and every stream interval
- unsubscribe: stops the stream
- kill while subscribed: process_killed ack, then a fresh process_data

Failures are reported as {"type": "error", "kind": ..., "error": ...} and
never close the connection.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from procdash.errors import ProcdashError

if TYPE_CHECKING:
    from procdash.control import ControlSurface
    from procdash.publisher import StreamingPublisher

log = structlog.get_logger()


def encode_message(message: dict[str, Any]) -> bytes:
    """Encode a message as one JSON line."""
    return json.dumps(message).encode() + b"\n"


def error_message(kind: str, error: str, request_id: object = None) -> dict[str, Any]:
    message: dict[str, Any] = {"type": "error", "kind": kind, "error": error}
    if request_id is not None:
        message["id"] = request_id
    return message


class SocketServer:
    """Unix domain socket server for one-shot queries and live streaming."""

    def __init__(
        self,
        socket_path: Path,
        control: ControlSurface,
        publisher: StreamingPublisher,
        *,
        max_clients: int = 0,
    ) -> None:
        self.socket_path = socket_path
        self.control = control
        self.publisher = publisher
        self.max_clients = max_clients
        self._server: asyncio.Server | None = None
        self._clients: dict[str, asyncio.StreamWriter] = {}
        self._ids = itertools.count(1)
        self._running = False

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def has_clients(self) -> bool:
        """Check if any clients are connected."""
        return len(self._clients) > 0

    async def start(self) -> None:
        """Start the socket server."""
        # Remove stale socket file
        if self.socket_path.exists():
            self.socket_path.unlink()

        self.socket_path.parent.mkdir(parents=True, exist_ok=True)

        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path),
        )
        # Owner and group only
        os.chmod(self.socket_path, stat.S_IRWXU | stat.S_IRWXG)

        self._running = True
        log.info("socket_server_started", path=str(self.socket_path))

    async def stop(self) -> None:
        """Stop the server, cancel all streams and close every client."""
        self._running = False

        await self.publisher.stop()

        for writer in list(self._clients.values()):
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
        self._clients.clear()

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        if self.socket_path.exists():
            self.socket_path.unlink()

        log.info("socket_server_stopped")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a new client connection."""
        if self.max_clients and len(self._clients) >= self.max_clients:
            log.warning("client_rejected", reason="max_clients", limit=self.max_clients)
            writer.write(encode_message(error_message("capacity", "Too many clients")))
            writer.close()
            return

        client_id = f"client-{next(self._ids)}"
        self._clients[client_id] = writer
        log.info("client_connected", client=client_id, count=len(self._clients))

        # The stream task and request replies share one writer
        write_lock = asyncio.Lock()

        async def deliver(message: dict[str, Any]) -> None:
            async with write_lock:
                if writer.is_closing():
                    raise ConnectionError("Client connection closed")
                writer.write(encode_message(message))
                await writer.drain()

        try:
            while self._running:
                try:
                    line = await asyncio.wait_for(reader.readline(), timeout=1.0)
                except TimeoutError:
                    continue
                except ValueError:
                    # Line longer than the stream reader limit
                    await deliver(error_message("protocol", "Message too long"))
                    break
                if not line:
                    break
                await self._handle_message(client_id, line, deliver)
        except ConnectionError:
            pass
        finally:
            await self.publisher.unsubscribe(client_id)
            self._clients.pop(client_id, None)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            log.info("client_disconnected", client=client_id, remaining=len(self._clients))

    async def _handle_message(self, client_id: str, line: bytes, deliver) -> None:
        """Dispatch one client request."""
        try:
            msg = json.loads(line.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            log.warning("invalid_client_message", client=client_id)
            await deliver(error_message("protocol", "Invalid JSON"))
            return
        if not isinstance(msg, dict):
            log.warning("invalid_client_message", client=client_id)
            await deliver(error_message("protocol", "Message must be a JSON object"))
            return

        msg_type = msg.get("type")
        request_id = msg.get("id")

        if msg_type == "subscribe":
            await self.publisher.subscribe(client_id, deliver)
        elif msg_type == "unsubscribe":
            await self.publisher.unsubscribe(client_id)
        elif msg_type == "kill" and self.publisher.is_subscribed(client_id):
            await self.publisher.handle_kill(
                msg.get("pid"), deliver, client_id=client_id, request_id=request_id
            )
        elif msg_type in ("list", "kill", "facts"):
            await deliver(await self._one_shot(msg_type, msg, request_id))
        else:
            log.warning("unknown_client_message", client=client_id, type=msg_type)
            await deliver(
                error_message("protocol", f"Unknown message type: {msg_type!r}", request_id)
            )

    async def _one_shot(self, msg_type: str, msg: dict[str, Any], request_id: object) -> dict:
        """Run a control surface operation and build its reply."""
        try:
            if msg_type == "list":
                records = await asyncio.to_thread(self.control.list_processes)
                reply: dict[str, Any] = {
                    "type": "processes",
                    "processes": [r.to_dict() for r in records],
                }
            elif msg_type == "facts":
                summary = await asyncio.to_thread(self.control.system_facts)
                reply = {"type": "facts", "facts": summary.to_dict()}
            else:
                result = await asyncio.to_thread(self.control.kill_process, msg.get("pid"))
                reply = {"type": "kill_result", **result.to_dict()}
        except ProcdashError as e:
            if e.kind == "source_unavailable":
                log.error("request_failed", type=msg_type, error=str(e))
            return error_message(e.kind, str(e), request_id)

        if request_id is not None:
            reply["id"] = request_id
        return reply
