"""
Unix socket server for streakd.

The browser bridge and the CLI talk to the daemon with newline-delimited
JSON. Each request is an object with a 'type':

    {"type": "tab_updated", "tabId": 3, "url": "...", "status": "complete"}
    {"type": "tab_activated", "tabId": 3, "url": "..."}
    {"type": "tab_removed", "tabId": 3}
    {"type": "reset_counter"}        (or any other ControlMessage value)

Every request gets exactly one JSON reply line.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .orchestrator import ControlMessage, EventOrchestrator, NavigationEvent, NavigationKind

log = logging.getLogger("streakd.server")

MAX_LINE = 64 * 1024


class ProtocolError(ValueError):
    """A request line that can't be understood."""


@dataclass(frozen=True)
class TabRemoved:
    tab_id: int


Request = Union[NavigationEvent, TabRemoved, ControlMessage, None]


def _tab_id(data: dict) -> int:
    tab_id = data.get('tabId')
    if isinstance(tab_id, bool) or not isinstance(tab_id, int):
        raise ProtocolError("'tabId' must be an integer")
    return tab_id


def _url(data: dict) -> str:
    url = data.get('url')
    if not isinstance(url, str):
        raise ProtocolError("'url' must be a string")
    return url


def parse_request(line: Union[str, bytes]) -> Request:
    """
    Decode one request line.

    Returns None for tab updates that don't describe a finished load or a
    URL change; those are acknowledged but not processed.
    """
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Request must be a JSON object")

    msg_type = data.get('type')
    if msg_type == 'tab_updated':
        # Bridges forward the raw change info: either a new URL or a load status
        if not data.get('urlChanged') and data.get('status', 'complete') != 'complete':
            return None
        return NavigationEvent(_tab_id(data), _url(data), NavigationKind.UPDATED)
    if msg_type == 'tab_activated':
        return NavigationEvent(_tab_id(data), _url(data), NavigationKind.ACTIVATED)
    if msg_type == 'tab_removed':
        return TabRemoved(_tab_id(data))

    try:
        return ControlMessage(msg_type)
    except ValueError:
        raise ProtocolError(f"Unknown request type: {msg_type!r}") from None


class StreakServer:
    """Serves the orchestrator on a Unix domain socket."""

    def __init__(self, orchestrator: EventOrchestrator, socket_path: str):
        self.orchestrator = orchestrator
        self.socket_path = socket_path
        self._server: Optional[asyncio.AbstractServer] = None

    async def dispatch(self, request: Request) -> dict:
        if request is None:
            return {'ok': True}
        if isinstance(request, NavigationEvent):
            await self.orchestrator.handle_navigation(request)
            return {'ok': True}
        if isinstance(request, TabRemoved):
            self.orchestrator.handle_tab_removed(request.tab_id)
            return {'ok': True}
        return await self.orchestrator.handle_control(request)

    async def handle_line(self, line: bytes) -> dict:
        try:
            request = parse_request(line)
        except ProtocolError as e:
            log.warning(f"Bad request: {e}")
            return {'ok': False, 'error': str(e)}

        try:
            return await self.dispatch(request)
        except Exception as e:
            log.error(f"Error handling {request!r}: {e}", exc_info=True)
            return {'ok': False, 'error': 'internal error'}

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError:
                    # Line longer than the stream limit; the connection can't resync
                    writer.write(b'{"ok": false, "error": "request too long"}\n')
                    await writer.drain()
                    break
                if not line:
                    break
                if not line.strip():
                    continue
                reply = await self.handle_line(line)
                writer.write(json.dumps(reply).encode() + b'\n')
                await writer.drain()
        except ConnectionError as e:
            log.debug(f"Client disconnected: {e}")
        finally:
            writer.close()

    async def start(self):
        path = Path(self.socket_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            path.unlink()

        self._server = await asyncio.start_unix_server(
            self.handle_client, path=str(path), limit=MAX_LINE
        )
        os.chmod(path, 0o660)
        log.info(f"Listening on {path}")

    async def serve_forever(self):
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def stop(self):
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        Path(self.socket_path).unlink(missing_ok=True)


async def send_request(socket_path: str, request: dict) -> dict:
    """Send one request to a running daemon and return its reply."""
    reader, writer = await asyncio.open_unix_connection(socket_path, limit=MAX_LINE)
    try:
        writer.write(json.dumps(request).encode() + b'\n')
        await writer.drain()
        line = await reader.readline()
    finally:
        writer.close()
        await writer.wait_closed()

    if not line:
        raise ConnectionError("Daemon closed the connection without replying")
    return json.loads(line)
