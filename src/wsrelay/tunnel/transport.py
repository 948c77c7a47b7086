"""
Transport boundary for tunnel sessions.

The relay only needs four operations per side:
    client (message based):  receive / send / close / is_open
    backend (byte stream):   read / write / close / is_open

Adapters wrap a FastAPI WebSocket and an asyncio stream pair.
"""

import asyncio
from typing import Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from wsrelay.tunnel.errors import ConnectError, TransportError
from wsrelay.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_READ_CHUNK_SIZE = 65536


# =============================================================================
# Interfaces
# =============================================================================


class ClientTransport(Protocol):
    """Message-oriented duplex channel (the WebSocket side)."""

    @property
    def is_open(self) -> bool: ...

    async def receive(self) -> bytes | None:
        """Return the next message, or None once the peer closed cleanly."""
        ...

    async def send(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


class BackendTransport(Protocol):
    """Ordered byte-stream duplex channel (the TCP side)."""

    @property
    def is_open(self) -> bool: ...

    async def read(self) -> bytes:
        """Return the next chunk, or b"" at EOF."""
        ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


# =============================================================================
# WebSocket Adapter
# =============================================================================


class WebSocketTransport:
    """ClientTransport over an accepted FastAPI WebSocket."""

    def __init__(self, ws: WebSocket):
        self.ws = ws

    @property
    def is_open(self) -> bool:
        return (
            self.ws.client_state == WebSocketState.CONNECTED
            and self.ws.application_state == WebSocketState.CONNECTED
        )

    async def receive(self) -> bytes | None:
        if not self.is_open:
            return None
        try:
            message = await self.ws.receive()
        except Exception as e:
            raise TransportError(f"websocket receive failed: {e}") from e

        if message["type"] == "websocket.disconnect":
            return None
        if message.get("bytes") is not None:
            return message["bytes"]
        # Text frames are relayed as their UTF-8 bytes
        return (message.get("text") or "").encode("utf-8")

    async def send(self, data: bytes) -> None:
        try:
            await self.ws.send_bytes(bytes(data))
        except Exception as e:
            raise TransportError(f"websocket send failed: {e}") from e

    async def close(self) -> None:
        await self.ws.close()


# =============================================================================
# TCP Stream Adapter
# =============================================================================


class StreamTransport:
    """BackendTransport over an asyncio StreamReader/StreamWriter pair."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
    ):
        self.reader = reader
        self.writer = writer
        self.chunk_size = chunk_size

    @property
    def is_open(self) -> bool:
        return not self.writer.is_closing()

    async def read(self) -> bytes:
        try:
            return await self.reader.read(self.chunk_size)
        except OSError as e:
            raise TransportError(f"backend read failed: {e}") from e

    async def write(self, data: bytes) -> None:
        try:
            self.writer.write(data)
            await self.writer.drain()
        except OSError as e:
            raise TransportError(f"backend write failed: {e}") from e

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError:
            pass


async def open_backend(
    host: str, port: int, chunk_size: int = DEFAULT_READ_CHUNK_SIZE
) -> StreamTransport:
    """
    Open a TCP connection to the destination.

    Args:
        host: Destination host
        port: Destination port
        chunk_size: Maximum bytes returned by a single read

    Returns:
        Connected StreamTransport

    Raises:
        ConnectError: Destination unreachable
    """
    try:
        reader, writer = await asyncio.open_connection(host, port)
    except (OSError, UnicodeError) as e:
        raise ConnectError(host, port, str(e) or type(e).__name__) from e

    logger.debug(f"[Backend] Connected to {host}:{port}")
    return StreamTransport(reader, writer, chunk_size)
