"""Shared fixtures and in-memory transports for tunnel tests."""

import asyncio
import socketserver
import threading
import uuid

import pytest

from wsrelay.tunnel.errors import TransportError

TEST_UUID = "d342d11e-d424-4583-b36e-524ab1f0afa4"
TEST_IDENTITY = uuid.UUID(TEST_UUID).bytes
OTHER_IDENTITY = uuid.UUID("00000000-0000-4000-8000-000000000001").bytes


# =============================================================================
# Fake Transports
# =============================================================================


class FakeClient:
    """In-memory ClientTransport. Push None to simulate a clean peer close."""

    def __init__(self, messages=(), close_after: bool = False):
        self.inbox: asyncio.Queue = asyncio.Queue()
        for message in messages:
            self.inbox.put_nowait(message)
        if close_after:
            self.inbox.put_nowait(None)
        self.sent: list[bytes] = []
        self.close_calls = 0
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def push(self, message) -> None:
        self.inbox.put_nowait(message)

    async def receive(self):
        if not self._open:
            return None
        return await self.inbox.get()

    async def send(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("client closed")
        self.sent.append(bytes(data))

    async def close(self) -> None:
        self.close_calls += 1
        self._open = False


class FakeBackend:
    """In-memory BackendTransport. b"" in the outbox is EOF."""

    def __init__(self, chunks=(), eof: bool = False):
        self.outbox: asyncio.Queue = asyncio.Queue()
        for chunk in chunks:
            self.outbox.put_nowait(chunk)
        if eof:
            self.outbox.put_nowait(b"")
        self.written: list[bytes] = []
        self.close_calls = 0
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def push(self, chunk: bytes) -> None:
        self.outbox.put_nowait(chunk)

    async def read(self) -> bytes:
        if not self._open:
            return b""
        return await self.outbox.get()

    async def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("backend closed")
        self.written.append(bytes(data))

    async def close(self) -> None:
        self.close_calls += 1
        self._open = False
        self.outbox.put_nowait(b"")


class FakeConnector:
    """Records connect attempts and hands out a prepared backend."""

    def __init__(self, backend=None, error: BaseException | None = None, delay=0.0):
        self.backend = backend
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, int]] = []

    async def __call__(self, host: str, port: int):
        self.calls.append((host, port))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.backend


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


# =============================================================================
# TCP Echo Server
# =============================================================================


class EchoHandler(socketserver.BaseRequestHandler):
    def handle(self):
        while True:
            data = self.request.recv(65536)
            if not data:
                break
            self.request.sendall(data)


@pytest.fixture
def echo_server():
    """Threaded TCP echo server; yields (host, port)."""
    server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), EchoHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server.server_address
    finally:
        server.shutdown()
        server.server_close()
