"""
Tunnel session: header handshake followed by a bidirectional relay.

Architecture:
    Client (WebSocket) ←→ TunnelSession ←→ Backend (TCP)

One session runs two pumps:
    inbound   client → backend: parses the header, connects, forwards the
              rest of the first chunk, publishes the backend on a one-shot
              rendezvous, then forwards every following message
    outbound  backend → client: waits on the rendezvous, sends the 2-byte
              success response, then forwards every backend read

Each pump awaits its write before reading again, so at most one chunk per
direction is in flight. The first pump to finish ends the session.
"""

import asyncio
from collections.abc import Awaitable, Callable

from wsrelay.models.enums import SessionState
from wsrelay.tunnel.early_data import decode_early_data
from wsrelay.tunnel.errors import (
    ConnectError,
    LimitExceeded,
    RelayError,
    SessionTimeout,
)
from wsrelay.tunnel.lifecycle import ConnectionLifecycle
from wsrelay.tunnel.protocol import ProtocolHeader, build_response, parse_header
from wsrelay.tunnel.transport import (
    BackendTransport,
    ClientTransport,
    open_backend,
)
from wsrelay.utils.logger import get_logger

logger = get_logger(__name__)

Connector = Callable[[str, int], Awaitable[BackendTransport]]

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_IDLE_TIMEOUT = 300.0


class TunnelSession:
    """
    One tunneled TCP connection carried by one WebSocket.

    The session owns both transports for its whole life and closes both
    exactly once through its ConnectionLifecycle, whatever ends it.
    """

    def __init__(
        self,
        client: ClientTransport,
        identity: bytes | None,
        connector: Connector = open_backend,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        quota_bytes: int = 0,
        allowed_versions: frozenset[int] | None = None,
        peer: str = "unknown",
    ):
        """
        Initialize tunnel session.

        Args:
            client: Accepted client transport
            identity: Configured 16-byte identity (None rejects every header)
            connector: Coroutine opening the backend for (host, port)
            connect_timeout: Seconds allowed for the backend connect
            idle_timeout: Seconds without traffic before closing, 0 disables
            quota_bytes: Outbound byte ceiling per session, 0 disables
            allowed_versions: Accepted header versions, None accepts any
            peer: Client address for log messages
        """
        self.client = client
        self.identity = identity
        self.connector = connector
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self.quota_bytes = quota_bytes
        self.allowed_versions = allowed_versions
        self.peer = peer

        self.state = SessionState.AWAITING_HEADER
        self.header: ProtocolHeader | None = None
        self.backend: BackendTransport | None = None
        self.bytes_inbound = 0
        self.bytes_outbound = 0

        self.lifecycle = ConnectionLifecycle(client, self.log_prefix)
        self._loop = asyncio.get_running_loop()
        self._backend_ready: asyncio.Future = self._loop.create_future()
        self.last_activity = self._loop.time()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def destination(self) -> tuple[str, int] | None:
        return self.header.destination if self.header else None

    @property
    def log_prefix(self) -> str:
        if self.header:
            host, port = self.header.destination
            return f"[Session {self.peer} → {host}:{port}]"
        return f"[Session {self.peer}]"

    @property
    def cause(self) -> BaseException | None:
        """Exception that ended the session, None for a clean close."""
        return self.lifecycle.cause

    # -------------------------------------------------------------------------
    # Entry Point
    # -------------------------------------------------------------------------

    async def run(self, early_data_header: str = "") -> None:
        """
        Run the session until either side closes or an error ends it.

        Never raises RelayError; the outcome is recorded on the lifecycle.

        Args:
            early_data_header: Raw Sec-WebSocket-Protocol value, may be empty
        """
        tasks = [
            asyncio.create_task(self._inbound_pump(early_data_header)),
            asyncio.create_task(self._outbound_pump()),
        ]
        if self.idle_timeout > 0:
            tasks.append(asyncio.create_task(self._idle_watchdog()))

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            self.state = SessionState.CLOSING
            await self.lifecycle.close(self._first_error(done))
        finally:
            for t in tasks:
                t.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception) and not isinstance(
                    result, RelayError
                ):
                    logger.exception(
                        f"{self.log_prefix} Unexpected error: {result!r}"
                    )
            if not self._backend_ready.done():
                self._backend_ready.cancel()
            # Covers cancellation of run() itself
            await self.lifecycle.close()
            self.state = SessionState.CLOSED

        logger.info(
            f"{self.log_prefix} Session ended "
            f"(up={self.bytes_inbound}b, down={self.bytes_outbound}b)"
        )

    @staticmethod
    def _first_error(done: set[asyncio.Task]) -> BaseException | None:
        for t in done:
            if not t.cancelled() and t.exception() is not None:
                return t.exception()
        return None

    # -------------------------------------------------------------------------
    # Inbound: client → backend
    # -------------------------------------------------------------------------

    async def _inbound_pump(self, early_data_header: str) -> None:
        early_data = decode_early_data(early_data_header)
        first = early_data or await self.client.receive()
        if first is None:
            logger.debug(f"{self.log_prefix} Client closed before header")
            return
        self._touch()

        self.header = parse_header(first, self.identity, self.allowed_versions)
        self.lifecycle.log_prefix = self.log_prefix

        backend = await self._connect()
        payload = first[self.header.payload_offset :]
        if payload:
            await self._write_backend(backend, payload)

        self.state = SessionState.RELAYING
        self._backend_ready.set_result(backend)

        while True:
            data = await self.client.receive()
            if data is None:
                logger.debug(f"{self.log_prefix} Client closed")
                return
            await self._write_backend(backend, data)

    async def _connect(self) -> BackendTransport:
        host, port = self.header.destination
        self.state = SessionState.CONNECTING
        logger.info(f"{self.log_prefix} Connecting")

        try:
            backend = await asyncio.wait_for(
                self.connector(host, port), timeout=self.connect_timeout
            )
        except asyncio.TimeoutError:
            raise ConnectError(
                host, port, f"timed out after {self.connect_timeout:g}s"
            ) from None
        except OSError as e:
            raise ConnectError(host, port, str(e)) from e

        self.backend = backend
        await self.lifecycle.attach_backend(backend)
        return backend

    async def _write_backend(self, backend: BackendTransport, data: bytes) -> None:
        await backend.write(data)
        self.bytes_inbound += len(data)
        self._touch()
        logger.trace(f"{self.log_prefix} Client→Backend: {len(data)}b")

    # -------------------------------------------------------------------------
    # Outbound: backend → client
    # -------------------------------------------------------------------------

    async def _outbound_pump(self) -> None:
        backend = await self._backend_ready
        await self.client.send(build_response(self.header.version))
        logger.debug(f"{self.log_prefix} Tunnel established")

        while True:
            chunk = await backend.read()
            if not chunk:
                logger.debug(f"{self.log_prefix} Backend closed")
                return

            if self.quota_bytes:
                if self.bytes_outbound + len(chunk) > self.quota_bytes:
                    raise LimitExceeded(self.quota_bytes)

            await self.client.send(chunk)
            self.bytes_outbound += len(chunk)
            self._touch()
            logger.trace(f"{self.log_prefix} Backend→Client: {len(chunk)}b")

    # -------------------------------------------------------------------------
    # Idle Watchdog
    # -------------------------------------------------------------------------

    def _touch(self) -> None:
        self.last_activity = self._loop.time()

    async def _idle_watchdog(self) -> None:
        while True:
            idle = self._loop.time() - self.last_activity
            if idle >= self.idle_timeout:
                raise SessionTimeout(self.idle_timeout)
            await asyncio.sleep(self.idle_timeout - idle)
