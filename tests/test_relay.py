"""TunnelSession: handshake, relay ordering, termination and limits."""

import asyncio

import pytest

from conftest import (
    OTHER_IDENTITY,
    TEST_IDENTITY,
    FakeBackend,
    FakeClient,
    FakeConnector,
    wait_until,
)
from wsrelay.models.enums import SessionState
from wsrelay.tunnel.early_data import encode_early_data
from wsrelay.tunnel.errors import (
    AuthError,
    ConnectError,
    DecodeError,
    LimitExceeded,
    ProtocolError,
    SessionTimeout,
    TransportError,
)
from wsrelay.tunnel.protocol import build_header
from wsrelay.tunnel.relay import TunnelSession

MiB = 1024 * 1024


def make_session(client, connector, **kwargs) -> TunnelSession:
    kwargs.setdefault("idle_timeout", 0)
    return TunnelSession(client, TEST_IDENTITY, connector=connector, **kwargs)


def header(payload: bytes = b"", identity=TEST_IDENTITY, **kwargs) -> bytes:
    return build_header(identity, "example.com", 443, payload=payload, **kwargs)


# =============================================================================
# Ordering
# =============================================================================


@pytest.mark.asyncio
async def test_relays_inbound_chunks_in_order():
    client = FakeClient([header(b"first"), b"A", b"B", b"C"])
    backend = FakeBackend()
    connector = FakeConnector(backend)
    session = make_session(client, connector)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: len(backend.written) == 4 and client.sent)

    assert session.state == SessionState.RELAYING
    assert backend.written == [b"first", b"A", b"B", b"C"]
    assert connector.calls == [("example.com", 443)]
    assert session.destination == ("example.com", 443)

    client.push(None)
    await asyncio.wait_for(task, 1.0)

    assert session.state == SessionState.CLOSED
    assert session.cause is None
    assert backend.close_calls == 1
    assert client.close_calls == 1


@pytest.mark.asyncio
async def test_response_header_precedes_backend_data():
    client = FakeClient([header()])
    backend = FakeBackend([b"one", b"two"], eof=True)
    session = make_session(client, FakeConnector(backend))

    await asyncio.wait_for(session.run(), 1.0)

    assert client.sent == [b"\x00\x00", b"one", b"two"]
    # Header-only first chunk produces no backend write
    assert backend.written == []
    assert session.bytes_outbound == 6


@pytest.mark.asyncio
async def test_response_echoes_version():
    client = FakeClient([header(version=5)])
    backend = FakeBackend(eof=True)
    session = make_session(client, FakeConnector(backend))

    await asyncio.wait_for(session.run(), 1.0)

    assert client.sent == [b"\x05\x00"]


# =============================================================================
# Early Data
# =============================================================================


@pytest.mark.asyncio
async def test_early_data_carries_the_header():
    client = FakeClient()
    backend = FakeBackend([b"pong"], eof=True)
    session = make_session(client, FakeConnector(backend))

    await asyncio.wait_for(session.run(encode_early_data(header(b"ping"))), 1.0)

    assert backend.written == [b"ping"]
    assert client.sent == [b"\x00\x00", b"pong"]


@pytest.mark.asyncio
async def test_first_frame_after_early_data_is_forwarded_verbatim():
    client = FakeClient([b"second"])
    backend = FakeBackend()
    session = make_session(client, FakeConnector(backend))

    task = asyncio.create_task(session.run(encode_early_data(header(b"first"))))
    await wait_until(lambda: len(backend.written) == 2)
    client.push(None)
    await asyncio.wait_for(task, 1.0)

    assert backend.written == [b"first", b"second"]


@pytest.mark.asyncio
async def test_invalid_early_data_closes_without_connect():
    client = FakeClient([header()])
    connector = FakeConnector(FakeBackend())
    session = make_session(client, connector)

    await asyncio.wait_for(session.run("not base64!"), 1.0)

    assert isinstance(session.cause, DecodeError)
    assert connector.calls == []
    assert client.sent == []
    assert client.close_calls == 1


# =============================================================================
# Rejection
# =============================================================================


@pytest.mark.asyncio
async def test_identity_mismatch_never_connects():
    client = FakeClient([header(identity=OTHER_IDENTITY)])
    connector = FakeConnector(FakeBackend())
    session = make_session(client, connector)

    await asyncio.wait_for(session.run(), 1.0)

    assert isinstance(session.cause, AuthError)
    assert connector.calls == []
    assert client.sent == []
    assert client.close_calls == 1
    assert session.state == SessionState.CLOSED


@pytest.mark.asyncio
async def test_short_first_frame_is_rejected():
    client = FakeClient([b"\x00" * 10])
    connector = FakeConnector(FakeBackend())
    session = make_session(client, connector)

    await asyncio.wait_for(session.run(), 1.0)

    assert isinstance(session.cause, ProtocolError)
    assert connector.calls == []
    assert client.close_calls == 1


@pytest.mark.asyncio
async def test_udp_command_is_rejected():
    client = FakeClient([header(command=2)])
    connector = FakeConnector(FakeBackend())
    session = make_session(client, connector)

    await asyncio.wait_for(session.run(), 1.0)

    assert isinstance(session.cause, ProtocolError)
    assert connector.calls == []


@pytest.mark.asyncio
async def test_unaccepted_version_is_rejected():
    client = FakeClient([header(version=1)])
    connector = FakeConnector(FakeBackend())
    session = make_session(client, connector, allowed_versions=frozenset({0}))

    await asyncio.wait_for(session.run(), 1.0)

    assert isinstance(session.cause, ProtocolError)
    assert connector.calls == []


@pytest.mark.asyncio
async def test_client_closing_before_header():
    client = FakeClient(close_after=True)
    connector = FakeConnector(FakeBackend())
    session = make_session(client, connector)

    await asyncio.wait_for(session.run(), 1.0)

    assert session.cause is None
    assert connector.calls == []


# =============================================================================
# Backend Connect
# =============================================================================


@pytest.mark.asyncio
async def test_connect_failure_closes_client():
    client = FakeClient([header(b"data")])
    connector = FakeConnector(error=ConnectionRefusedError("refused"))
    session = make_session(client, connector)

    await asyncio.wait_for(session.run(), 1.0)

    assert isinstance(session.cause, ConnectError)
    assert session.cause.host == "example.com"
    assert session.cause.port == 443
    assert client.sent == []
    assert client.close_calls == 1


@pytest.mark.asyncio
async def test_connect_timeout():
    client = FakeClient([header()])
    connector = FakeConnector(FakeBackend(), delay=1.0)
    session = make_session(client, connector, connect_timeout=0.05)

    await asyncio.wait_for(session.run(), 1.0)

    assert isinstance(session.cause, ConnectError)
    assert "timed out" in str(session.cause)


# =============================================================================
# Termination
# =============================================================================


@pytest.mark.asyncio
async def test_backend_eof_closes_client_cleanly():
    client = FakeClient([header()])
    backend = FakeBackend([b"bye"], eof=True)
    session = make_session(client, FakeConnector(backend))

    await asyncio.wait_for(session.run(), 1.0)

    assert session.cause is None
    assert client.close_calls == 1
    assert backend.close_calls == 1


@pytest.mark.asyncio
async def test_client_send_failure_ends_session():
    client = FakeClient([header()])
    backend = FakeBackend()
    session = make_session(client, FakeConnector(backend))

    task = asyncio.create_task(session.run())
    await wait_until(lambda: client.sent)
    client._open = False
    backend.push(b"lost")
    await asyncio.wait_for(task, 1.0)

    assert session.cause is not None
    assert client.sent == [b"\x00\x00"]
    assert backend.close_calls == 1


class FailingBackend(FakeBackend):
    """Backend whose read or write fails mid-relay."""

    def __init__(self, fail_on: str, error: Exception):
        super().__init__()
        self.fail_on = fail_on
        self.error = error

    async def read(self) -> bytes:
        if self.fail_on == "read":
            raise self.error
        return await super().read()

    async def write(self, data: bytes) -> None:
        if self.fail_on == "write":
            raise self.error
        await super().write(data)


@pytest.mark.asyncio
async def test_backend_write_failure_ends_session():
    error = TransportError("backend reset")
    client = FakeClient([header(), b"lost"])
    backend = FailingBackend("write", error)
    session = make_session(client, FakeConnector(backend))

    await asyncio.wait_for(session.run(), 1.0)

    assert session.cause is error
    assert backend.close_calls == 1
    assert client.close_calls == 1
    assert session.state == SessionState.CLOSED


@pytest.mark.asyncio
async def test_backend_read_failure_ends_session():
    error = TransportError("backend reset")
    client = FakeClient([header()])
    backend = FailingBackend("read", error)
    session = make_session(client, FakeConnector(backend))

    await asyncio.wait_for(session.run(), 1.0)

    assert session.cause is error
    assert client.sent == [b"\x00\x00"]
    assert backend.close_calls == 1
    assert client.close_calls == 1


@pytest.mark.asyncio
async def test_idle_timer_resets_on_traffic():
    client = FakeClient([header()])
    backend = FakeBackend()
    session = make_session(client, FakeConnector(backend), idle_timeout=0.1)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: client.sent)
    for _ in range(5):
        await asyncio.sleep(0.06)
        backend.push(b"tick")
    await wait_until(lambda: len(client.sent) == 6)

    assert not task.done()
    assert session.state == SessionState.RELAYING

    await asyncio.wait_for(task, 1.0)

    assert isinstance(session.cause, SessionTimeout)
    assert client.sent[1:] == [b"tick"] * 5
    assert backend.close_calls == 1
    assert client.close_calls == 1


@pytest.mark.asyncio
async def test_cancelling_run_closes_both_transports():
    client = FakeClient([header()])
    backend = FakeBackend()
    session = make_session(client, FakeConnector(backend))

    task = asyncio.create_task(session.run())
    await wait_until(lambda: client.sent)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert client.close_calls == 1
    assert backend.close_calls == 1
    assert session.state == SessionState.CLOSED


@pytest.mark.asyncio
async def test_idle_session_times_out():
    client = FakeClient()
    connector = FakeConnector(FakeBackend())
    session = make_session(client, connector, idle_timeout=0.05)

    await asyncio.wait_for(session.run(), 1.0)

    assert isinstance(session.cause, SessionTimeout)
    assert connector.calls == []
    assert client.close_calls == 1


# =============================================================================
# Quota
# =============================================================================


@pytest.mark.asyncio
async def test_quota_stops_outbound_forwarding():
    chunk = b"x" * 65536
    client = FakeClient([header()])
    backend = FakeBackend([chunk] * 96, eof=True)  # 6 MiB
    session = make_session(client, FakeConnector(backend), quota_bytes=5 * MiB)

    await asyncio.wait_for(session.run(), 5.0)

    assert isinstance(session.cause, LimitExceeded)
    forwarded = sum(len(c) for c in client.sent[1:])
    assert forwarded == 5 * MiB
    assert session.bytes_outbound == 5 * MiB
    assert backend.close_calls == 1
    assert client.close_calls == 1

    sent_after_close = len(client.sent)
    await asyncio.sleep(0.01)
    assert len(client.sent) == sent_after_close