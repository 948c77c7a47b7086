"""
Tunnel core: header decoding and the bidirectional relay.

This module provides the WebSocket-carried TCP tunnel: early-data decoding,
header parsing, the idempotent close routine and the duplex relay session.
"""

from wsrelay.tunnel.early_data import decode_early_data, encode_early_data
from wsrelay.tunnel.errors import (
    AuthError,
    ConnectError,
    DecodeError,
    LimitExceeded,
    ProtocolError,
    RelayError,
    SessionTimeout,
    TransportError,
)
from wsrelay.tunnel.lifecycle import ConnectionLifecycle, safe_close
from wsrelay.tunnel.protocol import (
    MIN_HEADER_SIZE,
    ProtocolHeader,
    build_header,
    build_response,
    identity_from_uuid,
    parse_header,
)
from wsrelay.tunnel.relay import TunnelSession

__all__ = [
    "MIN_HEADER_SIZE",
    "ProtocolHeader",
    "build_header",
    "build_response",
    "identity_from_uuid",
    "parse_header",
    "decode_early_data",
    "encode_early_data",
    "ConnectionLifecycle",
    "safe_close",
    "TunnelSession",
    "RelayError",
    "DecodeError",
    "AuthError",
    "ProtocolError",
    "ConnectError",
    "TransportError",
    "LimitExceeded",
    "SessionTimeout",
]
