"""
Tunnel header definitions and utilities.

Wire format (binary, big-endian), sent once at the start of a session:
┌─────────┬───────────────┬────────────┬───────────┬─────────┬───────────┬───────────┬────────────┐
│ Ver (1B)│ Identity (16B)│ OptLen (1B)│ Opts (N B)│ Cmd (1B)│ Port (2B) │ AType (1B)│ Addr (var) │
└─────────┴───────────────┴────────────┴───────────┴─────────┴───────────┴───────────┴────────────┘

Address value by type:
    IPV4   (1): 4 bytes
    DOMAIN (2): 1-byte length + that many UTF-8 bytes
    IPV6   (3): 16 bytes

Any bytes after the address are client payload and are forwarded to the
backend as its first write.

Success response (server → client, once): [version, 0x00]
"""

import hmac
import ipaddress
import struct
import uuid
from dataclasses import dataclass

from wsrelay.models.enums import AddressType, Command
from wsrelay.tunnel.errors import AuthError, ProtocolError

# =============================================================================
# Layout
# =============================================================================

MIN_HEADER_SIZE: int = 24
IDENTITY_SIZE: int = 16

VERSION_OFFSET: int = 0
IDENTITY_OFFSET: int = 1
OPTIONS_LENGTH_OFFSET: int = IDENTITY_OFFSET + IDENTITY_SIZE  # 17
OPTIONS_OFFSET: int = OPTIONS_LENGTH_OFFSET + 1  # 18

PORT_FORMAT = ">H"
IPV4_SIZE: int = 4
IPV6_SIZE: int = 16

RESPONSE_SIZE: int = 2


@dataclass(frozen=True)
class ProtocolHeader:
    """Parsed tunnel header."""

    version: int
    identity: bytes
    options: bytes
    command: int
    port: int
    address_type: int
    address: str
    payload_offset: int

    @property
    def destination(self) -> tuple[str, int]:
        return self.address, self.port


# =============================================================================
# Identity Helpers
# =============================================================================


def identity_from_uuid(value: str) -> bytes | None:
    """
    Convert a UUID string into the 16-byte identity carried in headers.

    Args:
        value: UUID in any form accepted by uuid.UUID

    Returns:
        16 identity bytes, or None if value is empty or not a UUID
    """
    if not value:
        return None
    try:
        return uuid.UUID(value.strip()).bytes
    except ValueError:
        return None


# =============================================================================
# Parsing
# =============================================================================


def _require(data: bytes, end: int) -> None:
    if len(data) < end:
        raise ProtocolError("invalid data")


def _command_name(command: int) -> str:
    try:
        return Command(command).name
    except ValueError:
        return f"0x{command:02x}"


def _format_ipv6(raw: bytes) -> str:
    groups = struct.unpack(">8H", raw)
    return ":".join(f"{group:x}" for group in groups)


def parse_header(
    data: bytes,
    identity: bytes | None,
    allowed_versions: frozenset[int] | set[int] | None = None,
) -> ProtocolHeader:
    """
    Parse the tunnel header at the start of a buffer.

    Args:
        data: First chunk of the session (early data or first frame)
        identity: Configured 16-byte identity. None rejects every header.
        allowed_versions: Accepted version bytes. None accepts any version.

    Returns:
        Parsed ProtocolHeader; payload_offset marks the first payload byte

    Raises:
        ProtocolError: Buffer too short, truncated field, unsupported
            version/command, unknown address type or empty address
        AuthError: Identity mismatch
    """
    data = bytes(data)
    if len(data) < MIN_HEADER_SIZE:
        raise ProtocolError("invalid data")

    version = data[VERSION_OFFSET]
    header_identity = data[IDENTITY_OFFSET:OPTIONS_LENGTH_OFFSET]
    if identity is None or not hmac.compare_digest(header_identity, identity):
        raise AuthError()

    # Version is only judged once the peer is known to hold the identity
    if allowed_versions is not None and version not in allowed_versions:
        raise ProtocolError("unsupported version")

    options_length = data[OPTIONS_LENGTH_OFFSET]
    command_offset = OPTIONS_OFFSET + options_length
    _require(data, command_offset + 1)
    options = data[OPTIONS_OFFSET:command_offset]

    command = data[command_offset]
    if command != Command.TCP:
        raise ProtocolError(f"unsupported command {_command_name(command)}")

    port_offset = command_offset + 1
    _require(data, port_offset + 2)
    (port,) = struct.unpack(PORT_FORMAT, data[port_offset : port_offset + 2])

    address_type_offset = port_offset + 2
    _require(data, address_type_offset + 1)
    address_type = data[address_type_offset]
    index = address_type_offset + 1

    if address_type == AddressType.IPV4:
        _require(data, index + IPV4_SIZE)
        address = ".".join(str(octet) for octet in data[index : index + IPV4_SIZE])
        index += IPV4_SIZE
    elif address_type == AddressType.DOMAIN:
        _require(data, index + 1)
        length = data[index]
        index += 1
        _require(data, index + length)
        address = data[index : index + length].decode("utf-8", errors="replace")
        index += length
    elif address_type == AddressType.IPV6:
        _require(data, index + IPV6_SIZE)
        address = _format_ipv6(data[index : index + IPV6_SIZE])
        index += IPV6_SIZE
    else:
        raise ProtocolError("invalid address type")

    if not address:
        raise ProtocolError("address is empty")

    return ProtocolHeader(
        version=version,
        identity=header_identity,
        options=options,
        command=command,
        port=port,
        address_type=address_type,
        address=address,
        payload_offset=index,
    )


# =============================================================================
# Building
# =============================================================================


def encode_address(host: str) -> tuple[int, bytes]:
    """
    Choose the address type for a host and encode its value.

    Args:
        host: IPv4 literal, IPv6 literal or domain name

    Returns:
        Tuple of (address_type, encoded address value)
    """
    try:
        ip = ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        encoded = host.encode("utf-8")
        if not encoded or len(encoded) > 255:
            raise ValueError(f"Domain must be 1-255 bytes: {host!r}")
        return AddressType.DOMAIN, bytes([len(encoded)]) + encoded

    if ip.version == 4:
        return AddressType.IPV4, ip.packed
    return AddressType.IPV6, ip.packed


def build_header(
    identity: bytes,
    host: str,
    port: int,
    version: int = 0,
    command: int = Command.TCP,
    options: bytes = b"",
    payload: bytes = b"",
) -> bytes:
    """
    Build a tunnel header, optionally followed by the first payload bytes.

    Args:
        identity: 16-byte identity
        host: Destination host (IP literal or domain)
        port: Destination port
        version: Version byte echoed back by the server
        command: Command byte (only Command.TCP is served)
        options: Opaque option bytes
        payload: Client bytes to send along with the header

    Returns:
        Complete header as bytes
    """
    if len(identity) != IDENTITY_SIZE:
        raise ValueError(f"Identity must be {IDENTITY_SIZE} bytes")
    if len(options) > 255:
        raise ValueError("Options must be at most 255 bytes")

    address_type, address = encode_address(host)
    return (
        bytes([version])
        + identity
        + bytes([len(options)])
        + options
        + bytes([command])
        + struct.pack(PORT_FORMAT, port)
        + bytes([address_type])
        + address
        + payload
    )


def build_response(version: int) -> bytes:
    """Build the 2-byte success response sent before any relayed data."""
    return bytes([version, 0])
