"""
Enumeration types for wsrelay.

This module defines the enumeration types shared by the tunnel core,
the server and the CLI.
"""

from enum import Enum, IntEnum


# =============================================================================
# Wire-Level Enums
# =============================================================================


class Command(IntEnum):
    """
    Header command byte.

    Only TCP is relayed; the other values are recognised so the rejection
    names them (e.g. "unsupported command UDP").
    """

    TCP = 0x01
    UDP = 0x02
    MUX = 0x03


class AddressType(IntEnum):
    """Header address-type byte."""

    IPV4 = 0x01
    DOMAIN = 0x02
    IPV6 = 0x03


# =============================================================================
# Session-Related Enums
# =============================================================================


class SessionState(str, Enum):
    """
    Tunnel session lifecycle status.

    State transitions:
        AWAITING_HEADER -> CONNECTING -> RELAYING -> CLOSING -> CLOSED
        Any -> CLOSING -> CLOSED (error, timeout, quota, peer close)
    """

    AWAITING_HEADER = "awaiting_header"
    CONNECTING = "connecting"
    RELAYING = "relaying"
    CLOSING = "closing"
    CLOSED = "closed"


class LifecycleState(str, Enum):
    """Close-routine state shared by both relay directions."""

    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels for wsrelay components.

    Levels (from most to least verbose):
        - FULL: Complete trace including per-chunk relay messages
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
