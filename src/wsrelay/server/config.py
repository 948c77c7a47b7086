"""
Server configuration for wsrelay.

This module defines the configuration dataclass for the relay server,
providing a centralized place for all configurable parameters.

Configuration is read once at startup and passed explicitly to the app
factory and to every tunnel session; the tunnel core never reads the
process environment itself.

Usage:
    from wsrelay.server.config import config

    config.load_env()
    config.PORT = 9000
"""

import os
from dataclasses import dataclass, field, fields
from typing import Mapping

from wsrelay.models.enums import LogLevel
from wsrelay.tunnel.protocol import identity_from_uuid

ENV_PREFIX = "WSRELAY_"


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class ServerConfig:
    """
    Relay server configuration.

    Attributes:
        BIND_IP: IP address to bind the server to.
        PORT: HTTP/WebSocket port.
        USER_ID: Identity (UUID) every tunnel header must carry.
        CONNECT_TIMEOUT_SECONDS: Backend connect timeout.
        IDLE_TIMEOUT_SECONDS: Close sessions idle for this long (0 = never).
        SESSION_QUOTA_BYTES: Outbound byte ceiling per session (0 = none).
        READ_CHUNK_SIZE: Maximum bytes per backend read.
        ACCEPTED_VERSIONS: Header version bytes the server serves.
        STATIC_DIR: Directory served by the front door (empty = disabled).
        LOG_LEVEL: Logging verbosity level.
        LOG_FILE: Log file path (empty = console only).
    """

    # -------------------------------------------------------------------------
    # Network Configuration
    # -------------------------------------------------------------------------

    BIND_IP: str = "0.0.0.0"
    PORT: int = 8080

    # -------------------------------------------------------------------------
    # Tunnel Configuration
    # -------------------------------------------------------------------------

    USER_ID: str = ""
    CONNECT_TIMEOUT_SECONDS: float = 10.0
    IDLE_TIMEOUT_SECONDS: float = 300.0
    SESSION_QUOTA_BYTES: int = 0
    READ_CHUNK_SIZE: int = 65536
    ACCEPTED_VERSIONS: list[int] = field(default_factory=lambda: [0])

    # -------------------------------------------------------------------------
    # Front Door Configuration
    # -------------------------------------------------------------------------

    STATIC_DIR: str = ""

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------

    LOG_LEVEL: LogLevel = LogLevel.INFO
    LOG_FILE: str = ""

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def identity(self) -> bytes | None:
        """
        Get the 16-byte identity derived from USER_ID.

        Returns:
            Identity bytes, or None when USER_ID is unset or not a UUID.
        """
        return identity_from_uuid(self.USER_ID)

    def accepted_versions(self) -> frozenset[int] | None:
        """Get the accepted version set, or None when every version is served."""
        if not self.ACCEPTED_VERSIONS:
            return None
        return frozenset(self.ACCEPTED_VERSIONS)

    def load_env(self, environ: Mapping[str, str] | None = None) -> "ServerConfig":
        """
        Apply overrides from environment variables.

        UUID and PORT are honoured as-is; every field can also be set
        with a WSRELAY_ prefix (e.g. WSRELAY_SESSION_QUOTA_BYTES), which
        takes precedence.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Returns:
            self, for chaining.

        Raises:
            ValueError: If a value cannot be converted to the field type.
        """
        environ = os.environ if environ is None else environ

        if environ.get("UUID"):
            self.USER_ID = environ["UUID"]
        if environ.get("PORT"):
            self.PORT = int(environ["PORT"])

        for f in fields(self):
            raw = environ.get(ENV_PREFIX + f.name)
            if raw is None or raw == "":
                continue
            setattr(self, f.name, _coerce(f.name, getattr(self, f.name), raw))

        return self


def _coerce(name: str, current, raw: str):
    """Convert an environment string to the type of the current value."""
    try:
        if isinstance(current, LogLevel):
            return LogLevel(raw.lower())
        if isinstance(current, bool):
            return raw.lower() in ("1", "true", "yes", "on")
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
        if isinstance(current, list):
            return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError as e:
        raise ValueError(f"Invalid value for {ENV_PREFIX}{name}: {raw!r}") from e
    return raw


# =============================================================================
# Global Configuration Instance
# =============================================================================

config = ServerConfig()
