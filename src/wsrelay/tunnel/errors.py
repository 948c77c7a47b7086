"""Tunnel session exception classes."""


class RelayError(Exception):
    """Base exception for tunnel sessions. Always terminal for the session."""

    pass


class DecodeError(RelayError):
    """Early data carried in the WebSocket sub-protocol is not valid base64."""

    pass


class AuthError(RelayError):
    """Header identity does not match the configured identity."""

    def __init__(self, message: str = "invalid user"):
        super().__init__(message)


class ProtocolError(RelayError):
    """Header is short, truncated or carries an unsupported value."""

    pass


class ConnectError(RelayError):
    """Backend destination could not be reached."""

    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"connect to {host}:{port} failed: {reason}")


class TransportError(RelayError):
    """Read or write failed on one side of an established relay."""

    pass


class LimitExceeded(RelayError):
    """Session reached its cumulative byte quota."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"session quota of {limit} bytes reached")


class SessionTimeout(RelayError):
    """No data moved in either direction for the idle timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"session idle for {timeout:g}s")
