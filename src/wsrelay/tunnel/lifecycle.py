"""
Idempotent close routine shared by both relay directions.

Every termination path of a session (decode, parse, connect, relay error,
timeout, quota, peer close) ends in ConnectionLifecycle.close(). The first
call wins and records the cause; later calls are no-ops.
"""

from wsrelay.models.enums import LifecycleState
from wsrelay.tunnel.errors import AuthError, DecodeError, ProtocolError
from wsrelay.utils.logger import get_logger

logger = get_logger(__name__)


async def safe_close(transport, label: str = "transport") -> None:
    """
    Close a transport only while it still reports itself open.

    Errors raised by the transport while closing are logged, never raised.
    """
    if transport is None:
        return
    try:
        if transport.is_open:
            await transport.close()
    except Exception as e:
        logger.debug(f"[Lifecycle] Error closing {label}: {e}")


class ConnectionLifecycle:
    """
    Close coordinator for one tunnel session.

    Owns the decision of when both transports are closed. The backend is
    attached once it exists; if the session is already closing by then,
    the backend is closed right away.
    """

    def __init__(self, client, log_prefix: str = "[Session]"):
        self.client = client
        self.backend = None
        self.state = LifecycleState.OPEN
        self.cause: BaseException | None = None
        self.log_prefix = log_prefix

    @property
    def is_open(self) -> bool:
        return self.state == LifecycleState.OPEN

    async def attach_backend(self, backend) -> None:
        """Hand the backend transport to the lifecycle."""
        self.backend = backend
        if not self.is_open:
            await safe_close(backend, "backend")

    async def close(self, cause: BaseException | None = None) -> bool:
        """
        Close both transports once.

        Args:
            cause: Exception that ended the session, None for a clean close

        Returns:
            True if this call performed the close, False if already closing
        """
        if self.state != LifecycleState.OPEN:
            return False

        self.state = LifecycleState.CLOSING
        self.cause = cause
        self._record(cause)

        await safe_close(self.backend, "backend")
        await safe_close(self.client, "client")

        self.state = LifecycleState.CLOSED
        return True

    def _record(self, cause: BaseException | None) -> None:
        if cause is None:
            logger.debug(f"{self.log_prefix} Closed cleanly")
        elif isinstance(cause, (AuthError, DecodeError, ProtocolError)):
            logger.warning(f"{self.log_prefix} Rejected: {cause}")
        else:
            logger.info(f"{self.log_prefix} Closed: {type(cause).__name__}: {cause}")
