"""
wsrelay FastAPI Application.

This module provides the main entry point for the relay server.

Responsibilities:
    - WebSocket endpoint running one TunnelSession per upgrade
    - Front door for plain HTTP requests of any method: optional static
      files and a basic-auth gate that redirects to the secret path
"""

import base64
import binascii
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import FileResponse, Response

from wsrelay import __version__
from wsrelay.models.enums import LogLevel
from wsrelay.server.config import ServerConfig, config
from wsrelay.tunnel.relay import TunnelSession
from wsrelay.tunnel.transport import WebSocketTransport, open_backend
from wsrelay.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

EARLY_DATA_HEADER = "sec-websocket-protocol"
STATIC_CACHE_CONTROL = "public, max-age=2592000"
FRONT_DOOR_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# =============================================================================
# Front Door Helpers
# =============================================================================


def basic_auth_text(authorization: str) -> str:
    """
    Decode the credential part of a Basic Authorization header.

    Returns an empty string when the header is missing or malformed.
    """
    parts = authorization.split(" ", 1)
    if len(parts) != 2:
        return ""
    try:
        return base64.b64decode(parts[1].strip()).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def resolve_static_file(static_dir: str, path: str) -> str | None:
    """
    Map a request path onto a file inside static_dir.

    Directories resolve to their index.html. Paths escaping static_dir,
    or naming nothing, resolve to None.
    """
    root = os.path.realpath(static_dir)
    target = os.path.realpath(os.path.join(root, path.lstrip("/")))
    if target != root and not target.startswith(root + os.sep):
        return None
    if os.path.isdir(target):
        target = os.path.join(target, "index.html")
    return target if os.path.isfile(target) else None


# =============================================================================
# Application Factory
# =============================================================================


def create_app(cfg: ServerConfig | None = None, connector=None) -> FastAPI:
    """
    Build the relay application.

    Args:
        cfg: Server configuration. Defaults to the global config.
        connector: Backend connector override (host, port) -> BackendTransport.

    Returns:
        Configured FastAPI application.
    """
    cfg = cfg or config
    identity = cfg.identity()
    accepted_versions = cfg.accepted_versions()
    gate_secret = cfg.USER_ID.strip()

    if identity is None:
        logger.warning("USER_ID is unset or not a UUID; every tunnel will be rejected")

    async def default_connector(host: str, port: int):
        return await open_backend(host, port, cfg.READ_CHUNK_SIZE)

    backend_connector = connector or default_connector

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Relay server starting up")
        yield
        active = len(app.state.active_sessions)
        logger.info(f"Relay server shutting down ({active} active sessions)")

    app = FastAPI(
        title="wsrelay",
        description="Authenticated TCP tunnel over WebSocket",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = cfg
    app.state.active_sessions = set()

    # -------------------------------------------------------------------------
    # WebSocket Endpoint
    # -------------------------------------------------------------------------

    @app.websocket("/{path:path}")
    async def websocket_tunnel(websocket: WebSocket, path: str):
        """Run one tunnel session over this WebSocket."""
        early_data_header = websocket.headers.get(EARLY_DATA_HEADER, "")

        # The offered sub-protocol carries the early data; echo it back
        await websocket.accept(subprotocol=early_data_header or None)

        peer = (
            f"{websocket.client.host}:{websocket.client.port}"
            if websocket.client
            else "unknown"
        )
        session = TunnelSession(
            WebSocketTransport(websocket),
            identity,
            connector=backend_connector,
            connect_timeout=cfg.CONNECT_TIMEOUT_SECONDS,
            idle_timeout=cfg.IDLE_TIMEOUT_SECONDS,
            quota_bytes=cfg.SESSION_QUOTA_BYTES,
            allowed_versions=accepted_versions,
            peer=peer,
        )

        app.state.active_sessions.add(session)
        logger.debug(
            f"[Server] Upgrade from {peer} on /{path} "
            f"(active={len(app.state.active_sessions)})"
        )
        try:
            await session.run(early_data_header)
        finally:
            app.state.active_sessions.discard(session)

    # -------------------------------------------------------------------------
    # Front Door
    # -------------------------------------------------------------------------

    @app.api_route("/{path:path}", methods=FRONT_DOOR_METHODS)
    async def front_door(request: Request, path: str):
        """Serve static files under the secret path, else gate with basic auth."""
        url_path = request.url.path

        if cfg.STATIC_DIR and (
            url_path.startswith("/assets")
            or (gate_secret and gate_secret in url_path)
        ):
            file_path = resolve_static_file(cfg.STATIC_DIR, url_path)
            if file_path is None:
                return Response(status_code=404)
            response = FileResponse(file_path)
            response.headers["cache-control"] = STATIC_CACHE_CONTROL
            return response

        credentials = basic_auth_text(request.headers.get("authorization", ""))
        if gate_secret and gate_secret in credentials:
            return Response(
                status_code=302,
                headers={"Location": f"./{gate_secret}"},
                media_type="text/html; charset=utf-8",
            )

        return Response(
            status_code=401,
            headers={"WWW-Authenticate": "Basic"},
            media_type="text/html; charset=utf-8",
        )

    return app


# =============================================================================
# Server Entry Points
# =============================================================================


def run(cfg: ServerConfig | None = None):
    """Run the relay server using uvicorn."""
    import uvicorn

    cfg = cfg or config

    # Configure logging before starting uvicorn
    configure_logging(cfg.LOG_LEVEL, cfg.LOG_FILE)

    # Map log levels to uvicorn levels
    uvicorn_level_map = {
        LogLevel.FULL: "debug",
        LogLevel.DEBUG: "debug",
        LogLevel.INFO: "info",
        LogLevel.WARNING: "warning",
    }
    uvicorn_level = uvicorn_level_map.get(cfg.LOG_LEVEL, "info")

    logger.info(f"Starting relay server on {cfg.BIND_IP}:{cfg.PORT}")

    uvicorn.run(
        create_app(cfg),
        host=cfg.BIND_IP,
        port=cfg.PORT,
        log_level=uvicorn_level,
        log_config=None,  # Disable uvicorn's default logging config (use loguru)
    )


def main():
    """Entry point for the relay server."""
    config.load_env()
    run(config)


if __name__ == "__main__":
    main()
