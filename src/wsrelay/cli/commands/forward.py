"""
Local forwarding command for reaching a destination through a relay.

This command creates a local TCP server. Every accepted connection opens
its own WebSocket to the relay, sends the tunnel header naming the
destination, and then relays bytes both ways.

Architecture:
    Local app ←→ wsrelay forward (TCP) ←→ Relay (WebSocket) ←→ Destination

Example:
    # Reach example.com:80 through the relay on local port 8080
    wsrelay forward example.com 80 --server ws://relay:8080/ --uuid 5f1c... -l 8080

    # Send the header as early data in the WebSocket handshake
    wsrelay forward example.com 443 -s wss://relay/ -u 5f1c... --early-data
"""

import asyncio
from typing import Annotated

import typer
import websockets

from wsrelay.cli.output import console, format_bytes, print_error, print_success
from wsrelay.tunnel.early_data import encode_early_data
from wsrelay.tunnel.protocol import RESPONSE_SIZE, build_header, identity_from_uuid

app = typer.Typer(help="Forward a local port through a relay")

LOCAL_READ_SIZE = 65536


@app.callback(invoke_without_command=True)
def forward(
    dest_host: Annotated[str, typer.Argument(help="Destination host")],
    dest_port: Annotated[int, typer.Argument(help="Destination port")],
    server: Annotated[
        str,
        typer.Option(
            "--server", "-s", help="Relay WebSocket URL", envvar="WSRELAY_SERVER"
        ),
    ] = "ws://127.0.0.1:8080/",
    user_id: Annotated[
        str,
        typer.Option("--uuid", "-u", help="Identity to present", envvar="UUID"),
    ] = "",
    local_port: Annotated[
        int | None,
        typer.Option(
            "--local-port",
            "-l",
            help="Local port to listen on (default: same as destination)",
        ),
    ] = None,
    local_host: Annotated[
        str,
        typer.Option("--local-host", "-H", help="Local address to bind to"),
    ] = "127.0.0.1",
    early_data: Annotated[
        bool,
        typer.Option("--early-data", help="Carry the header in the handshake"),
    ] = False,
):
    """
    Forward a local port to a destination through the relay.

    Creates a local server; each connection becomes one tunnel session.
    """
    identity = identity_from_uuid(user_id)
    if identity is None:
        print_error("A valid --uuid (or UUID env) is required.")
        raise typer.Exit(1)

    if not 0 < dest_port < 65536:
        print_error(f"Invalid destination port: {dest_port}")
        raise typer.Exit(1)

    if local_port is None:
        local_port = dest_port

    console.print(
        f"[bold green]Forwarding[/bold green] "
        f"[cyan]{local_host}:{local_port}[/cyan] "
        f"[dim]→[/dim] "
        f"[yellow]{dest_host}:{dest_port}[/yellow] "
        f"[dim](via {server})[/dim]"
    )
    console.print("[dim]Press Ctrl+C to stop.[/dim]")

    forwarder = TunnelForwarder(server, identity, dest_host, dest_port, early_data)
    try:
        asyncio.run(_run_tcp_forwarder(forwarder, local_host, local_port))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")
    except OSError as e:
        if "Address already in use" in str(e):
            print_error(f"Port {local_port} is already in use.")
        else:
            print_error(f"Error: {e}")
        raise typer.Exit(1)


class TunnelForwarder:
    """
    Opens one tunnel session per local TCP connection.

    The relay answers with a 2-byte response before any destination data;
    it is stripped from the stream before bytes reach the local socket.
    """

    def __init__(
        self,
        server_url: str,
        identity: bytes,
        dest_host: str,
        dest_port: int,
        early_data: bool = False,
    ):
        self.server_url = server_url
        self.identity = identity
        self.dest_host = dest_host
        self.dest_port = dest_port
        self.early_data = early_data
        self._next_id = 1

    def header(self) -> bytes:
        return build_header(self.identity, self.dest_host, self.dest_port)

    async def handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Carry a single local TCP connection through the relay."""
        peer = writer.get_extra_info("peername")
        conn_id = self._next_id
        self._next_id += 1
        console.print(f"[dim]New connection from {peer} (id={conn_id})[/dim]")

        header = self.header()
        subprotocols = [encode_early_data(header)] if self.early_data else None
        sent = 0
        received = 0

        try:
            async with websockets.connect(
                self.server_url, subprotocols=subprotocols
            ) as ws:
                if not self.early_data:
                    await ws.send(header)

                async def local_to_tunnel():
                    nonlocal sent
                    while True:
                        data = await reader.read(LOCAL_READ_SIZE)
                        if not data:
                            return
                        await ws.send(data)
                        sent += len(data)

                async def tunnel_to_local():
                    nonlocal received
                    pending_response = RESPONSE_SIZE
                    async for message in ws:
                        if isinstance(message, str):
                            message = message.encode("utf-8")
                        if pending_response:
                            cut = min(pending_response, len(message))
                            message = message[cut:]
                            pending_response -= cut
                        if not message:
                            continue
                        writer.write(message)
                        await writer.drain()
                        received += len(message)

                tasks = [
                    asyncio.create_task(local_to_tunnel()),
                    asyncio.create_task(tunnel_to_local()),
                ]
                done, pending = await asyncio.wait(
                    tasks, return_when=asyncio.FIRST_COMPLETED
                )
                for t in pending:
                    t.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                for t in done:
                    if t.exception() is not None:
                        raise t.exception()

        except websockets.exceptions.ConnectionClosed:
            console.print(f"[dim]Connection {conn_id}: tunnel closed by relay[/dim]")
        except (OSError, websockets.exceptions.InvalidHandshake) as e:
            console.print(f"[red]Connection {conn_id} error: {e}[/red]")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            console.print(
                f"[dim]Connection from {peer} closed (id={conn_id}, "
                f"up={format_bytes(sent)}, down={format_bytes(received)})[/dim]"
            )


async def _run_tcp_forwarder(
    forwarder: TunnelForwarder, local_host: str, local_port: int
) -> None:
    """Run the local TCP server until interrupted."""
    server = await asyncio.start_server(
        forwarder.handle_client, local_host, local_port
    )
    print_success(f"Listening on {local_host}:{local_port}")

    async with server:
        await server.serve_forever()
