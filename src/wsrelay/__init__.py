"""
wsrelay - authenticated TCP tunnel carried over WebSocket.

A client opens a WebSocket, sends a small binary header naming its identity
and the destination, and the server relays raw bytes to that destination
until either side closes.
"""

__version__ = "0.1.0"
