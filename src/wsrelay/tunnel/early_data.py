"""
Early data carried in the WebSocket sub-protocol header.

Clients may place the first chunk of the session (header included) in
Sec-WebSocket-Protocol, URL-safe base64 without padding, to save a round
trip. An empty value means no early data.
"""

import base64
import binascii
import re

from wsrelay.tunnel.errors import DecodeError

_URLSAFE_ALPHABET = re.compile(r"[A-Za-z0-9_-]*")


def decode_early_data(value: str) -> bytes:
    """
    Decode an early-data header value.

    Args:
        value: Raw Sec-WebSocket-Protocol value (may be empty)

    Returns:
        Decoded bytes, or b"" when value is empty

    Raises:
        DecodeError: Value is not URL-safe base64
    """
    if not value:
        return b""

    # Standard-alphabet characters are tolerated and translated
    stripped = value.strip().rstrip("=").replace("+", "-").replace("/", "_")
    if not _URLSAFE_ALPHABET.fullmatch(stripped) or len(stripped) % 4 == 1:
        raise DecodeError("early data is not valid base64")

    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"early data is not valid base64: {e}") from e


def encode_early_data(data: bytes) -> str:
    """Encode bytes for the sub-protocol header (URL-safe, unpadded)."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")
