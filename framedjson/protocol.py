"""Wire format: a 4-byte big-endian header (message id, payload length) then the payload."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

MAX_LENGTH = 1024 * 2
HEADER_LENGTH = 4
HEADER_ID_LENGTH = 2
HEADER_DATA_LENGTH = 2
MAX_RECVQUE = 10000
MAX_SENDQUE = 1000

_HEADER = struct.Struct("!HH")
_FIELD_MAX = 0xFFFF


class MsgId(enum.IntEnum):
    """Message identifiers understood by the server."""

    HELLO_WORLD = 1001


class ProtocolError(ValueError):
    """Raised when a frame or header violates the wire format."""


@dataclass(frozen=True)
class Header:
    """A decoded frame header."""

    msg_id: int
    length: int


@dataclass(frozen=True)
class Message:
    """A complete received message: its id and raw payload."""

    msg_id: int
    data: bytes

    @property
    def text(self) -> str:
        """The payload decoded as UTF-8, with undecodable bytes replaced."""
        return self.data.decode("utf-8", errors="replace")


def encode_frame(msg_id: int, payload: bytes | str) -> bytes:
    """Build a frame: network-order id and length followed by the payload."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    if not 0 <= msg_id <= _FIELD_MAX:
        raise ProtocolError(f"message id out of range: {msg_id}")
    if len(payload) > _FIELD_MAX:
        raise ProtocolError(f"payload too large: {len(payload)} bytes")
    return _HEADER.pack(int(msg_id), len(payload)) + bytes(payload)


def decode_header(data: bytes) -> Header:
    """Decode and check a 4-byte header."""
    if len(data) != HEADER_LENGTH:
        raise ProtocolError(
            f"header must be {HEADER_LENGTH} bytes, got {len(data)}"
        )
    msg_id, length = _HEADER.unpack(bytes(data))
    if msg_id > MAX_LENGTH or length > MAX_LENGTH:
        raise ProtocolError(
            f"invalid msg header: msg_id:{msg_id} msg_len:{length}"
        )
    return Header(msg_id, length)