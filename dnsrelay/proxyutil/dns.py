"""DNS message sizing and length-prefixed stream framing."""

from __future__ import annotations

import socket
import struct

import dns.message

MIN_MSG_SIZE = 512
MAX_MSG_SIZE = 65535

_LENGTH_PREFIX = struct.Struct(">H")


class MessageTooLargeError(ValueError):
    """Raised when a DNS message does not fit into a 64 KiB frame."""

    def __init__(self, message: str = "DNS message is too large") -> None:
        super().__init__(message)


def dns_size(proto: str, msg: dns.message.Message) -> int:
    """Return the response size the client can accept.

    Over UDP this is the buffer size advertised in the OPT record, but never
    less than the classic 512 bytes; over any other transport it is 64 KiB.
    """
    size = msg.payload if msg.edns >= 0 else 0

    if proto != "udp":
        return MAX_MSG_SIZE

    if size < MIN_MSG_SIZE:
        return MIN_MSG_SIZE

    return size


def _recv_exact(conn: socket.socket, length: int) -> bytes:
    chunks = bytearray()
    while len(chunks) < length:
        chunk = conn.recv(length - len(chunks))
        if not chunk:
            raise EOFError(
                f"connection closed after {len(chunks)} of {length} bytes"
            )
        chunks.extend(chunk)
    return bytes(chunks)


def read_prefixed(conn: socket.socket) -> bytes:
    """Read one DNS message preceded by its two-byte big-endian length."""
    (length,) = _LENGTH_PREFIX.unpack(_recv_exact(conn, _LENGTH_PREFIX.size))
    if length > MAX_MSG_SIZE:
        raise MessageTooLargeError()
    return _recv_exact(conn, length)


def write_prefixed(data: bytes, conn: socket.socket) -> None:
    """Write a DNS message preceded by its two-byte big-endian length."""
    if len(data) > MAX_MSG_SIZE:
        raise MessageTooLargeError()
    conn.sendall(_LENGTH_PREFIX.pack(len(data)) + bytes(data))