import socket

import dns.message
import pytest

from dnsrelay.proxyutil.dns import (
    MAX_MSG_SIZE,
    MIN_MSG_SIZE,
    MessageTooLargeError,
    dns_size,
    read_prefixed,
    write_prefixed,
)


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    left.settimeout(2)
    right.settimeout(2)
    yield left, right
    left.close()
    right.close()


def _recv_exact(sock, size):
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def test_dns_size_udp_without_edns_is_minimum():
    msg = dns.message.make_query("example.org.", "A")
    assert dns_size("udp", msg) == MIN_MSG_SIZE


def test_dns_size_udp_uses_advertised_payload():
    msg = dns.message.make_query("example.org.", "A", use_edns=0, payload=4096)
    assert dns_size("udp", msg) == 4096


def test_dns_size_udp_small_payload_is_raised_to_minimum():
    msg = dns.message.make_query("example.org.", "A", use_edns=0, payload=100)
    assert dns_size("udp", msg) == MIN_MSG_SIZE


@pytest.mark.parametrize("proto", ["tcp", "tls", "https"])
def test_dns_size_streams_get_maximum(proto):
    msg = dns.message.make_query("example.org.", "A", use_edns=0, payload=1232)
    assert dns_size(proto, msg) == MAX_MSG_SIZE


def test_write_prefixed_wire_format(pair):
    left, right = pair
    write_prefixed(b"abc", left)
    write_prefixed(b"de", left)
    assert _recv_exact(right, 5) == b"\x00\x03abc"
    assert read_prefixed(right) == b"de"


def test_read_prefixed_reads_one_frame(pair):
    left, right = pair
    left.sendall(b"\x00\x03abc\x00\x01z")
    assert read_prefixed(right) == b"abc"
    assert read_prefixed(right) == b"z"


def test_round_trip_dns_message(pair):
    left, right = pair
    wire = dns.message.make_query("example.org.", "AAAA").to_wire()
    write_prefixed(wire, left)
    assert read_prefixed(right) == wire


def test_read_prefixed_short_body_raises(pair):
    left, right = pair
    left.sendall(b"\x00\x05ab")
    left.shutdown(socket.SHUT_WR)
    with pytest.raises(EOFError):
        read_prefixed(right)


def test_read_prefixed_closed_stream_raises(pair):
    left, right = pair
    left.shutdown(socket.SHUT_WR)
    with pytest.raises(EOFError):
        read_prefixed(right)


def test_write_prefixed_rejects_oversized(pair):
    left, _ = pair
    with pytest.raises(MessageTooLargeError):
        write_prefixed(b"x" * (MAX_MSG_SIZE + 1), left)