import socket
from ipaddress import IPv4Address

import pytest

from dnsrelay.proxyutil.udp import (
    udp_get_oob_size,
    udp_read,
    udp_set_options,
    udp_write,
)


@pytest.fixture
def endpoints():
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    client.bind(("127.0.0.1", 0))
    server.settimeout(2)
    client.settimeout(2)
    yield server, client
    server.close()
    client.close()


def test_read_reports_payload_sender_and_local_ip(endpoints):
    server, client = endpoints
    udp_set_options(server)
    client.sendto(b"ping", server.getsockname())

    data, local_ip, remote = udp_read(server, 65535, udp_get_oob_size())

    assert data == b"ping"
    assert remote == client.getsockname()
    assert local_ip in (None, IPv4Address("127.0.0.1"))


def test_read_without_oob_has_no_local_ip(endpoints):
    server, client = endpoints
    client.sendto(b"query", server.getsockname())

    data, local_ip, remote = udp_read(server, 65535, 0)

    assert (data, local_ip, remote) == (b"query", None, client.getsockname())


def test_read_truncates_to_buffer_size(endpoints):
    server, client = endpoints
    client.sendto(b"abcdef", server.getsockname())

    data, _, _ = udp_read(server, 3, 0)

    assert data == b"abc"


def test_write_from_local_ip_reaches_client(endpoints):
    server, client = endpoints
    udp_set_options(server)
    payload = b"reply-bytes"

    sent = udp_write(payload, server, client.getsockname(), IPv4Address("127.0.0.1"))
    received, source = client.recvfrom(65535)

    assert sent == len(payload)
    assert received == payload
    assert source == server.getsockname()


def test_write_without_local_ip(endpoints):
    server, client = endpoints
    sent = udp_write(b"x" * 100, server, client.getsockname(), None)
    received, source = client.recvfrom(65535)

    assert sent == 100
    assert received == b"x" * 100
    assert source == server.getsockname()


def test_round_trip_uses_reported_local_ip(endpoints):
    server, client = endpoints
    udp_set_options(server)
    client.sendto(b"question", server.getsockname())

    _, local_ip, remote = udp_read(server, 65535, udp_get_oob_size())
    sent = udp_write(b"answer", server, remote, local_ip)
    received, _ = client.recvfrom(65535)

    assert sent == len(b"answer")
    assert received == b"answer"