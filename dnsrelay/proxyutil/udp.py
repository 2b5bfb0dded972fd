"""UDP helpers that learn and set the local address of each datagram.

Where the platform offers packet-info control messages, the destination
address of a received datagram is reported, and replies can be sent from
that same address. Elsewhere these helpers fall back to plain
``recvfrom``/``sendto``.
"""

from __future__ import annotations

import ipaddress
import socket
import struct
import sys
from typing import Any, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_IP_PKTINFO = getattr(socket, "IP_PKTINFO", 8 if sys.platform.startswith("linux") else None)
_IPV6_PKTINFO = getattr(socket, "IPV6_PKTINFO", None)
_IPV6_RECVPKTINFO = getattr(socket, "IPV6_RECVPKTINFO", None)

# struct in_pktinfo { int ifindex; in_addr spec_dst; in_addr addr; }
_IN_PKTINFO = struct.Struct("=i4s4s")
# struct in6_pktinfo { in6_addr addr; unsigned int ifindex; }
_IN6_PKTINFO = struct.Struct("=16sI")

_SUPPORTED = (
    hasattr(socket.socket, "recvmsg")
    and hasattr(socket.socket, "sendmsg")
    and hasattr(socket, "CMSG_SPACE")
    and _IP_PKTINFO is not None
    and _IPV6_PKTINFO is not None
    and _IPV6_RECVPKTINFO is not None
)


def udp_get_oob_size() -> int:
    """Return the ancillary buffer size needed to receive packet info."""
    if not _SUPPORTED:
        return 0
    return max(socket.CMSG_SPACE(_IN_PKTINFO.size), socket.CMSG_SPACE(_IN6_PKTINFO.size))


def udp_set_options(sock: socket.socket) -> None:
    """Ask the socket to report packet info for IPv4 and IPv6 datagrams.

    Raises OSError only if neither family could be configured.
    """
    if not _SUPPORTED:
        return

    err6: OSError | None = None
    err4: OSError | None = None
    try:
        sock.setsockopt(socket.IPPROTO_IPV6, _IPV6_RECVPKTINFO, 1)
    except OSError as err:
        err6 = err
    try:
        sock.setsockopt(socket.IPPROTO_IP, _IP_PKTINFO, 1)
    except OSError as err:
        err4 = err

    if err6 is not None and err4 is not None:
        raise OSError(f"failed to enable packet info: ipv4: {err4} ipv6: {err6}")


def _dst_from_ancdata(ancdata: list[tuple[int, int, bytes]]) -> IPAddress | None:
    dst6: IPAddress | None = None
    dst4: IPAddress | None = None
    for level, kind, data in ancdata:
        if level == socket.IPPROTO_IPV6 and kind == _IPV6_PKTINFO and len(data) >= _IN6_PKTINFO.size:
            addr, _ = _IN6_PKTINFO.unpack_from(data)
            dst6 = ipaddress.IPv6Address(addr)
        elif level == socket.IPPROTO_IP and kind == _IP_PKTINFO and len(data) >= _IN_PKTINFO.size:
            _, _, addr = _IN_PKTINFO.unpack_from(data)
            dst4 = ipaddress.IPv4Address(addr)
    return dst6 if dst6 is not None else dst4


def udp_read(
    sock: socket.socket, bufsize: int, oob_size: int
) -> tuple[bytes, IPAddress | None, Any]:
    """Receive one datagram.

    Returns the payload, the local address it was sent to (None when it is
    unknown) and the sender's address.
    """
    if _SUPPORTED and oob_size > 0:
        data, ancdata, _flags, remote = sock.recvmsg(bufsize, oob_size)
        return data, _dst_from_ancdata(ancdata), remote

    data, remote = sock.recvfrom(bufsize)
    return data, None, remote


def udp_write(data: bytes, sock: socket.socket, remote_addr: Any, local_ip: Any) -> int:
    """Send a datagram to ``remote_addr``, from ``local_ip`` when it is given.

    Returns the number of bytes sent.
    """
    if not _SUPPORTED or local_ip is None:
        return sock.sendto(data, remote_addr)

    ip = ipaddress.ip_address(local_ip)
    v4 = ip if ip.version == 4 else ip.ipv4_mapped
    if v4 is None:
        anc = [(socket.IPPROTO_IPV6, _IPV6_PKTINFO, _IN6_PKTINFO.pack(ip.packed, 0))]
    else:
        anc = [(socket.IPPROTO_IP, _IP_PKTINFO, _IN_PKTINFO.pack(0, v4.packed, bytes(4)))]
    return sock.sendmsg([data], anc, 0, remote_addr)