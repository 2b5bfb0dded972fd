"""Helpers shared by the proxy and upstream code."""

from __future__ import annotations

import errno
import ipaddress
from collections.abc import Iterable, Iterator
from typing import Any, Union

import dns.rdataset
import dns.rrset
from dns.rdtypes.IN.A import A
from dns.rdtypes.IN.AAAA import AAAA

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_CLOSED_ERRNOS = frozenset({errno.EBADF, errno.ENOTSOCK, 10038})
_ADDRESS_TYPES = (ipaddress.IPv4Address, ipaddress.IPv6Address)


def is_conn_closed(err: BaseException | None) -> bool:
    """Tell whether an error comes from using an already closed socket."""
    if not isinstance(err, OSError):
        return False
    if err.errno in _CLOSED_ERRNOS:
        return True
    return "use of closed network connection" in str(err)


def get_ip_from_dns_record(rr: Any) -> IPAddress | None:
    """Return the address of an A or AAAA record, or None for other types."""
    if isinstance(rr, A):
        return ipaddress.IPv4Address(rr.address)
    if isinstance(rr, AAAA):
        return ipaddress.IPv6Address(rr.address)
    return None


def _to_address(ip: Any) -> IPAddress:
    if isinstance(ip, _ADDRESS_TYPES):
        return ip
    return ipaddress.ip_address(ip)


def _normalize(ip: Any) -> IPAddress:
    addr = _to_address(ip)
    if addr.version == 6 and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def contains_ip(ips: Iterable[Any], ip: Any) -> bool:
    """Tell whether ``ip`` is among ``ips``; IPv4-mapped forms compare equal."""
    if ip is None:
        return False
    target = _normalize(ip)
    return any(
        _normalize(candidate) == target
        for candidate in ips
        if candidate is not None
    )


def _iter_records(answers: Iterable[Any]) -> Iterator[Any]:
    for item in answers:
        if isinstance(item, (dns.rrset.RRset, dns.rdataset.Rdataset)):
            yield from item
        else:
            yield item


def ip_addrs_from_answers(answers: Iterable[Any]) -> list[IPAddress]:
    """Collect the addresses of all A and AAAA records in ``answers``.

    ``answers`` may hold RRsets (as in a message's answer section) or
    individual rdata objects.
    """
    found = (get_ip_from_dns_record(rr) for rr in _iter_records(answers))
    return [ip for ip in found if ip is not None]


def _sort_key(ip: IPAddress) -> tuple[int, bytes]:
    v4 = ip if ip.version == 4 else ip.ipv4_mapped
    if v4 is not None:
        return 0, v4.packed
    return 1, ip.packed


def sort_ip_addrs(ip_addrs: Iterable[Any]) -> list[IPAddress]:
    """Return the addresses sorted with IPv4 first, then IPv6, each by value."""
    addrs = [_to_address(ip) for ip in ip_addrs]
    return sorted(addrs, key=_sort_key)