"""Bootstrap resolvers used to find the addresses of encrypted upstreams."""

from __future__ import annotations

import concurrent.futures
import ipaddress
import logging
import socket
import urllib.parse
from dataclasses import dataclass
from typing import Optional, Union

import dns.message
import dns.rdataclass
import dns.rdatatype

from dnsrelay.proxyutil.helpers import ip_addrs_from_answers, sort_ip_addrs
from dnsrelay.upstream.base import Upstream, UpstreamError, parse_host_and_port
from dnsrelay.upstream.bootstrap import get_address_host_port
from dnsrelay.upstream.doh import DNSOverHTTPS
from dnsrelay.upstream.dot import DNSOverTLS

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def is_resolver_valid_bootstrap(upstream: Upstream) -> bool:
    """Tell whether an upstream may serve as a bootstrap server.

    Plain DNS and DNSCrypt servers qualify when given by IP address, DoT and
    DoH servers only when their URL holds an IP address.
    """
    if isinstance(upstream, DNSOverTLS):
        try:
            host, _ = get_address_host_port(upstream.address)
        except (UpstreamError, ValueError):
            return False
        return _is_ip(host)

    if isinstance(upstream, DNSOverHTTPS):
        try:
            netloc = urllib.parse.urlsplit(upstream.address).netloc
            host, port = parse_host_and_port(netloc)
        except (ValueError, UpstreamError):
            return False
        if port == "":
            host = netloc
        return _is_ip(host.strip("[]"))

    address = upstream.address
    if address.startswith("sdns://"):
        return True
    if address.startswith("tcp://"):
        address = address[len("tcp://"):]
    try:
        host, _ = get_address_host_port(address)
    except (UpstreamError, ValueError):
        return False
    return _is_ip(host)


@dataclass
class Resolver:
    """Resolves host names, with an upstream or with the system resolver.

    With no upstream and no address, the system resolver is used.
    """

    upstream: Optional[Upstream] = None
    resolver_address: str = ""

    @property
    def uses_system(self) -> bool:
        return self.upstream is None and self.resolver_address == ""

    def _resolve(self, upstream: Upstream, host: str, rdtype: dns.rdatatype.RdataType) -> dns.message.Message:
        req = dns.message.make_query(host, rdtype, dns.rdataclass.IN)
        return upstream.exchange(req)

    def lookup_ip_addr(self, host: str) -> list[IPAddress]:
        """Return the IPv4 and IPv6 addresses of ``host``, IPv4 first."""
        if self.uses_system:
            infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
            return sort_ip_addrs({info[4][0].split("%")[0] for info in infos})

        upstream = self.upstream
        if upstream is None or not host:
            return []

        if host[:1] != ".":
            host += "."

        addrs: list[IPAddress] = []
        errors: list[BaseException] = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(self._resolve, upstream, host, rdtype)
                for rdtype in (dns.rdatatype.A, dns.rdatatype.AAAA)
            ]
            for future in concurrent.futures.as_completed(futures):
                err = future.exception()
                if err is not None:
                    errors.append(err)
                    continue
                reply = future.result()
                if reply is not None:
                    addrs.extend(ip_addrs_from_answers(reply.answer))

        if not addrs and errors:
            raise errors[0]
        return sort_ip_addrs(addrs)