"""Resolving an upstream's host name to addresses it can be dialled at."""

from __future__ import annotations

import ipaddress
import logging
import socket
import ssl
import threading
import time
import urllib.parse
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from dnsrelay.proxyutil.helpers import sort_ip_addrs
from dnsrelay.upstream.base import UpstreamError, parse_host_and_port
from dnsrelay.upstream.parallel import lookup_parallel

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

NEXT_PROTO_DQ = "doq-i00"
"""ALPN token that selects DNS-over-QUIC during the handshake."""

_ALPN_PROTOCOLS = ["http/1.1", "h2", NEXT_PROTO_DQ]


def _join_host_port(host: str, port: str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _split_resolved(address: str) -> tuple[str, int]:
    host, _, port = address.rpartition(":")
    return host.strip("[]"), int(port)


def get_address_host_port(address: str) -> tuple[str, str]:
    """Split a resolver address, with or without a URL scheme, into host and port.

    Raises UpstreamError when the address cannot be parsed or has no port.
    """
    host_port = address
    if "://" in address:
        try:
            parts = urllib.parse.urlsplit(address)
        except ValueError as err:
            raise UpstreamError(f"failed to parse {address}: {err}") from err
        host_port = parts.netloc.rpartition("@")[2]

    host, port = parse_host_and_port(host_port)
    if port == "":
        raise UpstreamError(f"missing port in address {host_port}")
    return host, port


@dataclass(frozen=True)
class ResolvedConnector:
    """Resolved addresses of an upstream and the TLS settings to reach it."""

    addresses: tuple[str, ...]
    timeout: float
    server_name: str
    ssl_context: ssl.SSLContext = field(compare=False, repr=False)

    def _connect(self, kind: str, host: str, port: int) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock_type = socket.SOCK_STREAM if kind == "tcp" else socket.SOCK_DGRAM
        sock = socket.socket(family, sock_type)
        try:
            sock.settimeout(self.timeout if self.timeout > 0 else None)
            sock.connect((host, port))
        except OSError:
            sock.close()
            raise
        return sock

    def dial(self, kind: str = "tcp") -> socket.socket:
        """Connect to the first resolved address that accepts.

        ``kind`` is "tcp" or "udp". Raises OSError when every address failed.
        """
        if kind not in ("tcp", "udp"):
            raise ValueError(f"unsupported network: {kind}")

        errors: list[str] = []
        for address in self.addresses:
            logger.debug("Dialing to %s", address)
            host, port = _split_resolved(address)
            start = time.monotonic()
            try:
                sock = self._connect(kind, host, port)
            except OSError as err:
                elapsed = int((time.monotonic() - start) * 1000)
                logger.debug(
                    "dialer failed to initialize connection to %s, in %d milliseconds, cause: %s",
                    address, elapsed, err,
                )
                errors.append(f"{address}: {err}")
                continue
            elapsed = int((time.monotonic() - start) * 1000)
            logger.debug(
                "dialer has successfully initialized connection to %s in %d milliseconds",
                address, elapsed,
            )
            return sock

        if not errors:
            raise OSError("all dialers failed to initialize connection")
        raise OSError("all dialers failed to initialize connection: " + "; ".join(errors))


class Bootstrapper:
    """Resolves an upstream's host once and caches how to connect to it."""

    def __init__(
        self,
        address: str,
        resolvers: Sequence[Any] = (),
        timeout: float = 0.0,
        insecure_skip_verify: bool = False,
        *,
        root_ca_file: str | None = None,
        ciphers: str | None = None,
    ) -> None:
        self.address = address
        self.resolvers = list(resolvers)
        self.timeout = timeout
        self.insecure_skip_verify = insecure_skip_verify
        self._root_ca_file = root_ca_file
        self._ciphers = ciphers
        self._resolved: ResolvedConnector | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_server_ips(
        cls,
        address: str,
        server_ips: Iterable[Any],
        timeout: float = 0.0,
        insecure_skip_verify: bool = False,
    ) -> "Bootstrapper":
        """Create a bootstrapper whose server addresses are already known."""
        try:
            host, port = get_address_host_port(address)
        except UpstreamError as err:
            raise UpstreamError(f"bootstrapper requires port in address {address}") from err

        boot = cls(address, (), timeout, insecure_skip_verify)
        addresses = [_join_host_port(str(ipaddress.ip_address(ip)), port) for ip in server_ips]
        boot._resolved = boot._make_connector(addresses, host)
        return boot

    def _create_tls_context(self) -> ssl.SSLContext:
        ctx = ssl.create_default_context(cafile=self._root_ca_file)
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        if self._ciphers:
            ctx.set_ciphers(self._ciphers)
        ctx.set_alpn_protocols(_ALPN_PROTOCOLS)
        if self.insecure_skip_verify:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        return ctx

    def _make_connector(self, addresses: Iterable[str], host: str) -> ResolvedConnector:
        return ResolvedConnector(
            addresses=tuple(addresses),
            timeout=self.timeout,
            server_name=host,
            ssl_context=self._create_tls_context(),
        )

    def _lookup(self, host: str) -> list[IPAddress]:
        if self.resolvers:
            return lookup_parallel(self.resolvers, host, self.timeout or None)
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
        unique = {ipaddress.ip_address(info[4][0].split("%")[0]) for info in infos}
        return sort_ip_addrs(unique)

    def get(self) -> ResolvedConnector:
        """Return the connector for the upstream, resolving its host on first use."""
        with self._lock:
            if self._resolved is not None:
                return self._resolved

        try:
            host, port = get_address_host_port(self.address)
        except UpstreamError as err:
            raise UpstreamError(f"bootstrapper requires port in address {self.address}") from err

        try:
            ipaddress.ip_address(host)
        except ValueError:
            pass
        else:
            connector = self._make_connector([_join_host_port(host, port)], host)
            with self._lock:
                self._resolved = connector
            return connector

        try:
            addrs = self._lookup(host)
        except Exception as err:
            raise UpstreamError(f"failed to lookup {host}: {err}") from err

        resolved = [_join_host_port(str(addr), port) for addr in addrs]
        if not resolved:
            raise UpstreamError(f"couldn't find any suitable IP address for host {host}")

        connector = self._make_connector(resolved, host)
        with self._lock:
            self._resolved = connector
        return connector