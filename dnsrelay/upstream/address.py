"""Creating upstreams from address strings and DNS stamps."""

from __future__ import annotations

import base64
import binascii
import dataclasses
import enum
import ipaddress
import urllib.parse
from collections.abc import Sequence
from dataclasses import dataclass, field

from dnsrelay.upstream.base import (
    Options,
    Upstream,
    UpstreamError,
    host_with_port,
    parse_host_and_port,
)
from dnsrelay.upstream.bootstrap import Bootstrapper
from dnsrelay.upstream.doh import DNSOverHTTPS
from dnsrelay.upstream.dot import DNSOverTLS
from dnsrelay.upstream.plain import PlainDNS
from dnsrelay.upstream.resolver import Resolver, is_resolver_valid_bootstrap

_STAMP_PREFIX = "sdns://"


class StampProto(enum.IntEnum):
    """Server protocols a DNS stamp can describe."""

    PLAIN = 0x00
    DNSCRYPT = 0x01
    DOH = 0x02
    TLS = 0x03
    DOQ = 0x04


_DEFAULT_PORTS = {
    StampProto.PLAIN: 53,
    StampProto.DNSCRYPT: 443,
    StampProto.DOH: 443,
    StampProto.TLS: 853,
    StampProto.DOQ: 853,
}


@dataclass
class ServerStamp:
    """The decoded contents of an ``sdns://`` stamp."""

    proto: StampProto
    props: int = 0
    server_addr: str = ""
    server_pk: bytes = b""
    hashes: list[bytes] = field(default_factory=list)
    provider_name: str = ""
    path: str = ""


class _StampReader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def take(self, size: int) -> bytes:
        if self._pos + size > len(self._data):
            raise UpstreamError("stamp is too short")
        chunk = self._data[self._pos:self._pos + size]
        self._pos += size
        return chunk

    def byte(self) -> int:
        return self.take(1)[0]

    def lp(self) -> bytes:
        return self.take(self.byte())

    def vlp(self) -> list[bytes]:
        items = []
        while True:
            head = self.byte()
            item = self.take(head & 0x7F)
            if item:
                items.append(item)
            if not head & 0x80:
                return items


def _with_default_port(addr: str, port: int) -> str:
    if not addr:
        return addr
    try:
        _, found = parse_host_and_port(addr)
    except UpstreamError:
        return addr
    return addr if found else f"{addr}:{port}"


def parse_stamp(stamp: str) -> ServerStamp:
    """Decode a DNS stamp. Raises UpstreamError when it is malformed."""
    if not stamp.startswith(_STAMP_PREFIX):
        raise UpstreamError(f"stamps are expected to start with {_STAMP_PREFIX}")
    body = stamp[len(_STAMP_PREFIX):]
    try:
        raw = base64.urlsafe_b64decode(body + "=" * (-len(body) % 4))
    except (binascii.Error, ValueError) as err:
        raise UpstreamError(f"invalid stamp encoding: {err}") from err

    reader = _StampReader(raw)
    try:
        proto = StampProto(reader.byte())
    except ValueError as err:
        raise UpstreamError(f"unsupported stamp protocol in {stamp}") from err

    result = ServerStamp(proto=proto, props=int.from_bytes(reader.take(8), "little"))
    try:
        result.server_addr = _with_default_port(reader.lp().decode(), _DEFAULT_PORTS[proto])
        if proto is StampProto.DNSCRYPT:
            result.server_pk = reader.lp()
            result.provider_name = reader.lp().decode()
        elif proto in (StampProto.DOH, StampProto.TLS, StampProto.DOQ):
            result.hashes = reader.vlp()
            result.provider_name = reader.lp().decode()
            if proto is StampProto.DOH:
                result.path = reader.lp().decode()
    except UnicodeDecodeError as err:
        raise UpstreamError(f"invalid text in stamp {stamp}") from err
    return result


def _join_host_port(host: str, port: str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def new_resolver(resolver_address: str, timeout: float = 0.0) -> Resolver:
    """Create a bootstrap resolver; an empty address means the system resolver.

    Raises UpstreamError when the address is not a usable bootstrap server.
    """
    if resolver_address == "":
        return Resolver()

    try:
        upstream = address_to_upstream(resolver_address, Options(timeout=timeout))
    except UpstreamError as err:
        raise UpstreamError(f"AddressToUpstream: {err}") from err

    if not is_resolver_valid_bootstrap(upstream):
        raise UpstreamError(
            f"Resolver {resolver_address} is not eligible to be a bootstrap DNS server"
        )
    return Resolver(upstream=upstream, resolver_address=resolver_address)


def new_bootstrapper(
    address: str,
    bootstrap: Sequence[str] | None,
    timeout: float = 0.0,
    insecure_skip_verify: bool = False,
) -> Bootstrapper:
    """Create a bootstrapper that resolves ``address`` with the given servers."""
    if bootstrap:
        resolvers = [new_resolver(boot, timeout) for boot in bootstrap]
    else:
        resolvers = [Resolver()]
    return Bootstrapper(address, resolvers, timeout, insecure_skip_verify)


def _url_to_boot(resolver_url: str, options: Options) -> Bootstrapper:
    if not options.server_ip_addrs:
        return new_bootstrapper(
            resolver_url, options.bootstrap, options.timeout, options.insecure_skip_verify
        )
    return Bootstrapper.from_server_ips(
        resolver_url, options.server_ip_addrs, options.timeout, options.insecure_skip_verify
    )


def _with_port(parts: urllib.parse.SplitResult, port: str) -> str:
    return urllib.parse.urlunsplit(parts._replace(netloc=host_with_port(parts.netloc, port)))


def _url_to_upstream(address: str, parts: urllib.parse.SplitResult, options: Options) -> Upstream:
    scheme = parts.scheme
    if scheme == "sdns":
        return _stamp_to_upstream(address, options)
    if scheme == "dns":
        return PlainDNS(host_with_port(parts.netloc, "53"), options.timeout)
    if scheme == "tcp":
        return PlainDNS(host_with_port(parts.netloc, "53"), options.timeout, prefer_tcp=True)
    if scheme == "tls":
        return DNSOverTLS(_url_to_boot(_with_port(parts, "853"), options))
    if scheme == "https":
        return DNSOverHTTPS(_url_to_boot(_with_port(parts, "443"), options))
    raise UpstreamError(f"unsupported URL scheme: {scheme}")


def _stamp_to_upstream(address: str, options: Options) -> Upstream:
    stamp = parse_stamp(address)

    if stamp.server_addr:
        try:
            host, port = parse_host_and_port(stamp.server_addr)
        except UpstreamError:
            host, port = stamp.server_addr, ""
        if port == "":
            host = stamp.server_addr
        try:
            ip = ipaddress.ip_address(host.strip("[]"))
        except ValueError as err:
            raise UpstreamError(
                f"invalid server address in the stamp: {stamp.server_addr}"
            ) from err
        options = dataclasses.replace(options, server_ip_addrs=[ip])

    if stamp.proto is StampProto.PLAIN:
        return PlainDNS(stamp.server_addr, options.timeout)
    if stamp.proto is StampProto.DOH:
        return address_to_upstream(f"https://{stamp.provider_name}{stamp.path}", options)
    if stamp.proto is StampProto.TLS:
        return address_to_upstream(f"tls://{stamp.provider_name}", options)
    raise UpstreamError(f"unsupported protocol {stamp.proto.name} in {address}")


def address_to_upstream(address: str, options: Options | None = None) -> Upstream:
    """Create an upstream from its address.

    Accepted forms: ``8.8.8.8:53`` (plain DNS), ``tcp://8.8.8.8:53``,
    ``tls://1.1.1.1``, ``https://host/dns-query`` and ``sdns://`` stamps.
    Raises UpstreamError for anything else.
    """
    options = options if options is not None else Options()

    if "://" in address:
        try:
            parts = urllib.parse.urlsplit(address)
        except ValueError as err:
            raise UpstreamError(f"failed to parse {address}: {err}") from err
        return _url_to_upstream(address, parts, options)

    host, port = parse_host_and_port(address)
    return PlainDNS(_join_host_port(host, port or "53"), options.timeout)