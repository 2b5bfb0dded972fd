import ipaddress

import pytest

from dnsrelay.upstream.address import (
    ServerStamp,
    StampProto,
    address_to_upstream,
    new_bootstrapper,
    new_resolver,
    parse_stamp,
)
from dnsrelay.upstream.base import Options, UpstreamError
from dnsrelay.upstream.doh import DNSOverHTTPS
from dnsrelay.upstream.dot import DNSOverTLS
from dnsrelay.upstream.plain import PlainDNS

DNSCRYPT_STAMP = (
    "sdns://AQIAAAAAAAAAFDE3Ni4xMDMuMTMwLjEzMDo1NDQzINErR_JS3PLCu_iZEIbq95zkSV2LFsig"
    "xDIuUso_OQhzIjIuZG5zY3J5cHQuZGVmYXVsdC5uczEuYWRndWFyZC5jb20"
)
DOH_STAMP = (
    "sdns://AgcAAAAAAAAABzEuMC4wLjGgENk8mGSlIfMGXMOlIlCcKvq7AVgcrZxtjon911-ep0cg63Ul-I8N"
    "lFj4GplQGb_TTLiczclX57DvMV8Q-JdjgRgSZG5zLmNsb3VkZmxhcmUuY29tCi9kbnMtcXVlcnk"
)


@pytest.mark.parametrize(
    "address, options, expected",
    [
        ("1.1.1.1", Options(), "1.1.1.1:53"),
        ("one.one.one.one", Options(), "one.one.one.one:53"),
        ("tcp://one.one.one.one", Options(bootstrap=["1.1.1.1"]), "tcp://one.one.one.one:53"),
        ("tls://one.one.one.one", Options(bootstrap=["1.1.1.1"]), "tls://one.one.one.one:853"),
        ("https://one.one.one.one", Options(bootstrap=["1.1.1.1"]), "https://one.one.one.one:443"),
    ],
)
def test_upstream_address(address, options, expected):
    assert address_to_upstream(address, options).address == expected


@pytest.mark.parametrize("address", ["asdf://1.1.1.1", "12345.1.1.1:1234567", ":1234567", "host:"])
def test_upstream_address_errors(address):
    with pytest.raises(UpstreamError):
        address_to_upstream(address, Options())


@pytest.mark.parametrize(
    "address, kind, expected",
    [
        ("8.8.8.8:53", PlainDNS, "8.8.8.8:53"),
        ("tls://1.1.1.1", DNSOverTLS, "tls://1.1.1.1:853"),
        ("https://1.1.1.1/dns-query", DNSOverHTTPS, "https://1.1.1.1:443/dns-query"),
    ],
)
def test_upstream_types(address, kind, expected):
    upstream = address_to_upstream(address)
    assert isinstance(upstream, kind)
    assert upstream.address == expected


def test_invalid_bootstrap_rejected():
    with pytest.raises(UpstreamError):
        address_to_upstream("tls://example.org", Options(bootstrap=["8.8.8.8", "asdfasdf"]))


def test_plain_stamp():
    u = address_to_upstream("sdns://AAcAAAAAAAAABzguOC44Ljg")
    assert isinstance(u, PlainDNS)
    assert u.address == "8.8.8.8:53"


def test_dot_stamp():
    u = address_to_upstream("sdns://AwAAAAAAAAAAAAAPZG5zLmFkZ3VhcmQuY29t", Options(bootstrap=["8.8.8.8:53"]))
    assert isinstance(u, DNSOverTLS)
    assert u.address == "tls://dns.adguard.com:853"


def test_doh_stamp():
    u = address_to_upstream(DOH_STAMP, Options(bootstrap=["8.8.8.8:53"]))
    assert isinstance(u, DNSOverHTTPS)
    assert u.address == "https://dns.cloudflare.com:443/dns-query"


def test_parse_dnscrypt_stamp():
    stamp = parse_stamp(DNSCRYPT_STAMP)
    assert stamp.proto is StampProto.DNSCRYPT
    assert stamp.props == 2
    assert stamp.server_addr == "176.103.130.130:5443"
    assert len(stamp.server_pk) == 32
    assert stamp.provider_name == "2.dnscrypt.default.ns1.adguard.com"


def test_parse_doh_stamp():
    stamp = parse_stamp(DOH_STAMP)
    assert stamp == ServerStamp(
        proto=StampProto.DOH,
        props=7,
        server_addr="1.0.0.1:443",
        hashes=stamp.hashes,
        provider_name="dns.cloudflare.com",
        path="/dns-query",
    )
    assert [len(h) for h in stamp.hashes] == [32, 32]


def test_parse_stamp_errors():
    with pytest.raises(UpstreamError):
        parse_stamp("https://example.com")
    with pytest.raises(UpstreamError):
        parse_stamp("sdns://AQ")


def test_server_ip_from_stamp_skips_bootstrap():
    u = address_to_upstream(
        "sdns://AwAAAAAAAAAAEzE3Ni4xMDMuMTMwLjEzMDo4NTMAD2Rucy5hZGd1YXJkLmNvbQ",
        Options(bootstrap=["1.2.3.4:55"], timeout=5),
    )
    connector = u.boot.get()
    assert connector.addresses == ("176.103.130.130:853",)
    assert connector.server_name == "dns.adguard.com"


def test_server_ip_option():
    u = address_to_upstream(
        "tls://dns.adguard.com",
        Options(bootstrap=["1.2.3.4:55"], timeout=5, server_ip_addrs=[ipaddress.ip_address("94.140.14.14")]),
    )
    connector = u.boot.get()
    assert connector.addresses == ("94.140.14.14:853",)
    assert connector.server_name == "dns.adguard.com"


@pytest.mark.parametrize(
    "address", ["1.1.1.1:53", "tls://1.1.1.1", "https://1.1.1.1/dns-query", "tcp://9.9.9.9"]
)
def test_new_resolver_valid(address):
    resolver = new_resolver(address, 3)
    assert resolver.upstream is not None
    assert resolver.resolver_address == address


@pytest.mark.parametrize(
    "address, timeout",
    [
        ("tls://dns.adguard.com", 3),
        ("https://dns.adguard.com/dns-query", 3),
        ("tcp://dns.adguard.com", 0),
        ("dns.adguard.com", 0),
    ],
)
def test_new_resolver_not_ip(address, timeout):
    with pytest.raises(UpstreamError):
        new_resolver(address, timeout)


def test_new_resolver_system():
    resolver = new_resolver("", 1)
    assert resolver.uses_system is True


def test_new_bootstrapper_resolvers():
    boot = new_bootstrapper("tls://one.one.one.one:853", ["8.8.8.8:53", "1.1.1.1"], 2, False)
    assert [r.resolver_address for r in boot.resolvers] == ["8.8.8.8:53", "1.1.1.1"]
    default = new_bootstrapper("tls://one.one.one.one:853", [], 2, False)
    assert len(default.resolvers) == 1
    assert default.resolvers[0].uses_system is True