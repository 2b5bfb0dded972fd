import ipaddress

import dns.message
import dns.rdatatype
import dns.rrset
import pytest

from dnsrelay.upstream.base import Upstream
from dnsrelay.upstream.bootstrap import Bootstrapper
from dnsrelay.upstream.doh import DNSOverHTTPS
from dnsrelay.upstream.dot import DNSOverTLS
from dnsrelay.upstream.plain import PlainDNS
from dnsrelay.upstream.resolver import Resolver, is_resolver_valid_bootstrap


class _FakeUpstream(Upstream):
    def __init__(self, v4=(), v6=(), fail=()):
        self.v4 = v4
        self.v6 = v6
        self.fail = fail
        self.names = []

    @property
    def address(self):
        return "fake"

    def exchange(self, msg):
        q = msg.question[0]
        self.names.append(q.name.to_text())
        if q.rdtype in self.fail:
            raise OSError("boom")
        resp = dns.message.make_response(msg)
        values = self.v4 if q.rdtype == dns.rdatatype.A else self.v6
        if values:
            kind = "A" if q.rdtype == dns.rdatatype.A else "AAAA"
            resp.answer.append(dns.rrset.from_text(q.name, 300, "IN", kind, *values))
        return resp


def test_lookup_sorts_ipv4_first():
    upstream = _FakeUpstream(v4=("94.140.14.16", "94.140.14.15"), v6=("2a10:50c0::bad1:ff",))
    result = Resolver(upstream=upstream).lookup_ip_addr("example.org")
    assert [str(ip) for ip in result] == ["94.140.14.15", "94.140.14.16", "2a10:50c0::bad1:ff"]
    assert upstream.names == ["example.org.", "example.org."]


def test_lookup_partial_failure_returns_addresses():
    upstream = _FakeUpstream(v4=("94.140.14.15",), fail=(dns.rdatatype.AAAA,))
    result = Resolver(upstream=upstream).lookup_ip_addr("example.org")
    assert result == [ipaddress.ip_address("94.140.14.15")]


def test_lookup_all_failed_raises():
    upstream = _FakeUpstream(fail=(dns.rdatatype.A, dns.rdatatype.AAAA))
    with pytest.raises(OSError, match="boom"):
        Resolver(upstream=upstream).lookup_ip_addr("example.org")


def test_lookup_empty_host():
    upstream = _FakeUpstream(v4=("94.140.14.15",))
    assert Resolver(upstream=upstream).lookup_ip_addr("") == []
    assert upstream.names == []


def test_lookup_no_answers_is_empty():
    assert Resolver(upstream=_FakeUpstream()).lookup_ip_addr("example.org") == []


def test_resolver_without_address_uses_system():
    assert Resolver().uses_system is True
    assert Resolver(upstream=_FakeUpstream()).uses_system is False


@pytest.mark.parametrize(
    "upstream, valid",
    [
        (PlainDNS("8.8.8.8:53"), True),
        (PlainDNS("9.9.9.9:53", prefer_tcp=True), True),
        (PlainDNS("dns.adguard.com:53"), False),
        (DNSOverTLS(Bootstrapper("tls://1.1.1.1:853")), True),
        (DNSOverTLS(Bootstrapper("tls://dns.adguard.com:853")), False),
        (DNSOverHTTPS(Bootstrapper("https://1.1.1.1:443/dns-query")), True),
        (DNSOverHTTPS(Bootstrapper("https://dns.adguard.com:443/dns-query")), False),
    ],
)
def test_is_resolver_valid_bootstrap(upstream, valid):
    assert is_resolver_valid_bootstrap(upstream) is valid