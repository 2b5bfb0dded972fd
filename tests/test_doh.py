import ssl

import dns.message
import pytest

from dnsrelay.upstream.base import UpstreamError
from dnsrelay.upstream.bootstrap import ResolvedConnector
from dnsrelay.upstream.doh import DNSOverHTTPS


class _FailingBoot:
    address = "https://127.0.0.1:443/dns-query"
    timeout = 1.0

    def get(self):
        raise OSError("no route")


class _CountingBoot:
    address = "https://127.0.0.1:1/dns-query"
    timeout = 1.0

    def __init__(self):
        self.calls = 0

    def get(self):
        self.calls += 1
        return ResolvedConnector(
            addresses=("127.0.0.1:1",),
            timeout=1.0,
            server_name="127.0.0.1",
            ssl_context=ssl.create_default_context(),
        )


def _query():
    return dns.message.make_query("example.org.", "A")


def test_address_comes_from_bootstrapper():
    assert DNSOverHTTPS(_FailingBoot()).address == "https://127.0.0.1:443/dns-query"


def test_bootstrap_failure_is_reported():
    with pytest.raises(UpstreamError, match="couldn't initialize HTTP client or transport"):
        DNSOverHTTPS(_FailingBoot()).exchange(_query())


def test_connection_failure_is_reported_and_bootstrap_cached():
    boot = _CountingBoot()
    upstream = DNSOverHTTPS(boot)
    for _ in range(2):
        with pytest.raises(UpstreamError, match="couldn't do a GET request"):
            upstream.exchange(_query())
    assert boot.calls == 1