# dnsrelay

Building blocks for a forwarding DNS resolver: clients for upstream DNS
servers, bootstrap resolution of upstream host names, parallel querying,
per-domain upstream routing, and helpers for answering clients.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Upstream addresses

`dnsrelay.upstream.address.address_to_upstream(address, options)` turns an
address string into an `Upstream` (see `dnsrelay.upstream.base`). Every
upstream has an `address` property and an `exchange(msg)` method that takes a
`dns.message.Message` and returns the reply, raising on failure.

| Address                                  | Upstream                                   |
|------------------------------------------|--------------------------------------------|
| `8.8.8.8:53`, `8.8.8.8`, `dns://8.8.8.8` | `PlainDNS`: UDP, retried over TCP when the reply is truncated; port 53 by default |
| `tcp://8.8.8.8:53`                       | `PlainDNS` with `prefer_tcp=True`          |
| `tls://1.1.1.1`                          | `DNSOverTLS`, port 853 by default, pooled connections (`TLSPool`) |
| `https://dns.example/dns-query`          | `DNSOverHTTPS`, GET requests, port 443 by default |
| `sdns://...`                             | DNS stamp for plain DNS, DoH or DoT        |

An invalid port, an unknown scheme or an unusable stamp raises
`dnsrelay.upstream.base.UpstreamError`.

```python
import dns.message
from dnsrelay.upstream.address import address_to_upstream
from dnsrelay.upstream.base import Options

upstream = address_to_upstream("tls://1.1.1.1", Options(timeout=5.0))
query = dns.message.make_query("example.com.", "A")
reply = upstream.exchange(query)
print(upstream.address, reply.answer)
```

`Options` holds:

- `bootstrap`: servers used to resolve the host names of TLS and HTTPS
  upstreams. Each must be plain DNS given by IP address, a TLS or HTTPS server
  given by IP address, or a stamp. With none, the system resolver is used.
- `timeout`: seconds, `0` for no timeout.
- `server_ip_addrs`: known server addresses; when set, no bootstrap lookup is
  made.
- `insecure_skip_verify`: skip certificate verification.

`dnsrelay.upstream.address.parse_stamp` decodes an `sdns://` stamp into a
`ServerStamp`. `new_resolver` and `new_bootstrapper` build the bootstrap
`Resolver` and `Bootstrapper` objects that TLS and HTTPS upstreams use.

## Querying several upstreams

In `dnsrelay.upstream.parallel`:

- `exchange_parallel(upstreams, req)` sends the query to all upstreams and
  returns `(reply, upstream)` for the first reply to arrive.
- `exchange_all(upstreams, req)` returns an `ExchangeAllResult` (`resp`,
  `upstream`) for every reply, in arrival order, and raises only when every
  upstream failed.
- `lookup_parallel(resolvers, host, timeout)` resolves a host with several
  resolvers and returns the first successful address list.

## Per-domain routing

`dnsrelay.proxy.upstreams.parse_upstreams_config(lines, bootstrap_dns, timeout)`
reads lines such as:

```
[/example.com/]1.2.3.4
[/www.example.com/]tls://1.1.1.1
[/maps.example.com/]#
8.8.8.8
```

`UpstreamConfig.get_upstreams_for_domain(name)` takes a fully qualified name
with a trailing dot. With the lines above, `mail.example.com.` goes to
`1.2.3.4`, `www.example.com.` and its subdomains to `tls://1.1.1.1`, and
`maps.example.com.` and other names to `8.8.8.8`. Names with fewer than two
dots go to the upstreams reserved with an empty domain (`[//]...`), and to no
upstream when there are none. Identical upstream addresses share one
`Upstream` instance.

## Answering clients

`dnsrelay.proxy.responses` has:

- `gen_server_failure`, `gen_not_impl` (with EDNS set) and `gen_nxdomain`,
  which build replies to a request;
- `decode_doh_request(method, query, content_type, body)`, which extracts the
  query from a DNS-over-HTTPS GET or POST and raises `DoHRequestError` whose
  `status` is 400, 405 or 415;
- `remote_addr` and `get_ip_from_http_headers`, which find the client address,
  preferring `CF-Connecting-IP`, `True-Client-IP`, `X-Real-IP` and then the
  first `X-Forwarded-For` entry;
- `is_non_critical_error` and `is_quic_conn_closed_error`.

`dnsrelay.proxyutil` holds two-byte length-prefixed framing for TCP
(`read_prefixed`, `write_prefixed`, `dns_size`), UDP helpers that report and
reuse the local address of a datagram where the platform allows it, and IP
address helpers (`sort_ip_addrs`, `contains_ip`, `ip_addrs_from_answers`).

## What it does not do

The package has no server: it opens no listening sockets and has no command to
run. It has no DNSCrypt or DNS-over-QUIC client, so `quic://` addresses and
DNSCrypt stamps are rejected, and it does no caching or rate limiting.