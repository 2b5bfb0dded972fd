"""Building error replies and interpreting incoming request data."""

from __future__ import annotations

import base64
import binascii
import errno
import http
import ipaddress
import re
import urllib.parse
from collections.abc import Mapping
from typing import Any, Union

import dns.exception
import dns.flags
import dns.message
import dns.rcode
import dns.rrset

from dnsrelay.proxyutil.helpers import is_conn_closed

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

DNS_MESSAGE_TYPE = "application/dns-message"

_NOT_IMPL_EDNS_PAYLOAD = 1452
_RAW_URL_B64_RE = re.compile(r"[A-Za-z0-9_-]*")
_CLIENT_IP_HEADERS = ("CF-Connecting-IP", "True-Client-IP", "X-Real-IP")


class DoHRequestError(Exception):
    """Raised when a DNS-over-HTTPS request cannot be served."""

    def __init__(self, status: http.HTTPStatus) -> None:
        super().__init__(status.phrase)
        self.status = status


def _reply(request: dns.message.Message, rcode: dns.rcode.Rcode) -> dns.message.Message:
    resp = dns.message.Message(id=request.id)
    resp.set_opcode(request.opcode())
    resp.flags |= dns.flags.QR | dns.flags.RA
    if request.opcode() == dns.opcode.QUERY:
        resp.flags |= request.flags & (dns.flags.RD | dns.flags.CD)
    if request.question:
        q = request.question[0]
        resp.question = [dns.rrset.RRset(q.name, q.rdclass, q.rdtype)]
    resp.set_rcode(rcode)
    return resp


def gen_server_failure(request: dns.message.Message) -> dns.message.Message:
    """Return a SERVFAIL reply to ``request``."""
    return _reply(request, dns.rcode.SERVFAIL)


def gen_not_impl(request: dns.message.Message) -> dns.message.Message:
    """Return a NOTIMP reply to ``request``.

    EDNS is set explicitly, since NOTIMP without it would read as
    "EDNS is not supported".
    """
    resp = _reply(request, dns.rcode.NOTIMP)
    resp.use_edns(0, payload=_NOT_IMPL_EDNS_PAYLOAD)
    resp.set_rcode(dns.rcode.NOTIMP)
    return resp


def gen_nxdomain(request: dns.message.Message) -> dns.message.Message:
    """Return an NXDOMAIN reply to ``request``."""
    return _reply(request, dns.rcode.NXDOMAIN)


def is_non_critical_error(err: BaseException | None) -> bool:
    """Tell whether a write error only means the client or server went away."""
    if err is None:
        return False
    if isinstance(err, BrokenPipeError) or getattr(err, "errno", None) == errno.EPIPE:
        return True
    if is_conn_closed(err):
        return True
    return str(err).endswith("use of closed network connection")


def is_quic_conn_closed_error(err: BaseException | None) -> bool:
    """Tell whether a QUIC error only signals a closed connection."""
    if err is None:
        return False
    if isinstance(err, EOFError):
        return True
    text = str(err)
    return (
        "server closed" in text
        or "NO_ERROR" in text
        or text.endswith("Application error 0x0")
        or text == "EOF"
    )


def _parse_ip(value: str) -> IPAddress | None:
    if not value or "%" in value:
        return None
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def _first_values(headers: Any) -> dict[str, str]:
    items = headers.items() if hasattr(headers, "items") else headers
    values: dict[str, str] = {}
    for name, value in items:
        values.setdefault(str(name).lower(), str(value))
    return values


def get_ip_from_http_headers(headers: Mapping[str, str] | Any) -> IPAddress | None:
    """Return the client address that a fronting proxy put into the headers."""
    values = _first_values(headers)
    for name in _CLIENT_IP_HEADERS:
        ip = _parse_ip(values.get(name.lower(), ""))
        if ip is not None:
            return ip

    forwarded = values.get("x-forwarded-for", "")
    return _parse_ip(forwarded.split(",", 1)[0].strip())


def _split_remote(remote: str) -> tuple[str, str]:
    if remote.startswith("["):
        end = remote.find("]")
        if end < 0 or not remote[end + 1:].startswith(":"):
            raise ValueError(f"invalid address: {remote}")
        return remote[1:end], remote[end + 2:]
    host, sep, port = remote.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {remote}")
    if ":" in host:
        raise ValueError(f"too many colons in address {remote}")
    return host, port


def remote_addr(remote: str | tuple[str, int], headers: Mapping[str, str] | Any = ()) -> tuple[IPAddress, int]:
    """Return the client's address and port for an HTTP request.

    A client address set by a fronting proxy takes the place of the peer's
    address. Raises ValueError when ``remote`` is not a valid address.
    """
    if isinstance(remote, tuple):
        host, port_text = str(remote[0]), str(remote[1])
    else:
        host, port_text = _split_remote(remote)
    port = int(port_text)

    ip = get_ip_from_http_headers(headers)
    if ip is None:
        ip = _parse_ip(host)
        if ip is None:
            raise ValueError(f"invalid IP: {host}")
    return ip, port


def _decode_raw_url_base64(value: str) -> bytes:
    if not _RAW_URL_B64_RE.fullmatch(value):
        raise ValueError("invalid base64 data")
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded)


def decode_doh_request(
    method: str,
    query: str | Mapping[str, Any] = "",
    content_type: str | None = None,
    body: bytes | Any = b"",
) -> dns.message.Message:
    """Extract the DNS query from a DoH GET or POST request.

    Raises DoHRequestError with 400 for missing or malformed data, 415 for a
    POST that is not ``application/dns-message`` and 405 for other methods.
    """
    if method == "GET":
        if isinstance(query, str):
            param = urllib.parse.parse_qs(query).get("dns", [""])[0]
        else:
            value = query.get("dns", "")
            param = value[0] if isinstance(value, (list, tuple)) and value else str(value or "")
        try:
            buf = _decode_raw_url_base64(param)
        except (ValueError, binascii.Error) as err:
            raise DoHRequestError(http.HTTPStatus.BAD_REQUEST) from err
        if not buf:
            raise DoHRequestError(http.HTTPStatus.BAD_REQUEST)
    elif method == "POST":
        if content_type != DNS_MESSAGE_TYPE:
            raise DoHRequestError(http.HTTPStatus.UNSUPPORTED_MEDIA_TYPE)
        try:
            buf = body.read() if hasattr(body, "read") else bytes(body)
        except (OSError, TypeError) as err:
            raise DoHRequestError(http.HTTPStatus.BAD_REQUEST) from err
    else:
        raise DoHRequestError(http.HTTPStatus.METHOD_NOT_ALLOWED)

    try:
        return dns.message.from_wire(buf)
    except (dns.exception.DNSException, ValueError) as err:
        raise DoHRequestError(http.HTTPStatus.BAD_REQUEST) from err