"""Common interface and options for DNS upstreams."""

from __future__ import annotations

import abc
import ipaddress
import logging
import re
from dataclasses import dataclass, field
from typing import Union

import dns.message
import dns.rdatatype

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_PORT_RE = re.compile(r"[+-]?[0-9]+")


class UpstreamError(Exception):
    """Raised when an upstream address or exchange is invalid."""


@dataclass
class Options:
    """Settings used when creating an upstream from its address."""

    bootstrap: list[str] = field(default_factory=list)
    """DNS servers used to resolve DoH/DoT host names."""
    timeout: float = 0.0
    """Upstream and bootstrap timeout in seconds; 0 means no timeout."""
    server_ip_addrs: list[IPAddress] = field(default_factory=list)
    """Known server addresses; when set, bootstrap servers are not used."""
    insecure_skip_verify: bool = False
    """Do not verify the server certificate."""


class Upstream(abc.ABC):
    """A DNS server that queries can be sent to."""

    @property
    @abc.abstractmethod
    def address(self) -> str:
        """The address the upstream was configured with."""

    @abc.abstractmethod
    def exchange(self, msg: dns.message.Message) -> dns.message.Message:
        """Send ``msg`` and return the server's reply."""

    def _log_begin(self, msg: dns.message.Message) -> None:
        qtype = ""
        target = ""
        if msg.question:
            question = msg.question[0]
            qtype = dns.rdatatype.to_text(question.rdtype)
            target = question.name.to_text()
        logger.debug("%s: sending request %s %s", self.address, qtype, target)

    def _log_finish(self, err: BaseException | None) -> None:
        status = "ok" if err is None else str(err)
        logger.debug("%s: response: %s", self.address, status)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address!r})"


def _split_host_port(hostport: str) -> tuple[str, str]:
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {hostport}")
        rest = hostport[end + 1:]
        if not rest:
            raise ValueError(f"missing port in address {hostport}")
        if not rest.startswith(":"):
            raise ValueError(f"unexpected text after ']' in address {hostport}")
        host = hostport[1:end]
        port = rest[1:]
        if "[" in host or "]" in host:
            raise ValueError(f"unexpected bracket in address {hostport}")
    else:
        colon = hostport.rfind(":")
        if colon < 0:
            raise ValueError(f"missing port in address {hostport}")
        host = hostport[:colon]
        port = hostport[colon + 1:]
        if ":" in host:
            raise ValueError(f"too many colons in address {hostport}")
        if "[" in host or "]" in host:
            raise ValueError(f"unexpected bracket in address {hostport}")
    if "[" in port or "]" in port:
        raise ValueError(f"unexpected bracket in address {hostport}")
    return host, port


def parse_host_and_port(addr: str) -> tuple[str, str]:
    """Split ``host:port`` and validate the port.

    An address without a port yields an empty port string. A port that is
    not a number in 1..65535 raises UpstreamError.
    """
    try:
        host, port = _split_host_port(addr)
    except ValueError:
        return addr, ""

    if not _PORT_RE.fullmatch(port):
        raise UpstreamError(f"invalid address: {addr}")
    port_number = int(port)
    if not 0 < port_number <= 0xFFFF:
        raise UpstreamError(f"invalid address: {addr}")
    return host, str(port_number)


def _url_port(netloc: str) -> str:
    colon = netloc.find(":")
    if colon < 0:
        return ""
    bracket = netloc.find("]:")
    if bracket >= 0:
        return netloc[bracket + 2:]
    if "]" in netloc:
        return ""
    return netloc[colon + 1:]


def host_with_port(netloc: str, default_port: str) -> str:
    """Append ``default_port`` to a URL host part that has no port."""
    if _url_port(netloc) == "":
        return f"{netloc}:{default_port}"
    return netloc