"""Plain DNS upstream over UDP, falling back to TCP on truncation."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Callable

import dns.flags
import dns.message
import dns.query

from dnsrelay.upstream.base import Upstream, parse_host_and_port

logger = logging.getLogger(__name__)

_Query = Callable[..., dns.message.Message]


class PlainDNS(Upstream):
    """An unencrypted DNS server reached at ``host:port``."""

    def __init__(self, address: str, timeout: float = 0.0, prefer_tcp: bool = False) -> None:
        self._address = address
        self.timeout = timeout
        self.prefer_tcp = prefer_tcp

    @property
    def address(self) -> str:
        """The configured address, with a ``tcp://`` prefix when TCP is preferred."""
        if self.prefer_tcp:
            return "tcp://" + self._address
        return self._address

    def _destination(self) -> tuple[str, int]:
        host, port = parse_host_and_port(self._address)
        port_number = int(port) if port else 53
        try:
            ipaddress.ip_address(host)
        except ValueError:
            infos = socket.getaddrinfo(host, port_number, proto=socket.IPPROTO_UDP)
            host = infos[0][4][0]
        return host, port_number

    def _query(self, query: _Query, msg: dns.message.Message) -> dns.message.Message:
        host, port = self._destination()
        timeout = self.timeout if self.timeout > 0 else None
        self._log_begin(msg)
        try:
            reply = query(msg, host, timeout=timeout, port=port)
        except Exception as err:
            self._log_finish(err)
            raise
        self._log_finish(None)
        return reply

    def exchange(self, msg: dns.message.Message) -> dns.message.Message:
        if self.prefer_tcp:
            return self._query(dns.query.tcp, msg)

        reply = self._query(dns.query.udp, msg)
        if reply.flags & dns.flags.TC:
            logger.debug(
                "Truncated message was received, retrying over TCP, question: %s",
                msg.question[0] if msg.question else "",
            )
            reply = self._query(dns.query.tcp, msg)
        return reply