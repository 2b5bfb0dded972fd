"""DNS-over-TLS upstream."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Any

import dns.exception
import dns.message

from dnsrelay.proxyutil.dns import read_prefixed, write_prefixed
from dnsrelay.upstream.base import Upstream, UpstreamError
from dnsrelay.upstream.pool import TLSPool

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (OSError, EOFError, ValueError, dns.exception.DNSException)


class DNSOverTLS(Upstream):
    """A DNS server reached over TLS through a pool of connections."""

    def __init__(self, boot: Any) -> None:
        self.boot = boot
        self.pool: Any = None
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        return self.boot.address

    def _get_pool(self) -> Any:
        with self._lock:
            if self.pool is None:
                self.pool = TLSPool(self.boot)
            return self.pool

    def exchange_conn(self, conn: socket.socket, msg: dns.message.Message) -> dns.message.Message:
        """Send ``msg`` over ``conn`` and read the reply from it."""
        try:
            write_prefixed(msg.to_wire(), conn)
        except _TRANSPORT_ERRORS as err:
            conn.close()
            raise UpstreamError(f"Failed to send a request to {self.address}: {err}") from err

        try:
            reply = dns.message.from_wire(read_prefixed(conn))
        except _TRANSPORT_ERRORS as err:
            conn.close()
            raise UpstreamError(f"Failed to read a request from {self.address}: {err}") from err

        if reply.id != msg.id:
            raise UpstreamError("id mismatch")
        return reply

    def _exchange_logged(self, conn: socket.socket, msg: dns.message.Message) -> dns.message.Message:
        self._log_begin(msg)
        try:
            reply = self.exchange_conn(conn, msg)
        except UpstreamError as err:
            self._log_finish(err)
            raise
        self._log_finish(None)
        return reply

    def exchange(self, msg: dns.message.Message) -> dns.message.Message:
        pool = self._get_pool()
        try:
            conn = pool.get()
        except Exception as err:
            raise UpstreamError(
                f"Failed to get a connection from TLSPool to {self.address}: {err}"
            ) from err

        try:
            reply = self._exchange_logged(conn, msg)
        except UpstreamError as err:
            logger.debug("The TLS connection is expired due to %s", err)
            # A pooled connection may have been closed already; the other
            # pooled ones are no safer, so a fresh one is created.
            try:
                conn = pool.create()
            except Exception as create_err:
                raise UpstreamError(
                    f"Failed to create a new connection from TLSPool to {self.address}: {create_err}"
                ) from create_err
            reply = self._exchange_logged(conn, msg)

        pool.put(conn)
        return reply