"""A pool of TLS connections to one DNS-over-TLS server."""

from __future__ import annotations

import logging
import socket
import ssl
import threading
from typing import Any

from dnsrelay.upstream.base import UpstreamError
from dnsrelay.upstream.bootstrap import ResolvedConnector

logger = logging.getLogger(__name__)

DIAL_TIMEOUT = 10.0
"""Seconds allowed for connecting plus the TLS handshake."""


def _tls_dial(connector: ResolvedConnector) -> ssl.SSLSocket:
    raw = connector.dial("tcp")
    try:
        conn = connector.ssl_context.wrap_socket(
            raw, server_hostname=connector.server_name, do_handshake_on_connect=False
        )
    except Exception:
        raw.close()
        raise
    try:
        conn.settimeout(DIAL_TIMEOUT)
        conn.do_handshake()
    except Exception:
        conn.close()
        raise
    return conn


class TLSPool:
    """Reuses TLS connections created through a bootstrapper."""

    def __init__(self, boot: Any) -> None:
        self.boot = boot
        self._conns: list[socket.socket] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._conns)

    def get(self) -> socket.socket:
        """Return the most recently pooled open connection, or a new one."""
        with self._lock:
            conn = self._conns.pop() if self._conns else None

        if conn is not None and conn.fileno() != -1:
            try:
                conn.settimeout(DIAL_TIMEOUT)
            except OSError:
                pass
            else:
                logger.debug("Returning existing pooled connection with updated deadline")
                return conn

        return self.create()

    def create(self) -> socket.socket:
        """Open a new TLS connection without putting it into the pool."""
        connector = self.boot.get()
        try:
            return _tls_dial(connector)
        except (OSError, ssl.SSLError) as err:
            raise UpstreamError(f"Failed to connect to {connector.server_name}: {err}") from err

    def put(self, conn: socket.socket | None) -> None:
        """Return a connection to the pool."""
        if conn is None:
            return
        with self._lock:
            self._conns.append(conn)