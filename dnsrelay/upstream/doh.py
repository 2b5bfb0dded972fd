"""DNS-over-HTTPS upstream."""

from __future__ import annotations

import base64
import http.client
import ssl
import threading
import time
import urllib.parse
from typing import Any

import dns.exception
import dns.message

from dnsrelay.upstream.base import Upstream, UpstreamError

DOH_MAX_CONNS_PER_HOST = 1
"""Connections kept open to one DoH server."""


class _ResolvedHTTPSConnection(http.client.HTTPSConnection):
    """An HTTPS connection made to the bootstrapped address of the server."""

    def __init__(self, connector: Any, host: str, port: int, tls_context: ssl.SSLContext,
                 timeout: float | None) -> None:
        super().__init__(host, port, timeout=timeout, context=tls_context)
        self._connector = connector
        self._tls_context = tls_context

    def connect(self) -> None:
        raw = self._connector.dial("tcp")
        try:
            self.sock = self._tls_context.wrap_socket(
                raw, server_hostname=self._connector.server_name
            )
        except Exception:
            raw.close()
            raise


def _http_tls_context(connector: Any) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.set_alpn_protocols(["http/1.1"])
    if connector.ssl_context.verify_mode == ssl.CERT_NONE:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


class DNSOverHTTPS(Upstream):
    """A DNS server reached with RFC 8484 GET requests."""

    def __init__(self, boot: Any) -> None:
        self.boot = boot
        self._init_lock = threading.Lock()
        self._conn_lock = threading.Lock()
        self._connector: Any = None
        self._conn: _ResolvedHTTPSConnection | None = None

    @property
    def address(self) -> str:
        return self.boot.address

    def _get_connector(self) -> Any:
        start = time.monotonic()
        with self._init_lock:
            if self._connector is not None:
                return self._connector

            # The timeout may run out while waiting for the lock.
            elapsed = time.monotonic() - start
            if self.boot.timeout > 0 and elapsed > self.boot.timeout:
                raise UpstreamError(f"timeout exceeded: {int(elapsed * 1000)} ms")

            try:
                self._connector = self.boot.get()
            except Exception as err:
                raise UpstreamError(f"couldn't bootstrap {self.address}: {err}") from err
            return self._connector

    def _connection(self, connector: Any) -> _ResolvedHTTPSConnection:
        if self._conn is None:
            parts = urllib.parse.urlsplit(self.address)
            self._conn = _ResolvedHTTPSConnection(
                connector,
                parts.hostname or connector.server_name,
                parts.port or 443,
                _http_tls_context(connector),
                self.boot.timeout or None,
            )
        return self._conn

    def _request_path(self, wire: bytes) -> str:
        path = urllib.parse.urlsplit(self.address).path or "/"
        encoded = base64.urlsafe_b64encode(wire).rstrip(b"=").decode("ascii")
        return f"{path}?dns={encoded}"

    def _get(self, connector: Any, path: str) -> tuple[int, bytes]:
        with self._conn_lock:
            conn = self._connection(connector)
            try:
                conn.request("GET", path, headers={"Accept": "application/dns-message"})
                resp = conn.getresponse()
                return resp.status, resp.read()
            except Exception:
                conn.close()
                self._conn = None
                raise

    def _exchange_https(self, msg: dns.message.Message, connector: Any) -> dns.message.Message:
        wire = msg.to_wire()
        try:
            status, body = self._get(connector, self._request_path(wire))
        except (OSError, http.client.HTTPException) as err:
            raise UpstreamError(f"couldn't do a GET request to '{self.address}': {err}") from err

        if status != 200:
            raise UpstreamError(
                f"got an unexpected HTTP status code {status} from '{self.address}'"
            )
        try:
            reply = dns.message.from_wire(body)
        except dns.exception.DNSException as err:
            raise UpstreamError(
                f"couldn't unpack DNS response from '{self.address}': body is {body!r}"
            ) from err
        if reply.id != msg.id:
            raise UpstreamError("id mismatch")
        return reply

    def exchange(self, msg: dns.message.Message) -> dns.message.Message:
        try:
            connector = self._get_connector()
        except UpstreamError as err:
            raise UpstreamError(f"couldn't initialize HTTP client or transport: {err}") from err

        self._log_begin(msg)
        try:
            reply = self._exchange_https(msg, connector)
        except UpstreamError as err:
            self._log_finish(err)
            raise
        self._log_finish(None)
        return reply