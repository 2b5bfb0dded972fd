"""Querying several upstreams or bootstrap resolvers at once."""

from __future__ import annotations

import concurrent.futures
import ipaddress
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union

import dns.message

from dnsrelay.upstream.base import Upstream, UpstreamError

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class _HostResolver(Protocol):
    def lookup_ip_addr(self, host: str) -> list[IPAddress]:
        ...


@dataclass
class ExchangeAllResult:
    """A reply together with the upstream that sent it."""

    resp: dns.message.Message
    upstream: Upstream


def _describe_question(req: dns.message.Message) -> str:
    return str(req.question[0]) if req.question else ""


def _exchange(upstream: Upstream, req: dns.message.Message) -> Optional[dns.message.Message]:
    start = time.monotonic()
    try:
        reply = upstream.exchange(req)
    except Exception as err:
        elapsed = int((time.monotonic() - start) * 1000)
        logger.debug(
            "upstream %s failed to exchange %s in %d milliseconds. Cause: %s",
            upstream.address, _describe_question(req), elapsed, err,
        )
        raise
    elapsed = int((time.monotonic() - start) * 1000)
    logger.debug(
        "upstream %s successfully finished exchange of %s. Elapsed %d ms.",
        upstream.address, _describe_question(req), elapsed,
    )
    return reply


def _combined(prefix: str, errors: Sequence[BaseException]) -> UpstreamError:
    details = "; ".join(str(err) for err in errors)
    return UpstreamError(f"{prefix}: {details}")


def exchange_parallel(
    upstreams: Sequence[Upstream], req: dns.message.Message
) -> tuple[dns.message.Message, Upstream]:
    """Send ``req`` to all upstreams and return the first reply that arrives.

    Raises UpstreamError when no upstream produced a reply.
    """
    if not upstreams:
        raise UpstreamError("no upstream specified")

    if len(upstreams) == 1:
        reply = _exchange(upstreams[0], req)
        if reply is None:
            raise UpstreamError("none of upstream servers responded")
        return reply, upstreams[0]

    errors: list[BaseException] = []
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=len(upstreams))
    try:
        futures = {executor.submit(u.exchange, req): u for u in upstreams}
        for future in concurrent.futures.as_completed(futures):
            err = future.exception()
            if err is not None:
                errors.append(err)
                continue
            reply = future.result()
            if reply is not None:
                return reply, futures[future]
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if not errors:
        raise UpstreamError("none of upstream servers responded")
    raise _combined("all upstreams failed to respond", errors) from errors[0]


def exchange_all(
    upstreams: Sequence[Upstream], req: dns.message.Message
) -> list[ExchangeAllResult]:
    """Send ``req`` to every upstream and collect all replies in arrival order.

    Raises UpstreamError only when every upstream failed.
    """
    if not upstreams:
        raise UpstreamError("no upstream specified")

    if len(upstreams) == 1:
        reply = _exchange(upstreams[0], req)
        return [ExchangeAllResult(resp=reply, upstream=upstreams[0])]

    errors: list[BaseException] = []
    replies: list[ExchangeAllResult] = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=len(upstreams)) as executor:
        futures = {executor.submit(u.exchange, req): u for u in upstreams}
        for future in concurrent.futures.as_completed(futures):
            err = future.exception()
            if err is not None:
                errors.append(err)
                continue
            reply = future.result()
            if reply is not None:
                replies.append(ExchangeAllResult(resp=reply, upstream=futures[future]))

    if len(errors) == len(upstreams):
        raise _combined("all upstreams failed to exchange", errors) from errors[0]
    return replies


def _lookup(resolver: Any, host: str) -> list[IPAddress]:
    start = time.monotonic()
    name = getattr(resolver, "resolver_address", "")
    try:
        addrs = resolver.lookup_ip_addr(host)
    except Exception as err:
        elapsed = int((time.monotonic() - start) * 1000)
        logger.debug("failed to lookup for %s in %d milliseconds using %s: %s", host, elapsed, name, err)
        raise
    elapsed = int((time.monotonic() - start) * 1000)
    logger.debug(
        "successfully finished lookup for %s in %d milliseconds using %s. Result : %s",
        host, elapsed, name, addrs,
    )
    return addrs


def lookup_parallel(
    resolvers: Sequence[_HostResolver], host: str, timeout: float | None = None
) -> list[IPAddress]:
    """Resolve ``host`` with all resolvers at once and return the first success.

    ``timeout`` (seconds, None or 0 for none) bounds the wait for the
    resolvers. Raises UpstreamError when every resolver failed.
    """
    if not resolvers:
        raise UpstreamError("no resolvers specified")

    if len(resolvers) == 1:
        return _lookup(resolvers[0], host)

    errors: list[BaseException] = []
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=len(resolvers))
    try:
        futures = [executor.submit(_lookup, r, host) for r in resolvers]
        try:
            for future in concurrent.futures.as_completed(futures, timeout=timeout or None):
                err = future.exception()
                if err is not None:
                    errors.append(err)
                    continue
                return future.result()
        except concurrent.futures.TimeoutError as err:
            errors.append(UpstreamError(f"lookup of {host} timed out"))
            raise _combined("all resolvers failed to lookup", errors) from err
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    raise _combined("all resolvers failed to lookup", errors) from errors[0]