"""Default upstreams and upstreams reserved for particular domains."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from dnsrelay.upstream.address import address_to_upstream
from dnsrelay.upstream.base import Options, Upstream, UpstreamError

logger = logging.getLogger(__name__)

UNQUALIFIED_NAMES = "unqualified_names"
"""Key under which upstreams for names without dots are reserved."""

_LABEL_RE = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?")


def _validate_hostname(host: str) -> None:
    if not host or len(host) > 253:
        raise UpstreamError(f"invalid hostname length: {len(host)}")
    for label in host.split("."):
        if not label:
            raise UpstreamError(f"invalid hostname {host}: empty label")
        if len(label) > 63:
            raise UpstreamError(f"invalid hostname {host}: label {label} is too long")
        if not _LABEL_RE.fullmatch(label):
            raise UpstreamError(f"invalid hostname {host}: bad label {label}")


@dataclass
class UpstreamConfig:
    """Default upstreams plus upstreams reserved for specific domains.

    A reserved entry of None means the domain is excluded from reservation
    and is sent to the default upstreams.
    """

    upstreams: list[Upstream] = field(default_factory=list)
    domain_reserved_upstreams: dict[str, Optional[list[Upstream]]] = field(default_factory=dict)

    def get_upstreams_for_domain(self, host: str) -> list[Upstream]:
        """Return the upstreams for ``host``; more specific domains win."""
        if not self.domain_reserved_upstreams:
            return self.upstreams

        dots = host.count(".")
        if dots < 2:
            return self.domain_reserved_upstreams.get(UNQUALIFIED_NAMES) or []

        for depth in range(dots):
            name = host.split(".", depth)[-1].lower()
            if name in self.domain_reserved_upstreams:
                reserved = self.domain_reserved_upstreams[name]
                if reserved is None:
                    return self.upstreams
                return reserved

        return self.upstreams


def parse_upstream_line(line: str) -> tuple[str, list[str]]:
    """Split ``[/domain1/../domainN/]upstream`` into the upstream and its domains.

    Domains come back lower-cased with a trailing dot; an empty domain stands
    for unqualified names. A line without domains yields an empty list.
    """
    if not line.startswith("[/"):
        return line, []

    parts = line[len("[/"):].split("/]")
    if len(parts) != 2:
        raise UpstreamError(f"wrong upstream specification: {line}")

    domains, upstream = parts
    hosts = []
    for host in domains.split("/"):
        if host:
            _validate_hostname(host)
            hosts.append((host + ".").lower())
        else:
            hosts.append(UNQUALIFIED_NAMES)
    return upstream, hosts


def parse_upstreams_config(
    upstream_config: Sequence[str],
    bootstrap_dns: Sequence[str] | None = None,
    timeout: float = 0.0,
) -> UpstreamConfig:
    """Build an UpstreamConfig from upstream lines.

    ``[/host.com/]#`` excludes a domain from a less specific reservation.
    Identical upstream addresses share one Upstream instance.
    """
    bootstrap = list(bootstrap_dns or [])
    if bootstrap:
        logger.debug("Bootstraps: %s", bootstrap)

    upstreams: list[Upstream] = []
    reserved: dict[str, Optional[list[Upstream]]] = {}
    index: dict[str, Upstream] = {}

    for number, line in enumerate(upstream_config):
        address, hosts = parse_upstream_line(line)

        if address == "#" and hosts:
            for host in hosts:
                reserved[host] = None
            continue

        upstream = index.get(address)
        if upstream is None:
            try:
                upstream = address_to_upstream(address, Options(bootstrap=bootstrap, timeout=timeout))
            except UpstreamError as err:
                raise UpstreamError(
                    f"cannot prepare the upstream {line} ({bootstrap}): {err}"
                ) from err
            index[address] = upstream

        if hosts:
            for host in hosts:
                current = reserved.get(host) or []
                current.append(upstream)
                reserved[host] = current
            logger.debug(
                "Upstream %d: %s is reserved for next domains: %s",
                number, upstream.address, ", ".join(hosts),
            )
        else:
            logger.debug("Upstream %d: %s", number, upstream.address)
            upstreams.append(upstream)

    return UpstreamConfig(upstreams=upstreams, domain_reserved_upstreams=reserved)