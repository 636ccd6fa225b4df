"""Firewall allowlist compiler.

Turns ``firewall.allow`` entries into two iptables-restore rule-sets (IPv4 and
IPv6).  Domains are resolved on the host; CIDR entries pass straight through.
``iptables-restore`` loads a whole rule-set in one call, so the container's
packet filter is never left with half of a new allowlist.

Resolution runs as a background asyncio task (``FirewallResolution``) that
reports each domain just before looking it up, so the sync orchestrator can
overlap DNS latency with file pushes and still show live progress.
Rendering is a pure function of the resolved entries.
"""

from __future__ import annotations

import asyncio
import enum
import hashlib
import ipaddress
import logging
import socket
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Sequence

from agentbox.config import FirewallEntry, SandboxConfig

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN_PORTS = (80, 443)

LookupFunc = Callable[[str], Awaitable[list[str]]]
ProgressFunc = Callable[[str], None]


class Family(enum.Enum):
    IPV4 = 4
    IPV6 = 6

    @property
    def host_mask(self) -> str:
        return "/32" if self is Family.IPV4 else "/128"

    @property
    def reject_with(self) -> str:
        if self is Family.IPV4:
            return "icmp-port-unreachable"
        return "icmp6-port-unreachable"


@dataclass
class ResolvedEntry:
    """A domain entry after DNS lookup, split by address family."""

    domain: str
    ports: list[int]
    v4: list[str] = field(default_factory=list)
    v6: list[str] = field(default_factory=list)

    def addresses(self, family: Family) -> list[str]:
        return self.v4 if family is Family.IPV4 else self.v6


@dataclass
class ResolveResult:
    domains: list[ResolvedEntry] = field(default_factory=list)
    cidrs: list[FirewallEntry] = field(default_factory=list)


# ── DNS ──────────────────────────────────────────────────────────────────────


async def _getaddrinfo(host: str, family: int = socket.AF_UNSPEC) -> list[tuple]:
    loop = asyncio.get_running_loop()
    try:
        return await loop.getaddrinfo(
            host, None, family=family, type=socket.SOCK_STREAM, flags=socket.AI_CANONNAME
        )
    except UnicodeError as e:
        # IDNA encoding rejects empty or over-long labels before any query is sent.
        raise socket.gaierror(socket.EAI_NONAME, f"invalid domain name {host!r}: {e}") from e


async def lookup_host(domain: str) -> list[str]:
    """Resolve ``domain`` to its addresses.

    If the answer came through a CNAME, the CNAME target gets one extra
    A-record lookup and those addresses are merged in.

    Raises:
        OSError: (``socket.gaierror``) if the domain does not resolve.
    """
    infos = await _getaddrinfo(domain)
    addrs: list[str] = []
    canonical = ""
    for _family, _type, _proto, canonname, sockaddr in infos:
        if canonname and not canonical:
            canonical = canonname.rstrip(".")
        if sockaddr[0] not in addrs:
            addrs.append(sockaddr[0])

    if canonical and canonical.lower() != domain.rstrip(".").lower():
        try:
            for *_, sockaddr in await _getaddrinfo(canonical, socket.AF_INET):
                if sockaddr[0] not in addrs:
                    addrs.append(sockaddr[0])
        except OSError as e:
            logger.debug("CNAME target %s of %s did not resolve: %s", canonical, domain, e)

    return addrs


def classify_addresses(addrs: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split addresses into (v4, v6), dropping unspecified and link-local ones."""
    v4: list[str] = []
    v6: list[str] = []
    for raw in addrs:
        try:
            ip = ipaddress.ip_address(raw.split("%", 1)[0])
        except ValueError:
            continue
        if ip.is_unspecified or ip.is_link_local:
            continue
        bucket = v4 if ip.version == 4 else v6
        text = str(ip)
        if text not in bucket:
            bucket.append(text)
    return v4, v6


async def resolve_entries(
    entries: Sequence[FirewallEntry],
    *,
    default_ports: Sequence[int] = DEFAULT_DOMAIN_PORTS,
    on_progress: ProgressFunc | None = None,
    lookup: LookupFunc | None = None,
) -> ResolveResult:
    """Resolve every domain entry in order; CIDR entries pass through.

    A domain that fails to resolve is dropped with a warning.
    """
    if lookup is None:
        lookup = lookup_host

    result = ResolveResult()
    for entry in entries:
        if entry.cidr:
            result.cidrs.append(entry)
            continue

        if on_progress is not None:
            on_progress(entry.domain)
        try:
            addrs = await lookup(entry.domain)
        except OSError as e:
            logger.warning("Cannot resolve %s: %s", entry.domain, e)
            continue

        v4, v6 = classify_addresses(addrs)
        result.domains.append(
            ResolvedEntry(
                domain=entry.domain,
                ports=list(entry.ports or default_ports),
                v4=v4,
                v6=v6,
            )
        )
        logger.debug("Resolved %s: %d v4, %d v6", entry.domain, len(v4), len(v6))
    return result


class FirewallResolution:
    """Background DNS resolution with a progress stream.

    Usage::

        resolution = FirewallResolution(config.firewall.allow)
        resolution.start()
        ...                              # other work
        if not resolution.done():
            async for domain in resolution.progress():
                show(domain)
        result = await resolution.result()
    """

    _CLOSED = None

    def __init__(
        self,
        entries: Sequence[FirewallEntry],
        *,
        default_ports: Sequence[int] = DEFAULT_DOMAIN_PORTS,
        lookup: LookupFunc | None = None,
    ) -> None:
        self._entries = list(entries)
        self._default_ports = tuple(default_ports)
        self._lookup = lookup
        self._progress: asyncio.Queue[str | None] = asyncio.Queue()
        self._task: asyncio.Task[ResolveResult] | None = None

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name="firewall-resolve")

    async def _run(self) -> ResolveResult:
        try:
            return await resolve_entries(
                self._entries,
                default_ports=self._default_ports,
                on_progress=self._progress.put_nowait,
                lookup=self._lookup,
            )
        finally:
            self._progress.put_nowait(self._CLOSED)

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def progress(self) -> AsyncIterator[str]:
        """Yield domains as their lookups start, until resolution finishes."""
        while True:
            domain = await self._progress.get()
            if domain is self._CLOSED:
                return
            yield domain

    async def result(self) -> ResolveResult:
        if self._task is None:
            raise RuntimeError("FirewallResolution.start() was never called")
        return await self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def stop(self) -> None:
        """Cancel resolution if it is still running and wait for the task to end."""
        if self._task is None:
            return
        self.cancel()
        # asyncio.wait never raises the task's own exception or cancellation.
        await asyncio.wait([self._task])


# ── Rendering ────────────────────────────────────────────────────────────────


def _cidr_family(cidr: str) -> Family | None:
    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError:
        return None
    return Family.IPV4 if network.version == 4 else Family.IPV6


def render_rules(
    domains: Sequence[ResolvedEntry],
    cidrs: Sequence[FirewallEntry],
    family: Family,
) -> str:
    """Render an iptables-restore rule-set for one address family."""
    lines = [
        "*filter",
        ":INPUT ACCEPT [0:0]",
        ":FORWARD ACCEPT [0:0]",
        ":OUTPUT ACCEPT [0:0]",
        "-A OUTPUT -m conntrack --ctstate ESTABLISHED,RELATED -j ACCEPT",
        "-A OUTPUT -o lo -j ACCEPT",
        "-A OUTPUT -p udp --dport 53 -j ACCEPT",
        "-A OUTPUT -p tcp --dport 53 -j ACCEPT",
    ]

    for entry in domains:
        for addr in entry.addresses(family):
            for port in entry.ports:
                lines.append(
                    f"-A OUTPUT -d {addr}{family.host_mask} -p tcp --dport {port} -j ACCEPT"
                )

    for entry in cidrs:
        cidr_family = _cidr_family(entry.cidr)
        if cidr_family is None:
            if family is Family.IPV4:
                logger.warning("Skipping invalid CIDR %r", entry.cidr)
            continue
        if cidr_family is not family:
            continue
        if not entry.ports:
            lines.append(f"-A OUTPUT -d {entry.cidr} -j ACCEPT")
        else:
            for port in entry.ports:
                lines.append(f"-A OUTPUT -d {entry.cidr} -p tcp --dport {port} -j ACCEPT")

    lines.append(f"-A OUTPUT -j REJECT --reject-with {family.reject_with}")
    lines.append("COMMIT")
    return "\n".join(lines) + "\n"


def render_rule_sets(result: ResolveResult) -> tuple[str, str]:
    """Return the (IPv4, IPv6) rule-sets for a resolution result."""
    return (
        render_rules(result.domains, result.cidrs, Family.IPV4),
        render_rules(result.domains, result.cidrs, Family.IPV6),
    )


def generate_firewall_rules(
    config: SandboxConfig,
    *,
    default_ports: Sequence[int] = DEFAULT_DOMAIN_PORTS,
) -> tuple[str, str]:
    """Resolve and render in one blocking call (for scripts and debugging)."""
    result = asyncio.run(
        resolve_entries(config.firewall.allow, default_ports=default_ports)
    )
    return render_rule_sets(result)


def firewall_config_digest(entries: Sequence[FirewallEntry]) -> bytes:
    """Digest of the allowlist as configured (names, CIDRs, ports), not as resolved.

    Lets the skip check run without touching the network.
    """
    h = hashlib.sha256()
    for entry in entries:
        ports = ",".join(str(p) for p in entry.ports)
        h.update(f"{entry.domain}\0{entry.cidr}\0{ports}\n".encode())
    return h.digest()
