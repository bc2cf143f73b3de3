"""Network wiring for new instances.

Two mutually exclusive strategies, selected by configuration:

- static: ``SERVICE_NET`` / ``SERVICE_DNS`` are declared; every comma-separated
  entry becomes a network attachment or DNS server, in declaration order.
- peer-link: neither is declared; each peer host (the queue store host and the
  sitewatcher host) is wired through a legacy docker link copied from the
  builder's own container links.

In both strategies a hostname equal to the build endpoint is set unless a DNS
override is declared, so the instance is addressable without a DNS server.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from loguru import logger

from inhouse.config import Settings, get_settings
from inhouse.runtime.base import ContainerRuntime

log = logger.bind(module="rollout.wiring")

__all__ = [
    "LinkCache",
    "NetworkWiringResolver",
    "WiringPlan",
    "match_link",
]

WiringStrategy = Literal["static", "peer-link"]


@dataclass(slots=True, frozen=True)
class WiringPlan:
    """Resolved wiring for one instance."""

    strategy: WiringStrategy
    networks: tuple[str, ...] = ()
    dns: tuple[str, ...] = ()
    hostname: str | None = None
    links: tuple[tuple[str, str], ...] = ()

    def as_args(self) -> list[str]:
        """Render the plan as ``docker run`` style arguments (for logs and audits)."""
        args: list[str] = []
        if self.hostname:
            args.append(f"--hostname={self.hostname}")
        args.extend(f"--net={network}" for network in self.networks)
        args.extend(f"--dns={server}" for server in self.dns)
        args.extend(f"--link={name}:{alias}" for name, alias in self.links)
        return args


def match_link(links: tuple[str, ...] | list[str], hostname: str) -> tuple[str, str] | None:
    """Find the link whose alias path ends with ``hostname``.

    Docker reports links as ``/<target>:/<self>/<alias>``; the match is
    rewritten into a ``(target, alias)`` pair usable as a ``--link`` value.
    """

    wanted = (hostname or "").strip()
    if not wanted:
        return None
    for raw in links:
        target, sep, alias_path = str(raw).partition(":")
        if not sep:
            continue
        if alias_path != wanted and not alias_path.endswith(f"/{wanted}"):
            continue
        name = target.strip("/")
        alias = alias_path.rsplit("/", 1)[-1]
        if name and alias:
            return name, alias
    return None


class LinkCache:
    """Lazily loaded links of the builder's own container.

    Loaded with a single inspect call and kept until ``refresh`` or
    ``invalidate`` is called.
    """

    def __init__(self, runtime: ContainerRuntime, container_id: str | None) -> None:
        self._runtime = runtime
        self.container_id = (container_id or "").strip() or None
        self._links: tuple[str, ...] | None = None
        self.loads = 0

    @property
    def loaded(self) -> bool:
        return self._links is not None

    def links(self, *, refresh: bool = False) -> tuple[str, ...]:
        if self.container_id is None:
            return ()
        if refresh or self._links is None:
            self._links = tuple(self._runtime.inspect_links(self.container_id))
            self.loads += 1
            log.debug(
                "Loaded {} link(s) for container {} (load #{})",
                len(self._links),
                self.container_id,
                self.loads,
            )
        return self._links

    def refresh(self) -> tuple[str, ...]:
        return self.links(refresh=True)

    def invalidate(self) -> None:
        self._links = None


class NetworkWiringResolver:
    """Compute the wiring arguments for a new instance."""

    def __init__(self, *, settings: Settings | None = None, link_cache: LinkCache) -> None:
        self.settings = settings or get_settings()
        self.link_cache = link_cache

    @property
    def strategy(self) -> WiringStrategy:
        return "static" if self.settings.uses_static_wiring else "peer-link"

    def resolve(self, endpoint: str | None, *, refresh_links: bool = False) -> WiringPlan:
        if self.strategy == "static":
            return self._resolve_static(endpoint)
        return self._resolve_peer_links(endpoint, refresh_links=refresh_links)

    def peer_hosts(self) -> list[str]:
        hosts: list[str] = []
        for host in (self.settings.db_host, self.settings.sitewatcher_host):
            cleaned = (host or "").strip()
            if cleaned and cleaned not in hosts:
                hosts.append(cleaned)
        return hosts

    def _hostname(self, endpoint: str | None) -> str | None:
        if self.settings.service_dns_servers:
            return None
        return (endpoint or "").strip() or None

    def _resolve_static(self, endpoint: str | None) -> WiringPlan:
        return WiringPlan(
            strategy="static",
            networks=tuple(self.settings.service_networks),
            dns=tuple(self.settings.service_dns_servers),
            hostname=self._hostname(endpoint),
        )

    def _resolve_peer_links(self, endpoint: str | None, *, refresh_links: bool) -> WiringPlan:
        was_loaded = self.link_cache.loaded
        links = self.link_cache.links(refresh=refresh_links)
        fresh = refresh_links or not was_loaded

        resolved: list[tuple[str, str]] = []
        for host in self.peer_hosts():
            match = match_link(links, host)
            if match is None and not fresh and self.link_cache.container_id:
                # A cached miss may mean the peer was recreated; look once more.
                links = self.link_cache.refresh()
                fresh = True
                match = match_link(links, host)
            if match is None:
                log.debug("No link found for peer host {}; skipping", host)
                continue
            if match not in resolved:
                resolved.append(match)

        return WiringPlan(
            strategy="peer-link",
            hostname=self._hostname(endpoint),
            links=tuple(resolved),
        )
