from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from loguru import logger
from rich.console import Console

from inhouse.config import Settings, get_settings
from inhouse.core.records import BuildRecord
from inhouse.naming import (
    BUILD_LABEL,
    COMMIT_LABEL,
    TAG_LABEL,
    container_tag,
    image_name,
    instance_name,
    virtual_hosts,
)
from inhouse.rollout.wiring import LinkCache, NetworkWiringResolver, WiringPlan
from inhouse.runtime.base import ContainerRuntime, InstanceSpec

console = Console()
log = logger.bind(module="rollout.manager")

__all__ = ["RolloutManager", "RolloutResult"]


@dataclass(slots=True, frozen=True)
class RolloutResult:
    """Outcome of one blue/green swap."""

    instance_name: str
    healthy: bool
    superseded: tuple[str, ...]
    removed: tuple[str, ...] = ()
    reclaimed: bool = False


class RolloutManager:
    """Start a new instance for a build and retire the instances it replaces.

    The swap is gated on a passive health window: the new instance must still
    be running once the window elapses, otherwise the previous instances are
    left alone.
    """

    def __init__(
        self,
        *,
        runtime: ContainerRuntime,
        settings: Settings | None = None,
        resolver: NetworkWiringResolver | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.runtime = runtime
        if resolver is None:
            resolver = NetworkWiringResolver(
                settings=self.settings,
                link_cache=LinkCache(runtime, self.settings.builder_container_id),
            )
        self.resolver = resolver
        self.link_cache = resolver.link_cache
        self._sleep = sleep
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    def rollout(self, record: BuildRecord) -> RolloutResult:
        tag = container_tag(record.full_name)
        superseded = tuple(self.runtime.list_instances(tag))

        name = instance_name(record.full_name, now_ms=self._clock_ms())
        wiring = self.resolver.resolve(record.endpoint)
        spec = self.instance_spec(record, name=name, wiring=wiring)
        log.info(
            "Starting {} for {} with wiring {} (superseding {} instance(s))",
            name,
            record.full_name,
            wiring.as_args(),
            len(superseded),
        )
        self.runtime.start_instance(spec)

        window = max(0.0, float(self.settings.rollout_health_window_seconds))
        self._sleep(window)

        if not self.runtime.is_running(name):
            return self._handle_unhealthy(record, name, superseded, window)

        removed = tuple(self.runtime.kill_instances(list(superseded)))
        console.log(
            f"[bold green]Rollout complete[/] build={record.full_name} instance={name} "
            f"removed={len(removed)}",
        )
        log.info("{}. Container: {}, up and running.", record.full_name, name)
        return RolloutResult(
            instance_name=name,
            healthy=True,
            superseded=superseded,
            removed=removed,
        )

    def instance_spec(self, record: BuildRecord, *, name: str, wiring: WiringPlan) -> InstanceSpec:
        endpoint = (record.endpoint or "").strip()
        environment = {
            "GITHUB_SECRET": self.settings.github_secret or "",
            "MONGO_HOST": self.settings.db_host,
            "KATALOG_VHOSTS": virtual_hosts(endpoint),
            "SERVICE_NAME": endpoint,
        }
        labels = {
            TAG_LABEL: container_tag(record.full_name),
            BUILD_LABEL: str(record.id),
            COMMIT_LABEL: record.commit,
        }
        return InstanceSpec(
            name=name,
            image=image_name(record.full_name),
            environment=environment,
            labels=labels,
            networks=wiring.networks,
            dns=wiring.dns,
            hostname=wiring.hostname,
            links=wiring.links,
        )

    def _handle_unhealthy(
        self,
        record: BuildRecord,
        name: str,
        superseded: tuple[str, ...],
        window: float,
    ) -> RolloutResult:
        console.log(
            f"[bold red]Rollout failed[/] build={record.full_name} instance={name} "
            f"kept={len(superseded)}",
        )
        log.error(
            "{}. Container: {}, didn't run for {} seconds",
            record.full_name,
            name,
            window,
        )
        reclaimed = False
        if self.settings.rollout_reclaim_failed_instance:
            reclaimed = bool(self.runtime.kill_instances([name]))
            if reclaimed:
                log.info("Reclaimed dead instance {}", name)
        return RolloutResult(
            instance_name=name,
            healthy=False,
            superseded=superseded,
            reclaimed=reclaimed,
        )
