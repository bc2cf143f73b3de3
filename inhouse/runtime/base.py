from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol, Sequence

__all__ = ["ContainerRuntime", "InstanceSpec"]


@dataclass(slots=True, frozen=True)
class InstanceSpec:
    """Everything needed to start one container instance."""

    name: str
    image: str
    environment: Mapping[str, str] = field(default_factory=dict)
    labels: Mapping[str, str] = field(default_factory=dict)
    networks: tuple[str, ...] = ()
    dns: tuple[str, ...] = ()
    hostname: str | None = None
    links: tuple[tuple[str, str], ...] = ()


class ContainerRuntime(Protocol):
    """Protocol implemented by container runtimes used for builds and rollouts."""

    def build_image(self, repo_url: str, image_name: str) -> str:
        ...

    def start_instance(self, spec: InstanceSpec) -> str:
        ...

    def list_instances(self, tag: str) -> list[str]:
        ...

    def is_running(self, name: str) -> bool:
        ...

    def kill_instances(self, container_ids: Sequence[str]) -> list[str]:
        ...

    def inspect_links(self, container_id: str) -> list[str]:
        ...
