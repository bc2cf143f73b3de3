"""Container runtime backed by the docker SDK.

Listings and link introspection use structured queries (label filters and
``inspect`` JSON) instead of parsing ``docker ps`` output.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

import docker
from docker.errors import DockerException, NotFound
from loguru import logger

from inhouse.config import Settings, get_settings
from inhouse.naming import TAG_LABEL, sanitize_value
from inhouse.runtime.base import InstanceSpec
from inhouse.runtime.errors import ImageBuildError, wrap_docker_error

log = logger.bind(module="runtime.docker")

__all__ = ["DockerRuntime"]


def _format_build_output(chunks: Iterable[Mapping[str, Any]]) -> tuple[str, str | None]:
    """Join streamed build output; return it with the first error, if any."""

    lines: list[str] = []
    error: str | None = None
    for chunk in chunks:
        stream = chunk.get("stream")
        if stream:
            lines.append(str(stream))
        status = chunk.get("status")
        if status and not stream:
            lines.append(f"{status}\n")
        if "error" in chunk and error is None:
            detail = chunk.get("errorDetail") or {}
            error = str(detail.get("message") or chunk.get("error") or "").strip()
            lines.append(f"{error}\n")
    return "".join(lines), error


class DockerRuntime:
    """Image builds and container lifecycle through the docker daemon."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        client: docker.DockerClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                if self.settings.docker_base_url:
                    self._client = docker.DockerClient(
                        base_url=self.settings.docker_base_url,
                        timeout=self.settings.docker_timeout_seconds,
                    )
                else:
                    self._client = docker.from_env(timeout=self.settings.docker_timeout_seconds)
            except DockerException as exc:
                raise wrap_docker_error(exc, "Docker is not available") from exc
        return self._client

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except DockerException as exc:
            raise wrap_docker_error(exc, "Docker daemon did not answer ping") from exc

    # Images ----------------------------------------------------------------

    def build_image(self, repo_url: str, image_name: str) -> str:
        """Build ``repo_url`` (a git URL or path) and tag it ``image_name``.

        Returns the build output; raises ImageBuildError with the output
        attached when the daemon reports an error.
        """

        operation = ("build", "-t", image_name, repo_url)
        log.info("Building image {} from {}", image_name, sanitize_value(repo_url))
        try:
            chunks = self.client.api.build(
                path=repo_url,
                tag=image_name,
                rm=True,
                forcerm=True,
                decode=True,
            )
            output, error = _format_build_output(chunks)
        except DockerException as exc:
            raise wrap_docker_error(
                exc,
                "Image build failed",
                operation=operation,
                error_cls=ImageBuildError,
            ) from exc
        if error is not None:
            raise ImageBuildError(
                f"Image build failed for {image_name}: {sanitize_value(error)}",
                operation=tuple(sanitize_value(part) for part in operation),
                output=output,
            )
        return output

    # Containers ------------------------------------------------------------

    def start_instance(self, spec: InstanceSpec) -> str:
        """Create, attach and start a detached container; return its id."""

        networks = list(spec.networks)
        primary_network = networks[0] if networks else None
        try:
            container = self.client.containers.create(
                spec.image,
                name=spec.name,
                environment=dict(spec.environment),
                labels=dict(spec.labels),
                hostname=spec.hostname or None,
                dns=list(spec.dns) or None,
                links=dict(spec.links) or None,
                network=primary_network,
            )
            for extra in networks[1:]:
                self.client.networks.get(extra).connect(container)
            container.start()
        except DockerException as exc:
            raise wrap_docker_error(
                exc,
                f"Failed to start instance {spec.name}",
                operation=("run", "-d", "--name", spec.name, spec.image),
            ) from exc
        log.info("Started instance {} ({}) from {}", spec.name, container.id, spec.image)
        return str(container.id)

    def list_instances(self, tag: str) -> list[str]:
        """Return ids of all containers, running or not, carrying ``tag``."""

        try:
            containers = self.client.containers.list(
                all=True,
                filters={"label": f"{TAG_LABEL}={tag}"},
            )
        except DockerException as exc:
            raise wrap_docker_error(exc, f"Failed to list instances for {tag}") from exc
        return [str(container.id) for container in containers if container.id]

    def is_running(self, name: str) -> bool:
        try:
            container = self.client.containers.get(name)
        except NotFound:
            return False
        except DockerException as exc:
            raise wrap_docker_error(exc, f"Failed to inspect instance {name}") from exc
        return getattr(container, "status", None) == "running"

    def kill_instances(self, container_ids: Sequence[str]) -> list[str]:
        """Force-remove the given containers; return the ids actually removed."""

        removed: list[str] = []
        for container_id in [cid for cid in container_ids if cid]:
            try:
                self.client.api.remove_container(container_id, force=True)
            except NotFound:
                log.debug("Instance {} already gone", container_id)
                continue
            except DockerException as exc:
                raise wrap_docker_error(
                    exc,
                    "Failed to remove instance",
                    operation=("rm", "-f", container_id),
                ) from exc
            removed.append(container_id)
        if removed:
            log.info("Removed {} instance(s): {}", len(removed), ", ".join(removed))
        return removed

    def inspect_links(self, container_id: str) -> list[str]:
        """Return ``HostConfig.Links`` of a container, e.g. ``/db:/self/db``."""

        try:
            details = self.client.api.inspect_container(container_id)
        except DockerException as exc:
            raise wrap_docker_error(exc, f"Failed to inspect links of {container_id}") from exc
        host_config = details.get("HostConfig") or {}
        return [str(link) for link in host_config.get("Links") or []]
