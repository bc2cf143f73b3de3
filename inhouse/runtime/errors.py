"""Docker error wrappers.

Library exceptions are converted into ``ContainerRuntimeError`` so callers
only ever handle one hierarchy, and so the string form never leaks
credentials embedded in repository URLs.
"""

from __future__ import annotations

from typing import Sequence

from docker.errors import DockerException

from inhouse.naming import sanitize_value

__all__ = [
    "ContainerRuntimeError",
    "ImageBuildError",
    "wrap_docker_error",
]


class ContainerRuntimeError(RuntimeError):
    """Raised when a container runtime operation fails.

    The error optionally captures the operation and its textual output for
    debugging, while the string representation is safe for logs.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Sequence[str] | None = None,
        status_code: int | None = None,
        output: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = tuple(operation) if operation else None
        self.status_code = status_code
        self.output = output


class ImageBuildError(ContainerRuntimeError):
    """Raised when ``docker build`` does not produce an image."""


def wrap_docker_error(
    exc: DockerException,
    context: str,
    *,
    operation: Sequence[str] | None = None,
    error_cls: type[ContainerRuntimeError] = ContainerRuntimeError,
    output: str | None = None,
) -> ContainerRuntimeError:
    """Convert a docker SDK failure into a sanitized runtime error."""

    parts = tuple(sanitize_value(str(part)) for part in operation or ())
    suffix = f": {' '.join(parts)}" if parts else ""
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    detail = sanitize_value(str(getattr(exc, "explanation", None) or exc))
    message = f"{context}{suffix} ({detail})"
    return error_cls(
        message,
        operation=parts or None,
        status_code=status if isinstance(status, int) else None,
        output=output,
    )
