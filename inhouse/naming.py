"""Naming helpers derived from a build's ``full_name``.

A build's ``full_name`` is the git ``<owner>/<repo>`` pair, e.g.
``Softhouse/laughing-batman``. Every docker-facing identifier is derived from
it so that images, container tags and instance names stay in lock-step:

- image name: the lower-cased ``full_name`` (``softhouse/laughing-batman``)
- container tag: the image name with ``/`` replaced by ``_``, since docker
  uses ``/`` as a namespace separator and rejects it in container names
- instance name: ``<tag>_<epoch millis>``, unique per rollout
"""

from __future__ import annotations

import time
from urllib.parse import urlsplit, urlunsplit

from sqlalchemy.engine.url import make_url

# Label keys attached to every started instance. Listing by label replaces
# grepping ``docker ps`` output.
TAG_LABEL: str = "inhouse.tag"
BUILD_LABEL: str = "inhouse.build"
COMMIT_LABEL: str = "inhouse.commit"

CLEARED_MESSAGE: str = "cleared by other build with same commit"


def _clean_full_name(full_name: str | None) -> str:
    text = (full_name or "").strip()
    if not text:
        raise ValueError("full_name must be provided.")
    return text


def image_name(full_name: str | None) -> str:
    """Return the image name used for ``docker build -t``."""
    return _clean_full_name(full_name).lower()


def container_tag(full_name: str | None) -> str:
    """Return the grep-able tag shared by all instances of a build."""
    return image_name(full_name).replace("/", "_")


def instance_name(full_name: str | None, *, now_ms: int | None = None) -> str:
    """Return a unique container name for a new instance."""
    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
    return f"{container_tag(full_name)}_{stamp}"


def virtual_hosts(endpoint: str | None) -> str:
    """Return the ``KATALOG_VHOSTS`` value for an endpoint."""
    cleaned = (endpoint or "").strip()
    return f"default/{cleaned}" if cleaned else "default"


def sanitize_value(value: str) -> str:
    """Mask credential-bearing URLs (best-effort)."""

    parsed = urlsplit(value)
    if parsed.username or parsed.password:
        host = parsed.hostname or ""
        if parsed.port:
            host = f"{host}:{parsed.port}"
        netloc = f"***@{host}"
        return urlunsplit((parsed.scheme, netloc, parsed.path, parsed.query, parsed.fragment))
    return value


def sanitize_dsn(raw_dsn: str) -> str:
    """Hide the password of a SQLAlchemy DSN when logging."""
    url = make_url(raw_dsn)
    if url.password:
        url = url.set(password="***")
    return url.render_as_string(hide_password=False)


__all__ = [
    "BUILD_LABEL",
    "CLEARED_MESSAGE",
    "COMMIT_LABEL",
    "TAG_LABEL",
    "container_tag",
    "image_name",
    "instance_name",
    "sanitize_dsn",
    "sanitize_value",
    "virtual_hosts",
]
