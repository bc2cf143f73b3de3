"""Fast environment checks shared by ``script/doctor.py``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url

from inhouse.config import Settings
from inhouse.naming import sanitize_dsn
from inhouse.runtime.base import ContainerRuntime
from inhouse.runtime.errors import ContainerRuntimeError

__all__ = [
    "CheckResult",
    "check_database",
    "check_docker",
    "check_github_secret",
    "check_wiring",
    "run_checks",
]

Status = Literal["ok", "warn", "fail"]


@dataclass(slots=True)
class CheckResult:
    name: str
    status: Status
    details: str


def check_database(settings: Settings, *, timeout_seconds: float = 2.0) -> CheckResult:
    dsn = settings.database_dsn
    safe = sanitize_dsn(dsn)
    connect_args: dict[str, object] = {}
    if make_url(dsn).get_backend_name() == "postgresql":
        # psycopg accepts connect_timeout in whole seconds.
        connect_args["connect_timeout"] = int(max(1, timeout_seconds))
    try:
        engine = create_engine(dsn, pool_pre_ping=True, connect_args=connect_args)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        engine.dispose()
        return CheckResult("database", "ok", f"reachable: {safe}")
    except Exception as exc:
        return CheckResult("database", "fail", f"unreachable: {safe} ({exc})")


def check_docker(runtime: ContainerRuntime) -> CheckResult:
    ping = getattr(runtime, "ping", None)
    if ping is None:
        return CheckResult("docker", "warn", "runtime does not support ping")
    try:
        if ping():
            return CheckResult("docker", "ok", "daemon reachable")
        return CheckResult("docker", "fail", "daemon did not answer ping")
    except ContainerRuntimeError as exc:
        return CheckResult("docker", "fail", str(exc))


def check_wiring(settings: Settings) -> CheckResult:
    if settings.uses_static_wiring:
        return CheckResult(
            "wiring",
            "ok",
            f"static: networks={settings.service_networks} dns={settings.service_dns_servers}",
        )
    if not (settings.builder_container_id or "").strip():
        return CheckResult(
            "wiring",
            "warn",
            "peer-link strategy without BUILDER_CONTAINER_ID; instances start without links",
        )
    return CheckResult(
        "wiring",
        "ok",
        f"peer-link via container {settings.builder_container_id}",
    )


def check_github_secret(settings: Settings) -> CheckResult:
    if (settings.github_secret or "").strip():
        return CheckResult("github_secret", "ok", "configured")
    return CheckResult(
        "github_secret",
        "warn",
        "GITHUB_SECRET is not set; started containers receive an empty secret",
    )


def run_checks(
    settings: Settings,
    runtime: ContainerRuntime,
    *,
    timeout_seconds: float = 2.0,
) -> list[CheckResult]:
    return [
        check_database(settings, timeout_seconds=timeout_seconds),
        check_docker(runtime),
        check_wiring(settings),
        check_github_secret(settings),
    ]
