"""Queue processor that builds images and rolls out their containers."""

from __future__ import annotations

import argparse
import signal
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from loguru import logger
from rich.console import Console

from inhouse.config import Settings, get_settings
from inhouse.core.records import BuildRecord, BuildState
from inhouse.core.state import (
    InvalidTransition,
    mark_building,
    record_failure,
    record_success,
    retire,
)
from inhouse.naming import image_name, sanitize_value
from inhouse.queue.store import BuildQueueStore, QueueFetchError
from inhouse.rollout.manager import RolloutManager, RolloutResult
from inhouse.runtime.base import ContainerRuntime
from inhouse.runtime.errors import ContainerRuntimeError

console = Console()
log = logger.bind(module="builder.main")

__all__ = ["BuildQueueProcessor", "TickOutcome", "main"]


@dataclass(slots=True, frozen=True)
class TickOutcome:
    """What a single processing cycle did."""

    record: BuildRecord | None = None
    rollout: RolloutResult | None = None
    error: str | None = None

    @property
    def idle(self) -> bool:
        return self.record is None


class BuildQueueProcessor:
    """Drain the build queue one record at a time."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        store: BuildQueueStore | None = None,
        runtime: ContainerRuntime | None = None,
        rollout: RolloutManager | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.console = console
        self.store = store or BuildQueueStore(settings=self.settings)
        if runtime is None:
            from inhouse.runtime.docker_runtime import DockerRuntime

            runtime = DockerRuntime(settings=self.settings)
        self.runtime = runtime
        self.rollout_manager = rollout or RolloutManager(
            runtime=self.runtime,
            settings=self.settings,
            sleep=sleep,
        )
        self._sleep = sleep
        self._stop_requested = False

    # Public API ------------------------------------------------------------

    def run_forever(self) -> None:
        """Process the queue until stopped; queue fetch failures propagate."""

        delay = max(0.0, float(self.settings.builder_idle_delay_seconds))
        self.console.log(
            "[bold green]Builder online[/] idle_delay={}s max_attempts={} wiring={}".format(
                delay,
                self.settings.builder_max_attempts,
                self.rollout_manager.resolver.strategy,
            ),
        )
        self._install_signal_handlers()
        while not self._stop_requested:
            self.tick()
            if self._stop_requested:
                break
            self._sleep(delay)
        self.console.log("[bold yellow]Builder stopped[/]")

    def tick(self) -> TickOutcome:
        """Fetch and fully process at most one build."""

        record = self.store.fetch_next()
        if record is None:
            return TickOutcome()
        try:
            return self.process(record)
        except Exception as exc:
            self.console.log(
                f"[bold red]Build cycle failed[/] build={record.full_name} reason={exc}",
            )
            log.exception("Processing build {} failed: {}", record.id, exc)
            return TickOutcome(record=record, error=str(exc))

    def process(self, record: BuildRecord) -> TickOutcome:
        """Build one record, persist the outcome and roll out on success."""

        try:
            building = mark_building(record)
        except InvalidTransition as exc:
            return self._retire(record, exc)
        record = self.store.save(building)
        self.console.log(f"[cyan]Building[/] {record.full_name}@{record.commit}")
        log.info(
            "{} building (attempt {} of {}) from {}",
            record.full_name,
            record.attempts + 1,
            self.settings.builder_max_attempts,
            sanitize_value(record.repo_url),
        )

        try:
            output = self.runtime.build_image(record.repo_url, image_name(record.full_name))
        except Exception as exc:
            output = exc.output if isinstance(exc, ContainerRuntimeError) else None
            record = self.store.save(
                record_failure(
                    record,
                    self._excerpt(output, fallback=str(exc) or type(exc).__name__),
                    max_attempts=self.settings.builder_max_attempts,
                ),
            )
            self._log_failure(record, exc)
            return TickOutcome(record=record, error=str(exc))

        record = self.store.save(record_success(record, self._excerpt(output)))
        self.console.log(f"[bold green]Build succeeded[/] {record.full_name}")
        log.info("{} succeeded!", record.full_name)

        result = self.rollout_manager.rollout(record)
        return TickOutcome(record=record, rollout=result)

    def stop(self) -> None:
        """Signal the loop to exit after the current cycle."""

        if self._stop_requested:
            return
        self._stop_requested = True

    # Internal helpers ------------------------------------------------------

    def _excerpt(self, text: str | None, *, fallback: str = "") -> str:
        value = text if text else fallback
        limit = max(0, int(self.settings.builder_message_max_chars))
        if limit and len(value) > limit:
            return value[-limit:]
        return value

    def _retire(self, record: BuildRecord, exc: InvalidTransition) -> TickOutcome:
        retired = self.store.save(
            retire(record, max_attempts=self.settings.builder_max_attempts),
        )
        self.console.log(
            f"[yellow]Skipping terminal build[/] {record.full_name} state={record.state.value}",
        )
        log.warning(
            "Build {} was selected in terminal state {}; retiring it: {}",
            record.id,
            record.state.value,
            exc,
        )
        return TickOutcome(record=retired, error=str(exc))

    def _log_failure(self, record: BuildRecord, exc: Exception) -> None:
        if record.state == BuildState.FAILURE:
            self.console.log(
                f"[bold red]Build failed permanently[/] {record.full_name} "
                f"attempts={record.attempts}",
            )
            log.error("{} failed! Giving up after {} attempts: {}", record.full_name, record.attempts, exc)
            return
        self.console.log(
            f"[yellow]Build failed; will retry[/] {record.full_name} attempts={record.attempts}",
        )
        log.error("{} failed! ({})", record.full_name, exc)

    def _install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._handle_signal)
        terminate = getattr(signal, "SIGTERM", None)
        if terminate is not None:
            signal.signal(terminate, self._handle_signal)

    def _handle_signal(self, signum: int, _frame: Any) -> None:
        self.console.log(f"[yellow]Received signal[/] signum={signum}; shutting down.")
        log.info("Builder received signal {}; stopping", signum)
        self.stop()


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = argparse.ArgumentParser(description="Run the inhouse build queue processor.")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process a single queue cycle and exit.",
    )
    parser.add_argument(
        "--ensure-schema",
        action="store_true",
        help="Create the build queue table before starting.",
    )
    args = parser.parse_args(argv)

    if args.ensure_schema:
        from inhouse.db.base import ensure_database_schema

        ensure_database_schema()

    processor = BuildQueueProcessor()
    try:
        if args.once:
            processor.tick()
            return 0
        processor.run_forever()
    except QueueFetchError as exc:
        console.log(f"[bold red]FATAL. Shutting down...[/] reason={exc}")
        log.critical("Cannot read the build queue; shutting down: {}", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
