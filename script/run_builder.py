from __future__ import annotations

"""Entry script for running the inhouse build queue processor.

This is a thin wrapper around ``inhouse.builder.main`` that:

- Initialises application settings.
- Configures Loguru logging level based on ``Settings.log_level`` and routes
  standard-library logging (used by the docker SDK and urllib3) through Loguru.
- Delegates CLI parsing and control flow to ``inhouse.builder.main.main``.

Usage:

    python script/run_builder.py                  # continuous loop
    python script/run_builder.py --once           # single cycle then exit
    python script/run_builder.py --ensure-schema  # create the queue table first
"""

import logging
from datetime import datetime
import sys
from pathlib import Path
from typing import Sequence

from loguru import logger
from rich.console import Console

from inhouse.builder.main import main as builder_main
from inhouse.config import Settings, get_settings

console = Console()


class _LoguruInterceptHandler(logging.Handler):
    """Bridge standard-library logging records into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.opt(exception=record.exc_info).log(level, record.getMessage())


def _configure_stdlib_logging(level: str) -> None:
    """Route stdlib logging (including the docker SDK) through Loguru."""

    handler: logging.Handler = _LoguruInterceptHandler()

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in ("docker", "urllib3"):
        library_logger = logging.getLogger(name)
        library_logger.handlers = [handler]
        library_logger.propagate = False
        library_logger.setLevel(level)

    logging.captureWarnings(True)


def _resolve_logs_dir(settings: Settings, role: str) -> Path:
    """Return the log directory for the given role, creating it if needed."""

    if settings.logs_base_dir:
        base_dir = Path(settings.logs_base_dir).expanduser()
    else:
        base_dir = Path.cwd()

    log_dir = base_dir / "logs" / role
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def _configure_logging() -> None:
    """Configure Loguru and bridge stdlib logging using application settings."""

    settings = get_settings()
    level = (settings.log_level or "INFO").upper()

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        backtrace=False,
        diagnose=False,
    )

    logs_dir = _resolve_logs_dir(settings, role="builder")
    log_timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_file = logs_dir / f"builder-{log_timestamp}.log"
    logger.add(
        log_file,
        level=level,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )

    _configure_stdlib_logging(level)

    logger.bind(module="script.run_builder").info(
        "Builder logging initialised at level {} file={}", level, log_file
    )
    console.log("[green]Builder logs[/] -> {}".format(log_file))


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint for the builder wrapper."""

    _configure_logging()
    return int(builder_main(argv))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
