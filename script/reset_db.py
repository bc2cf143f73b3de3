"""Dangerous helper to reset the build queue schema.

This project intentionally does not ship migrations. The fastest path is to
drop the queue table and recreate it from the ORM model.

Usage:
    python script/reset_db.py --yes
"""

from __future__ import annotations

import argparse
import sys

from loguru import logger
from rich.console import Console

from inhouse.db.base import Base, engine, safe_dsn

console = Console()
log = logger.bind(module="script.reset_db")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Drop and recreate the build queue table.")
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm that you want to irreversibly drop all queued builds.",
    )
    args = parser.parse_args(argv)

    if not args.yes:
        console.print("[bold red]Refusing to reset DB without --yes[/]")
        console.print("This will drop the build queue and recreate it from the ORM model.")
        return 2

    import inhouse.db.models  # noqa: F401  # pylint: disable=unused-import

    console.print(f"[yellow]Resetting database schema[/] url={safe_dsn}")
    log.warning("Resetting database schema (drop_all + create_all) url={}", safe_dsn)

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    console.print("[bold green]Database schema reset complete[/]")
    log.info("Database schema reset complete")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
