"""Enqueue a build request.

Usage:
    python script/enqueue_build.py git://github.com/owner/repo owner/repo <commit> [--endpoint api]
"""

from __future__ import annotations

import argparse
import sys

from loguru import logger
from rich.console import Console

from inhouse.naming import sanitize_value
from inhouse.queue.store import BuildQueueStore, QueueStoreError

console = Console()
log = logger.bind(module="script.enqueue_build")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Add a build request to the queue.")
    parser.add_argument("repo_url", help="Git URL or path passed to the image build.")
    parser.add_argument("full_name", help="Repository owner/name, e.g. Softhouse/laughing-batman.")
    parser.add_argument("commit", help="Commit reference the build belongs to.")
    parser.add_argument(
        "--endpoint",
        default=None,
        help="Logical service name used for virtual host and service discovery wiring.",
    )
    args = parser.parse_args(argv)

    try:
        record = BuildQueueStore().enqueue(
            repo_url=args.repo_url,
            full_name=args.full_name,
            commit=args.commit,
            endpoint=args.endpoint,
        )
    except QueueStoreError as exc:
        console.print(f"[bold red]Failed to enqueue build[/] reason={exc}")
        log.error("Failed to enqueue {}: {}", sanitize_value(args.repo_url), exc)
        return 1

    console.print(
        f"[bold green]Build queued[/] id={record.id} {record.full_name}@{record.commit}",
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
