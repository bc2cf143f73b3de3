from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

__all__ = [
    "BuildRecord",
    "BuildState",
    "TERMINAL_STATES",
]


class BuildState(str, enum.Enum):
    """Lifecycle states of a build queue entry."""

    QUEUED = "QUEUED"
    BUILDING = "BUILDING"
    SUCCESS = "SUCCESS"
    RETRYING = "RETRYING"
    FAILURE = "FAILURE"


TERMINAL_STATES = frozenset({BuildState.SUCCESS, BuildState.FAILURE})


@dataclass(slots=True)
class BuildRecord:
    """Detached snapshot of one ``build_queue`` row."""

    id: UUID
    repo_url: str
    full_name: str
    commit: str
    endpoint: str | None = None
    state: BuildState = BuildState.QUEUED
    attempts: int = 0
    is_successful: bool = False
    message: str | None = None
    last_attempt_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
