"""Build attempt bookkeeping.

Transitions are pure: each helper returns an updated copy of the record and
leaves persistence to the queue store. The scheduler never consults ``state``
when selecting work (it selects on ``is_successful`` and ``attempts``), so
``RETRYING`` is informational and records in it are picked up again exactly
like ``QUEUED`` ones.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from inhouse.core.records import BuildRecord, BuildState

__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "InvalidTransition",
    "is_eligible",
    "mark_building",
    "record_failure",
    "record_success",
    "retire",
]

DEFAULT_MAX_ATTEMPTS: int = 5


class InvalidTransition(ValueError):
    """Raised when a transition is requested for a terminal record."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _require_open(record: BuildRecord, action: str) -> None:
    if record.is_terminal:
        raise InvalidTransition(
            f"Build {record.id} is {record.state.value} and cannot be {action}.",
        )


def is_eligible(record: BuildRecord, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool:
    """Mirror of the queue selection predicate."""
    return not record.is_successful and record.attempts < max_attempts


def mark_building(record: BuildRecord) -> BuildRecord:
    _require_open(record, "built")
    return replace(record, state=BuildState.BUILDING)


def record_success(
    record: BuildRecord,
    output: str,
    *,
    now: datetime | None = None,
) -> BuildRecord:
    """Count a successful attempt and make the record terminal."""

    _require_open(record, "marked successful")
    return replace(
        record,
        attempts=record.attempts + 1,
        last_attempt_at=now or _utc_now(),
        is_successful=True,
        state=BuildState.SUCCESS,
        message=output,
    )


def record_failure(
    record: BuildRecord,
    error: str,
    *,
    now: datetime | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> BuildRecord:
    """Count a failed attempt; the last allowed attempt makes it terminal."""

    _require_open(record, "marked failed")
    attempts = record.attempts + 1
    state = BuildState.FAILURE if attempts >= max_attempts else BuildState.RETRYING
    return replace(
        record,
        attempts=attempts,
        last_attempt_at=now or _utc_now(),
        message=error,
        state=state,
    )


def retire(record: BuildRecord, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> BuildRecord:
    """Take a terminal record back out of the selection predicate.

    A ``FAILURE`` record becomes selectable again when the attempt limit is
    raised; its attempts are bumped to the limit instead of reopening it.
    """

    if not record.is_terminal:
        raise InvalidTransition(
            f"Build {record.id} is {record.state.value} and cannot be retired.",
        )
    if record.state == BuildState.SUCCESS:
        return replace(record, is_successful=True)
    return replace(record, attempts=max(record.attempts, max_attempts))
