from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inhouse.config import Settings, get_settings
from inhouse.core.records import BuildRecord, BuildState
from inhouse.db.base import session_scope
from inhouse.db.models import BuildQueueEntry
from inhouse.naming import CLEARED_MESSAGE

log = logger.bind(module="queue.store")

__all__ = [
    "BuildQueueStore",
    "QueueFetchError",
    "QueueStoreError",
]

SessionFactory = Callable[[], AbstractContextManager[Session]]


class QueueStoreError(RuntimeError):
    """Raised when the build queue cannot be read or written."""


class QueueFetchError(QueueStoreError):
    """Raised when the next build cannot be selected; the builder cannot continue."""


class BuildQueueStore:
    """Persistence adapter for the build queue."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_scope = session_factory or session_scope

    def fetch_next(self) -> BuildRecord | None:
        """Return the oldest record that is unsuccessful and has attempts left."""

        max_attempts = max(1, int(self.settings.builder_max_attempts))
        try:
            with self._session_scope() as session:
                stmt = (
                    select(BuildQueueEntry)
                    .where(
                        BuildQueueEntry.is_successful.is_(False),
                        BuildQueueEntry.attempts < max_attempts,
                    )
                    .order_by(BuildQueueEntry.created_at.asc())
                    .limit(1)
                )
                entry = session.execute(stmt).scalar_one_or_none()
                return entry.to_record() if entry else None
        except SQLAlchemyError as exc:
            raise QueueFetchError(f"Failed to fetch the next build: {exc}") from exc

    def get(self, build_id: UUID) -> BuildRecord | None:
        try:
            with self._session_scope() as session:
                entry = session.get(BuildQueueEntry, build_id)
                return entry.to_record() if entry else None
        except SQLAlchemyError as exc:
            raise QueueStoreError(f"Failed to load build {build_id}: {exc}") from exc

    def enqueue(
        self,
        *,
        repo_url: str,
        full_name: str,
        commit: str,
        endpoint: str | None = None,
        created_at: datetime | None = None,
    ) -> BuildRecord:
        """Insert a new ``QUEUED`` record and return it."""

        entry = BuildQueueEntry(
            repo_url=repo_url,
            full_name=full_name,
            commit=commit,
            endpoint=endpoint or None,
            state=BuildState.QUEUED,
            attempts=0,
            is_successful=False,
            created_at=created_at or datetime.now(timezone.utc),
        )
        try:
            with self._session_scope() as session:
                session.add(entry)
                session.flush()
                record = entry.to_record()
        except SQLAlchemyError as exc:
            raise QueueStoreError(f"Failed to enqueue build for {full_name}: {exc}") from exc
        log.info("Enqueued build {} for {}@{}", record.id, full_name, commit)
        return record

    def save(self, record: BuildRecord) -> BuildRecord:
        """Persist a record.

        A successful record also clears its duplicates in the same transaction,
        so either both writes land or neither does.
        """

        try:
            with self._session_scope() as session:
                if record.is_successful:
                    cleared = self._clear_duplicates(
                        session,
                        repo_url=record.repo_url,
                        commit=record.commit,
                        exclude_id=record.id,
                        success_at=record.last_attempt_at or datetime.now(timezone.utc),
                    )
                    if cleared:
                        log.info(
                            "Cleared {} duplicate build(s) of {}@{}",
                            cleared,
                            record.full_name,
                            record.commit,
                        )
                entry = session.get(BuildQueueEntry, record.id)
                if entry is None:
                    raise QueueStoreError(f"Build {record.id} disappeared from the queue.")
                entry.apply(record)
        except SQLAlchemyError as exc:
            raise QueueStoreError(f"Failed to save build {record.id}: {exc}") from exc
        return record

    def clear_duplicates(
        self,
        repo_url: str,
        commit: str,
        exclude_id: UUID,
        success_at: datetime,
    ) -> int:
        """Mark every other open record for ``(repo_url, commit)`` as succeeded."""

        try:
            with self._session_scope() as session:
                return self._clear_duplicates(
                    session,
                    repo_url=repo_url,
                    commit=commit,
                    exclude_id=exclude_id,
                    success_at=success_at,
                )
        except SQLAlchemyError as exc:
            raise QueueStoreError(
                f"Failed to clear duplicates of {repo_url}@{commit}: {exc}",
            ) from exc

    @staticmethod
    def _clear_duplicates(
        session: Session,
        *,
        repo_url: str,
        commit: str,
        exclude_id: UUID,
        success_at: datetime,
    ) -> int:
        stmt = (
            update(BuildQueueEntry)
            .where(
                BuildQueueEntry.repo_url == repo_url,
                BuildQueueEntry.commit == commit,
                BuildQueueEntry.is_successful.is_(False),
                BuildQueueEntry.state != BuildState.FAILURE,
                BuildQueueEntry.id != exclude_id,
            )
            .values(
                is_successful=True,
                state=BuildState.SUCCESS,
                message=CLEARED_MESSAGE,
                last_attempt_at=success_at,
            )
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)
        return int(result.rowcount or 0)
