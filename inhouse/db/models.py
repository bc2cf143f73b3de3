from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from inhouse.core.records import BuildRecord, BuildState
from inhouse.db.base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BuildQueueEntry(Base):
    """One requested image build and its outcome history."""

    __tablename__ = "build_queue"
    __table_args__ = (
        Index("ix_build_queue_eligible", "is_successful", "attempts", "created_at"),
        Index("ix_build_queue_repo_commit", "repo_url", "commit"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    repo_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    commit: Mapped[str] = mapped_column(String(255), nullable=False)
    endpoint: Mapped[str | None] = mapped_column(String(255))
    state: Mapped[BuildState] = mapped_column(
        SAEnum(BuildState, name="build_state", native_enum=False, length=16),
        default=BuildState.QUEUED,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_successful: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utc_now,
        nullable=False,
    )

    def to_record(self) -> BuildRecord:
        return BuildRecord(
            id=self.id,
            repo_url=self.repo_url,
            full_name=self.full_name,
            commit=self.commit,
            endpoint=self.endpoint,
            state=self.state,
            attempts=self.attempts,
            is_successful=self.is_successful,
            message=self.message,
            last_attempt_at=self.last_attempt_at,
            created_at=self.created_at,
        )

    def apply(self, record: BuildRecord) -> None:
        """Copy the mutable fields of a record onto this row."""
        self.state = record.state
        self.attempts = record.attempts
        self.is_successful = record.is_successful
        self.message = record.message
        self.last_attempt_at = record.last_attempt_at
        self.endpoint = record.endpoint

    def __repr__(self) -> str:  # pragma: no cover - repr helper
        return f"<BuildQueueEntry full_name={self.full_name!r} state={self.state.value}>"
