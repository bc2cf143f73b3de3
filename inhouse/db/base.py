from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from loguru import logger
from rich.console import Console
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import DeclarativeBase, Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from inhouse.config import get_settings
from inhouse.naming import sanitize_dsn

console = Console()
log = logger.bind(module="db.base")
settings = get_settings()


def create_db_engine(dsn: str) -> Engine:
    """Create an engine; SQLite URLs share one connection across the process."""

    url = make_url(dsn)
    if url.get_backend_name() == "sqlite":
        return create_engine(
            dsn,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.db_echo,
            future=True,
        )
    return create_engine(
        dsn,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        echo=settings.db_echo,
        future=True,
    )


engine = create_db_engine(settings.database_dsn)

safe_dsn = sanitize_dsn(settings.database_dsn)
console.log(f"[bold cyan]SQLAlchemy engine ready[/] {safe_dsn}")
log.info("SQLAlchemy engine initialised for {}", safe_dsn)

SessionLocal = scoped_session(
    sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,
    ),
)


class Base(DeclarativeBase):
    """Declarative base for ORM models."""

    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a transactional scope for DB operations."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        log.exception("Session rollback triggered")
        raise
    finally:
        SessionLocal.remove()


def ensure_database_schema() -> None:
    """Ensure that the build queue table exists.

    Issues ``CREATE TABLE IF NOT EXISTS`` for all registered metadata; safe to
    call multiple times.
    """

    try:
        import inhouse.db.models  # noqa: F401  # pylint: disable=unused-import

        Base.metadata.create_all(bind=engine)
        console.log(f"[green]Database schema ready[/] url={safe_dsn}")
        log.info("Database schema ensured for {}", safe_dsn)
    except Exception as exc:
        console.log(
            "[bold red]Failed to ensure database schema[/] reason={}".format(exc),
        )
        log.exception("Failed to ensure database schema: {}", exc)
        raise
