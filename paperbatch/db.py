"""SQLAlchemy engine and session factory."""

import os
from collections.abc import Generator
from datetime import UTC, datetime

from sqlalchemy import ARRAY, JSON, Engine, Float, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    pass


# Postgres arrays; JSON lists on SQLite so the models work against an in-memory database.
TextArray = ARRAY(Text).with_variant(JSON(), "sqlite")
FloatArray = ARRAY(Float).with_variant(JSON(), "sqlite")


def utcnow() -> datetime:
    """Current time as naive UTC, the form every timestamp column stores."""
    return datetime.now(tz=UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL environment variable is not set")
    return url


def make_engine(database_url: str | None = None) -> Engine:
    url = database_url or _get_database_url()
    return create_engine(url)


# Module-level singletons, created lazily on first access via get_session_factory().
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _get_engine() -> Engine:
    global _engine, _session_factory
    if _engine is None:
        _engine = make_engine()
        _session_factory = sessionmaker(bind=_engine, autocommit=False, autoflush=False)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    _get_engine()
    assert _session_factory is not None
    return _session_factory


def get_session() -> Generator[Session, None, None]:
    """Yield a database session and close it when the request is done."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create batch_jobs (and arxivPapersData for local setups) if absent."""
    # Import models so Base.metadata includes them before create_all().
    import paperbatch.models.batch_job  # noqa: F401
    import paperbatch.models.paper  # noqa: F401

    Base.metadata.create_all(bind=engine or _get_engine())
