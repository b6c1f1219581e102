"""Database bootstrap helpers for the local encrypted store."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from yappypay.common.config import settings


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def make_engine(dsn: str) -> Engine:
    """Build an engine; in-memory SQLite shares one connection across sessions."""

    if dsn in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(dsn, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if dsn.startswith("sqlite"):
        return create_engine(dsn, connect_args={"check_same_thread": False})
    return create_engine(dsn, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    # `expire_on_commit=False` keeps ORM objects readable after commit.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create the storage tables if they do not exist yet."""

    # Models register themselves on Base.metadata at import.
    import yappypay.services.storage.models  # noqa: F401

    Base.metadata.create_all(engine)


# Single SQLAlchemy engine per process.
engine = make_engine(settings.storage_dsn)
SessionLocal = make_session_factory(engine)
