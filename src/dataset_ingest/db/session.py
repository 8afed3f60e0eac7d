"""Engine / session helpers and the shared transaction scope."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dataset_ingest.db.schema import Base


def make_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite") and (url in {"sqlite://", "sqlite:///:memory:"}):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)


@contextmanager
def transaction(factory: sessionmaker[Session], session: Session | None = None) -> Iterator[Session]:
    """Yield a session inside one transaction.

    A caller-supplied *session* is joined as-is: no commit, no rollback,
    no close. Otherwise a new session is opened and committed on exit.
    """
    if session is not None:
        yield session
        return
    with factory.begin() as own:
        yield own
