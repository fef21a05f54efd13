"""
Module: dca_kernel.db.engine
Responsibility: SQLAlchemy engine and session-factory construction, and the
    transactional scope helper.
Architecture position: Kernel > DB.  May import from db/base.py only.

Invariants enforced:
    - No module-level engine: callers build the engine and session factory
      once per process and inject the factory into the stores that need it.
    - session_scope() commits on success and rolls back on any exception.

Failure modes:
    - OperationalError propagates from the driver when the database is
      unreachable; the stores translate it where they need to.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from dca_kernel.db.base import Base
from dca_kernel.logging_config import get_logger

logger = get_logger("db.engine")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Build an engine for ``database_url``.

    In-memory SQLite URLs get a single shared connection (StaticPool) so
    that every session of the process sees the same database.
    """
    in_memory = database_url == "sqlite://" or (
        database_url.startswith("sqlite") and ":memory:" in database_url
    )
    if in_memory:
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    elif database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_recycle=pool_recycle,
        )

    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "echo": echo},
    )
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    """Create every table registered on ``Base.metadata``.

    Kernel models are always registered; other packages must import
    their model modules (e.g. ``dca_batch.models``) before calling.
    """
    import dca_kernel.models  # noqa: F401

    Base.metadata.create_all(engine)


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Usage:
        with session_scope(factory) as session:
            session.add(entity)
            # Commits on successful exit, rolls back on exception
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()
