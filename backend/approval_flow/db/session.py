"""Sync engine, session factory and transaction helper.

The workflow engine runs every decision as one short transaction on a sync
Session; FastAPI executes the sync endpoints in its worker threadpool.
"""
import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from approval_flow.core.config import settings
from approval_flow.services.errors import PersistenceError

logger = logging.getLogger(__name__)


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine for ``url``.

    SQLite does not implement ``SELECT ... FOR UPDATE``; instead every
    transaction is opened with ``BEGIN IMMEDIATE`` so writers are serialized
    from their first statement, which gives decision transactions the same
    exclusivity the row lock gives them on PostgreSQL.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args["isolation_level"] = None
        engine = create_engine(url, connect_args=connect_args, **kwargs)
        enable_sqlite_immediate_transactions(engine)
        return engine

    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_size", 10)
    kwargs.setdefault("max_overflow", 20)
    return create_engine(url, **kwargs)


def enable_sqlite_immediate_transactions(engine: Engine) -> None:
    """Take over pysqlite transaction handling and begin with BEGIN IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit the enclosed work, or roll all of it back.

    Workflow errors propagate unchanged after the rollback; storage failures
    are re-raised as PersistenceError.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Transaction rolled back after storage error: %s", exc)
        raise PersistenceError("The workflow change could not be saved.") from exc
    except Exception:
        db.rollback()
        raise
