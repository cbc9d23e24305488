from contextlib import contextmanager
from typing import Iterator

import structlog
from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from notes_backend.config import Settings
from notes_backend.errors import PersistenceError

logger = structlog.get_logger(__name__)

# Execution option consulted by the SQLite "begin" hook.
WRITE_LOCK_OPTION = "notes_write_lock"

_FLUSHED_KEY = "notes_flushed"


def _configure_sqlite(engine: Engine) -> None:
    # pysqlite's own transaction handling never emits BEGIN before SELECT and
    # cannot take a write lock up front; SQLAlchemy emits BEGIN itself instead.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


# PUBLIC_INTERFACE
def create_db_engine(settings: Settings) -> Engine:
    """
    Create the SQLAlchemy engine for settings.database_url.
    Lock waits are bounded by settings.db_timeout.
    """
    url = make_url(settings.database_url)
    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False, "timeout": settings.db_timeout},
        )
        _configure_sqlite(engine)
        return engine

    connect_args = {}
    if url.get_backend_name() == "postgresql":
        timeout_ms = int(settings.db_timeout * 1000)
        connect_args["options"] = f"-c lock_timeout={timeout_ms} -c statement_timeout={timeout_ms}"
    return create_engine(url, echo=False, future=True, pool_pre_ping=True, connect_args=connect_args)


# PUBLIC_INTERFACE
def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory; loaded objects stay readable after commit."""
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

    # Flushed writes leave session.new/dirty empty; remember them until the transaction ends.
    @event.listens_for(factory, "after_flush")
    def _on_flush(session, flush_context):
        session.info[_FLUSHED_KEY] = True

    @event.listens_for(factory, "after_transaction_end")
    def _on_transaction_end(session, session_transaction):
        if session_transaction.parent is None:
            session.info.pop(_FLUSHED_KEY, None)

    return factory


# PUBLIC_INTERFACE
def get_db(request: Request) -> Iterator[Session]:
    """
    Yields a SQLAlchemy session for use in dependency injection.
    Closes the session after use.
    Example usage (FastAPI):
        def endpoint(db: Session = Depends(get_db)):
            ...
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def _begin_locked(db: Session) -> None:
    # The lock is taken by BEGIN itself, so it cannot join a transaction
    # that is already open.
    if db.in_transaction():
        if db.new or db.dirty or db.deleted or db.info.get(_FLUSHED_KEY):
            raise RuntimeError("Cannot take a write lock with pending changes in the session")
        # Only reads happened (a query, a refresh of an expired object); drop them.
        db.rollback()

    backend = db.get_bind().dialect.name
    if backend == "sqlite":
        db.connection(execution_options={WRITE_LOCK_OPTION: True})
    elif backend == "postgresql":
        db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
    else:
        db.connection()


# PUBLIC_INTERFACE
@contextmanager
def transaction(db: Session, lock: bool = False) -> Iterator[Session]:
    """
    Scoped transaction: commit when the block completes, roll back on any
    exception (cancellation included) and re-raise. Database failures
    surface as PersistenceError.

    With lock=True the transaction holds the database write lock from BEGIN,
    serializing check-then-insert sequences across connections.
    """
    try:
        if lock:
            _begin_locked(db)
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("transaction_failed", error_class=type(e).__name__)
        raise PersistenceError("Database operation failed") from e
    except BaseException:
        db.rollback()
        raise
