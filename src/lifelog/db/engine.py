"""Database engine and store handle for Lifelog.

The Store is constructed explicitly by initialize() and handed to every
repository, the ingestion pipeline and the context resolver:

- store.transaction(): exclusive write access, one SQLite transaction
- store.query(): shared read access

Nested use on one thread joins the outermost scope, so several repository
calls can be committed atomically by wrapping them in one transaction.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError, StatementError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lifelog.core.errors import (
    ConstraintViolation,
    LifelogError,
    MigrationFailure,
    StorageError,
    StorageUnavailable,
)
from lifelog.db.locking import ReadWriteLock
from lifelog.db.migrations import apply_migrations, rebuild_fts

if TYPE_CHECKING:
    from lifelog.config import Settings

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


def _configure_connection(dbapi_conn: object, connection_record: object) -> None:
    """Enable foreign keys and WAL; hand transaction control to SQLAlchemy."""
    # pysqlite would otherwise skip BEGIN before DDL, breaking
    # transactional migrations.
    dbapi_conn.isolation_level = None  # type: ignore[attr-defined]
    cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def _begin(conn: object) -> None:
    conn.exec_driver_sql("BEGIN")  # type: ignore[attr-defined]


def create_store_engine(path: str | Path, busy_timeout_seconds: float = 5.0) -> Engine:
    """Create a SQLite engine with proper configuration."""
    if str(path) == MEMORY_PATH:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False, "timeout": busy_timeout_seconds},
            poolclass=StaticPool,
        )
    else:
        db_path = Path(path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": busy_timeout_seconds},
        )
    event.listen(engine, "connect", _configure_connection)
    event.listen(engine, "begin", _begin)
    return engine


@contextmanager
def translate_errors() -> Generator[None, None, None]:
    """Map SQLAlchemy errors onto the Lifelog storage taxonomy."""
    try:
        yield
    except LifelogError:
        raise
    except IntegrityError as exc:
        raise ConstraintViolation(str(exc.orig)) from exc
    except DBAPIError as exc:
        raise StorageUnavailable(str(exc.orig)) from exc
    except StatementError as exc:
        # Bind-time validation failures (e.g. an unknown enum value)
        raise ConstraintViolation(str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        raise StorageUnavailable(str(exc)) from exc


class Store:
    """Handle on one Lifelog database.

    Owns the engine, the session factory and the readers/writer lock.
    Create it with initialize(); close it with close() or a with-block.
    """

    def __init__(self, engine: Engine, settings: "Settings", path: str | Path) -> None:
        self.engine = engine
        self.settings = settings
        self.path = path
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._lock = ReadWriteLock()
        self._local = threading.local()
        self._closed = False

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _active(self) -> tuple[Session | None, str | None]:
        return getattr(self._local, "session", None), getattr(self._local, "mode", None)

    def _check_open(self) -> None:
        if self._closed:
            msg = f"Store at {self.path} is closed"
            raise StorageUnavailable(msg)

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Yield a session with exclusive write access.

        Commits on success, rolls back on any error. Raises
        StorageUnavailable if the write lock cannot be taken in time.
        """
        session, mode = self._active()
        if session is not None:
            if mode != "write":
                msg = "Cannot open a write transaction inside a read-only query"
                raise StorageError(msg)
            yield session
            return

        self._check_open()
        timeout = self.settings.lock_timeout_seconds
        if not self._lock.acquire_write(timeout=timeout):
            msg = f"Timed out after {timeout}s waiting for write access"
            raise StorageUnavailable(msg)

        session = self._session_factory()
        self._local.session = session
        self._local.mode = "write"
        try:
            with translate_errors():
                try:
                    yield session
                    session.commit()
                except BaseException:
                    session.rollback()
                    raise
        finally:
            self._local.session = None
            self._local.mode = None
            session.close()
            self._lock.release_write()

    @contextmanager
    def query(self) -> Generator[Session, None, None]:
        """Yield a session with shared read access.

        Inside an open transaction on the same thread, yields that
        transaction's session so reads see uncommitted writes.
        """
        session, _ = self._active()
        if session is not None:
            yield session
            return

        self._check_open()
        timeout = self.settings.lock_timeout_seconds
        if not self._lock.acquire_read(timeout=timeout):
            msg = f"Timed out after {timeout}s waiting for read access"
            raise StorageUnavailable(msg)

        session = self._session_factory()
        self._local.session = session
        self._local.mode = "read"
        try:
            with translate_errors():
                try:
                    yield session
                finally:
                    session.rollback()
        finally:
            self._local.session = None
            self._local.mode = None
            session.close()
            self._lock.release_read()

    def rebuild_search_index(self) -> None:
        """Repopulate the utterance FTS index from the utterances table."""
        with self.transaction() as session:
            rebuild_fts(session.connection())
        logger.info("Rebuilt utterance search index")

    def close(self) -> None:
        """Dispose of the engine. Further use raises StorageUnavailable."""
        if not self._closed:
            self._closed = True
            self.engine.dispose()
            logger.debug("Closed store at %s", self.path)


def initialize(
    path: str | Path | None = None,
    settings: "Settings | None" = None,
) -> Store:
    """Open or create the database and apply pending migrations.

    Args:
        path: Database file, ":memory:", or None for settings.database_path.
        settings: Settings to use (default: get_settings()).

    Returns:
        A ready Store.

    Raises:
        MigrationFailure: the schema could not be brought up to date. The
            process must not continue with this database.
    """
    if settings is None:
        from lifelog.config import get_settings

        settings = get_settings()
    if path is None:
        settings.ensure_storage_dir()
        path = settings.database_path

    engine = create_store_engine(path, settings.busy_timeout_seconds)
    try:
        applied = apply_migrations(engine)
    except MigrationFailure:
        logger.critical("Failed to initialize database at %s", path)
        engine.dispose()
        raise

    if applied:
        logger.info("Database at %s migrated to v%d", path, applied[-1])
    else:
        logger.debug("Database at %s is up to date", path)
    return Store(engine, settings, path)
