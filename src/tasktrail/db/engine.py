"""
Task store for tasktrail.

TaskStore owns the SQLAlchemy engine and hands out sessions bound to a
single transaction. Every mutation of task state runs inside one
``transaction()`` block, which commits on success and rolls back on any
exception.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ..config.settings import DatabaseSettings
from .schema import Base

logger = logging.getLogger(__name__)


def _prepare_sqlite_path(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    prefix = "sqlite:///"
    if not url.startswith(prefix):
        return
    path = url[len(prefix):]
    if not path or path == ":memory:":
        return
    Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)


class TaskStore:
    """Relational store for tasks, file links and their audit trails."""

    def __init__(self, url: str, echo: bool = False, busy_timeout: float = 30.0):
        self.url = url
        self.is_sqlite = url.startswith("sqlite")
        connect_args = {}
        if self.is_sqlite:
            _prepare_sqlite_path(url)
            connect_args = {"timeout": busy_timeout, "check_same_thread": False}
        self.engine: Engine = create_engine(url, echo=echo, future=True, connect_args=connect_args)
        if self.is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: DatabaseSettings, url: Optional[str] = None) -> "TaskStore":
        """Build a store from DatabaseSettings, optionally with a resolved URL."""
        return cls(url or settings.url, echo=settings.echo, busy_timeout=settings.busy_timeout)

    def create_all(self) -> None:
        """Create any missing tables."""
        Base.metadata.create_all(self.engine)
        logger.debug("Schema ready at %s", self.url)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session inside a single transaction."""
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        finally:
            session.close()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session for read-only access."""
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
