"""
Persistence gateway.

A Database is constructed once at process start, handed to every component,
and disposed on shutdown. Components open read scopes with session() and
all-or-nothing write scopes with transaction().
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    def __init__(self, url: str, statement_timeout: Optional[float] = 30.0, echo: bool = False):
        self.url = make_url(url)
        self.statement_timeout = statement_timeout
        self.engine = self._build_engine(echo)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _build_engine(self, echo: bool):
        backend = self.url.get_backend_name()
        kwargs = {"echo": echo}

        if backend == "sqlite":
            connect_args = {"check_same_thread": False}
            if self.statement_timeout:
                # sqlite3 busy timeout, in seconds
                connect_args["timeout"] = self.statement_timeout
            kwargs["connect_args"] = connect_args
            if self.url.database in (None, "", ":memory:"):
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
            if backend == "postgresql" and self.url.get_driver_name() == "pg8000":
                kwargs["connect_args"] = {"timeout": 10}

        logger.info("[DB] Using %s database", backend)
        engine = create_engine(self.url, **kwargs)

        if backend == "sqlite":
            @event.listens_for(engine, "connect")
            def _enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
        elif backend == "postgresql" and self.statement_timeout:
            timeout_ms = int(self.statement_timeout * 1000)

            @event.listens_for(engine, "connect")
            def _set_statement_timeout(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute(f"SET statement_timeout = {timeout_ms}")
                cursor.close()
                dbapi_connection.commit()

        return engine

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.Session()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        # registers the tables on Base.metadata
        import models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def table_names(self) -> List[str]:
        return inspect(self.engine).get_table_names()

    def dispose(self) -> None:
        logger.info("[DB] Disposing connection pool")
        self.engine.dispose()
