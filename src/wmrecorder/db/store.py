# src/wmrecorder/db/store.py
"""SQLite-backed durable store for TimeEntry records."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from os import PathLike
from typing import Union

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from wmrecorder.db.models import Base, WindowEventRecord
from wmrecorder.errors import SchemaError, StoreOpenError, WriteError
from wmrecorder.monitor.events import TimeEntry

logger = logging.getLogger(__name__)

# Fixed width and UTC so that lexical order matches chronological order.
EVENT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

Location = Union[str, "PathLike[str]"]


def format_event_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(EVENT_TIME_FORMAT)


def database_url(location: Location) -> str:
    """Accept either a plain file path or a full SQLAlchemy URL."""
    location = str(location)
    if "://" in location:
        return location
    return f"sqlite:///{location}"


class Store:
    """Append-only writer over an opened engine. Use open_store() to build one."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=engine, autoflush=False)

    def append(self, entry: TimeEntry) -> None:
        """
        Insert one row and commit before returning.

        Raises:
            WriteError: on any backend failure. Nothing is retried here.
        """
        row = WindowEventRecord(
            event_source=entry.event_source.value,
            event_time=format_event_time(entry.event_time),
            window_area=entry.window_area,
            window_class=entry.window_class,
            window_name=entry.window_name,
        )
        db = self.SessionLocal()
        try:
            db.add(row)
            db.commit()
        except (SQLAlchemyError, ValueError) as exc:
            # ValueError covers text the driver cannot encode
            db.rollback()
            raise WriteError(f"failed to append {entry.event_source.value} event: {exc}") from exc
        finally:
            db.close()

    def recover(self) -> bool:
        """
        Re-open the store: drop pooled connections and recreate the table if it
        is gone (file rotated or deleted, table dropped). Returns False when the
        schema could not be restored; the next append will fail again.
        """
        self.engine.dispose()
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as exc:
            logger.warning("Could not restore event store schema: %s", exc)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


def open_store(location: Location) -> Store:
    """
    Open (or create) the database at `location` and make sure the
    window_events table exists. Safe to call against an existing file.

    Raises:
        StoreOpenError: the database cannot be opened.
        SchemaError: the table cannot be created.
    """
    url = database_url(location)
    connect_args = {"timeout": 30} if url.startswith("sqlite") else {}

    try:
        engine = create_engine(url, connect_args=connect_args, echo=False)
        with engine.connect():
            pass
    except SQLAlchemyError as exc:
        raise StoreOpenError(f"cannot open database {location}: {exc}") from exc

    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as exc:
        engine.dispose()
        raise SchemaError(f"cannot create schema in {location}: {exc}") from exc

    logger.info("Opened event store at %s", location)
    return Store(engine)
