"""Storage backends for durable view totals."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import Column, Integer, String, create_engine, event, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .models import ChimeConfig, TallyEntry, TotalRecord

logger = logging.getLogger(__name__)

Base = declarative_base()


class StorageError(RuntimeError):
    """A durable store could not complete a read or write."""


class TotalRow(Base):
    __tablename__ = "totals"

    resource = Column(String, primary_key=True)
    event = Column(String, primary_key=True)
    tally = Column(Integer, nullable=False)


class DailyRow(Base):
    __tablename__ = "daily"

    resource = Column(String, primary_key=True)
    event = Column(String, primary_key=True)
    day = Column(Integer, primary_key=True)
    tally = Column(Integer, nullable=False)


class ChimeStore(Protocol):
    """Abstract store contract."""

    def merge(self, entries: Sequence[TallyEntry]) -> None: ...

    def total(self, resource: str, event: str) -> int: ...

    def first_date(self, resource: str, event: str) -> int: ...

    def list_totals(self) -> list[TotalRecord]: ...

    def close(self) -> None: ...


@dataclass
class InMemoryChimeStore(ChimeStore):
    """Dictionary-backed store, convenient for tests."""

    _totals: dict[tuple[str, str], int] = field(default_factory=dict)
    _daily: dict[tuple[str, str, int], int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def merge(self, entries: Sequence[TallyEntry]) -> None:
        # Build the new state on copies and swap, so a merge lands whole or not at all.
        with self._lock:
            totals = dict(self._totals)
            daily = dict(self._daily)
            for entry in entries:
                key = (entry.resource, entry.event)
                totals[key] = totals.get(key, 0) + entry.delta
                day_key = (entry.resource, entry.event, entry.day)
                daily[day_key] = daily.get(day_key, 0) + entry.delta
            self._totals, self._daily = totals, daily

    def total(self, resource: str, event: str) -> int:
        return self._totals.get((resource, event), 0)

    def first_date(self, resource: str, event: str) -> int:
        days = [day for (r, e, day) in self._daily if r == resource and e == event]
        return min(days) if days else 0

    def daily(self, resource: str, event: str, day: int) -> int:
        return self._daily.get((resource, event, day), 0)

    def list_totals(self) -> list[TotalRecord]:
        return [
            TotalRecord(resource=resource, event=event, tally=tally)
            for (resource, event), tally in sorted(self._totals.items())
        ]

    def close(self) -> None:
        return None


def _set_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute("PRAGMA secure_delete = true")
    cursor.close()


class SqlChimeStore(ChimeStore):
    """Persist totals in a relational database through SQLAlchemy.

    Both tables are upserted inside one transaction per merge, so totals
    and daily buckets never disagree. SQLite and PostgreSQL are supported.
    """

    def __init__(self, url: str) -> None:
        connect_args: dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(url, connect_args=connect_args)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"could not initialise store at {url}") from exc

    @classmethod
    def from_path(cls, path: str | Path) -> SqlChimeStore:
        db_path = Path(path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(f"sqlite:///{db_path}")

    def _upsert(self, model: type, values: dict[str, Any], index_elements: list[str]) -> Any:
        table = model.__table__
        insert = pg_insert if self.engine.dialect.name == "postgresql" else sqlite_insert
        stmt = insert(table).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={"tally": table.c.tally + stmt.excluded.tally},
        )

    def merge(self, entries: Sequence[TallyEntry]) -> None:
        if not entries:
            return
        try:
            with self._session_factory.begin() as session:
                for entry in entries:
                    session.execute(
                        self._upsert(
                            TotalRow,
                            {"resource": entry.resource, "event": entry.event, "tally": entry.delta},
                            ["resource", "event"],
                        )
                    )
                    session.execute(
                        self._upsert(
                            DailyRow,
                            {
                                "resource": entry.resource,
                                "event": entry.event,
                                "day": entry.day,
                                "tally": entry.delta,
                            },
                            ["resource", "event", "day"],
                        )
                    )
        except SQLAlchemyError as exc:
            raise StorageError(f"merge of {len(entries)} entries failed") from exc
        logger.debug("Merged %d entries", len(entries))

    def total(self, resource: str, event: str) -> int:
        query = select(TotalRow.tally).where(TotalRow.resource == resource, TotalRow.event == event)
        try:
            with self._session_factory() as session:
                return session.scalar(query) or 0
        except SQLAlchemyError as exc:
            raise StorageError(f"total lookup for {resource} {event} failed") from exc

    def first_date(self, resource: str, event: str) -> int:
        query = select(func.min(DailyRow.day)).where(
            DailyRow.resource == resource, DailyRow.event == event
        )
        try:
            with self._session_factory() as session:
                return session.scalar(query) or 0
        except SQLAlchemyError as exc:
            raise StorageError(f"first date lookup for {resource} {event} failed") from exc

    def list_totals(self) -> list[TotalRecord]:
        query = select(TotalRow).order_by(TotalRow.resource, TotalRow.event)
        try:
            with self._session_factory() as session:
                rows = session.scalars(query).all()
        except SQLAlchemyError as exc:
            raise StorageError("listing totals failed") from exc
        return [TotalRecord(resource=row.resource, event=row.event, tally=row.tally) for row in rows]

    def close(self) -> None:
        self.engine.dispose()


def create_store(config: ChimeConfig) -> ChimeStore:
    """Factory helper selecting the appropriate store."""
    if config.store_url:
        return SqlChimeStore(config.store_url)
    if config.store_path:
        logger.info("Database path: %s", config.store_path)
        return SqlChimeStore.from_path(config.store_path)
    return InMemoryChimeStore()
