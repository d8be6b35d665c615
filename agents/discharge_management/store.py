"""
Discharge Management Agent - Record Store Gateway

The workflow never talks to a database client directly. It depends on the
narrow ``RecordStore`` interface below:

    select(table, filters, order)  -> list of row dicts
    count(table, filters)          -> int
    update(table, filters, patch)  -> number of rows matched

Two implementations are provided:

- ``SqlAlchemyRecordStore``: SQLAlchemy Core over reflected tables. Blocking
  calls run in the default executor so the event loop stays responsive.
- ``InMemoryRecordStore``: dict-of-lists tables for demos and tests,
  optionally seeded from a JSON file.

Every store failure surfaces as ``StoreError``.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import json
import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import MetaData, Table, create_engine, func, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from .config import settings

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the record store cannot serve a request."""


# =============================================================================
# QUERY PRIMITIVES
# =============================================================================

OPERATORS = ("eq", "gte", "lte")


@dataclass(frozen=True)
class Condition:
    """A single filter: ``field <op> value``."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op}")


@dataclass(frozen=True)
class Ordering:
    field: str
    descending: bool = True


def eq(field: str, value: Any) -> Condition:
    return Condition(field, "eq", value)


def gte(field: str, value: Any) -> Condition:
    return Condition(field, "gte", value)


def lte(field: str, value: Any) -> Condition:
    return Condition(field, "lte", value)


class RecordStore(Protocol):
    async def select(
        self,
        table: str,
        filters: Sequence[Condition],
        order: Optional[Ordering] = None,
    ) -> List[Dict[str, Any]]:
        ...

    async def count(self, table: str, filters: Sequence[Condition]) -> int:
        ...

    async def update(
        self,
        table: str,
        filters: Sequence[Condition],
        patch: Dict[str, Any],
    ) -> int:
        ...

    async def ping(self) -> bool:
        ...


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

def _comparable(value: Any) -> Any:
    """Normalize timestamps so naive, aware and ISO-string values compare."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, datetime):
        # Naive values are taken as local time
        return value if value.tzinfo is not None else value.astimezone()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day).astimezone()
    return value


def _matches(row: Dict[str, Any], condition: Condition) -> bool:
    value = row.get(condition.field)
    if condition.op == "eq":
        return value == condition.value
    if value is None:
        return False
    left, right = _comparable(value), _comparable(condition.value)
    try:
        if condition.op == "gte":
            return left >= right
        return left <= right
    except TypeError as exc:
        raise StoreError(
            f"Cannot compare {condition.field}={value!r} with {condition.value!r}"
        ) from exc


class InMemoryRecordStore:
    """Record store backed by plain Python lists."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self._tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }

    @classmethod
    def from_seed_file(cls, path: str | Path) -> "InMemoryRecordStore":
        with Path(path).open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
        logger.info(f"Seeded in-memory store from {path}")
        return cls(payload)

    def insert(self, table: str, row: Dict[str, Any]) -> None:
        self._tables.setdefault(table, []).append(dict(row))

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._tables.get(table, []))

    async def select(
        self,
        table: str,
        filters: Sequence[Condition],
        order: Optional[Ordering] = None,
    ) -> List[Dict[str, Any]]:
        rows = [r for r in self._table(table) if all(_matches(r, c) for c in filters)]
        if order is not None:
            present = [r for r in rows if r.get(order.field) is not None]
            missing = [r for r in rows if r.get(order.field) is None]
            try:
                present.sort(
                    key=lambda r: _comparable(r[order.field]),
                    reverse=order.descending,
                )
            except TypeError as exc:
                raise StoreError(f"Cannot order {table} by {order.field}") from exc
            rows = present + missing
        return copy.deepcopy(rows)

    async def count(self, table: str, filters: Sequence[Condition]) -> int:
        return sum(1 for r in self._table(table) if all(_matches(r, c) for c in filters))

    async def update(
        self,
        table: str,
        filters: Sequence[Condition],
        patch: Dict[str, Any],
    ) -> int:
        matched = 0
        for row in self._table(table):
            if all(_matches(row, c) for c in filters):
                row.update(patch)
                matched += 1
        return matched

    async def ping(self) -> bool:
        return True

    def _table(self, table: str) -> List[Dict[str, Any]]:
        if table not in self._tables:
            raise StoreError(f"Unknown table: {table}")
        return self._tables[table]


# =============================================================================
# SQLALCHEMY STORE
# =============================================================================

class SqlAlchemyRecordStore:
    """
    Record store over any SQLAlchemy-supported database.

    Tables are reflected on first use, so the store only assumes the columns
    the workflow filters, orders and patches on.
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None) -> None:
        """
        Initialize the store.

        Args:
            database_url: SQLAlchemy connection string (default from settings)
            engine: Pre-built engine, mainly for tests
        """
        self.database_url = str(database_url or settings.database_url)
        self._engine: Optional[Engine] = engine
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._reflect_lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        """Lazily create database engine."""
        if self._engine is None:
            options: Dict[str, Any] = {"pool_pre_ping": True}
            if make_url(self.database_url).get_backend_name() != "sqlite":
                options.update(
                    pool_size=settings.db_pool_size,
                    pool_timeout=settings.db_pool_timeout,
                )
            self._engine = create_engine(self.database_url, **options)
        return self._engine

    async def select(
        self,
        table: str,
        filters: Sequence[Condition],
        order: Optional[Ordering] = None,
    ) -> List[Dict[str, Any]]:
        return await self._run(self._select_sync, table, filters, order)

    async def count(self, table: str, filters: Sequence[Condition]) -> int:
        return await self._run(self._count_sync, table, filters)

    async def update(
        self,
        table: str,
        filters: Sequence[Condition],
        patch: Dict[str, Any],
    ) -> int:
        return await self._run(self._update_sync, table, filters, patch)

    async def ping(self) -> bool:
        return await self._run(self._ping_sync)

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()

    # ----- Internal utilities -----------------------------------------

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        except SQLAlchemyError as exc:
            logger.error(f"Database error: {exc}")
            raise StoreError(str(exc)) from exc

    def _table(self, name: str) -> Table:
        # Count queries run concurrently in executor threads
        with self._reflect_lock:
            if name not in self._tables:
                self._tables[name] = Table(name, self._metadata, autoload_with=self.engine)
            return self._tables[name]

    def _column(self, table: Table, name: str):
        if name not in table.c:
            raise StoreError(f"Unknown column {table.name}.{name}")
        return table.c[name]

    def _where(self, table: Table, filters: Sequence[Condition]) -> list:
        clauses = []
        for condition in filters:
            column = self._column(table, condition.field)
            if condition.op == "eq":
                clauses.append(column == condition.value)
            elif condition.op == "gte":
                clauses.append(column >= condition.value)
            else:
                clauses.append(column <= condition.value)
        return clauses

    def _select_sync(self, name, filters, order) -> List[Dict[str, Any]]:
        table = self._table(name)
        query = select(table).where(*self._where(table, filters))
        if order is not None:
            column = self._column(table, order.field)
            query = query.order_by(column.desc() if order.descending else column.asc())
        with self.engine.connect() as con:
            rows = con.execute(query).fetchall()
        return [dict(row._mapping) for row in rows]

    def _count_sync(self, name, filters) -> int:
        table = self._table(name)
        query = select(func.count()).select_from(table).where(*self._where(table, filters))
        with self.engine.connect() as con:
            return int(con.execute(query).scalar_one() or 0)

    def _update_sync(self, name, filters, patch) -> int:
        table = self._table(name)
        for key in patch:
            self._column(table, key)
        statement = table.update().where(*self._where(table, filters)).values(**patch)
        with self.engine.begin() as con:
            result = con.execute(statement)
        return int(result.rowcount or 0)

    def _ping_sync(self) -> bool:
        with self.engine.connect() as con:
            con.execute(text("SELECT 1"))
        return True


def build_store() -> RecordStore:
    """Create the record store selected by ``settings.store_backend``."""
    if settings.store_backend == "memory":
        if settings.seed_path:
            return InMemoryRecordStore.from_seed_file(settings.seed_path)
        return InMemoryRecordStore({
            settings.admissions_table: [],
            settings.consultations_table: [],
        })
    return SqlAlchemyRecordStore(settings.database_url)
