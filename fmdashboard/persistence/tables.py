from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
import json
import logging
from typing import Any, AsyncIterator, Generic, Mapping, TypeVar

import sqlalchemy as sa
from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from fmdashboard.core.errors import StoreError, UnsupportedQueryError
from fmdashboard.persistence.db import IDENTITY_FIELD, build_collection_table


logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")
Query = Mapping[str, Any]


@dataclass(frozen=True)
class WriteResult:
    matched: int = 0
    modified: int = 0
    inserted: int = 0
    deleted: int = 0


class KeyedLock:
    """Per-key asyncio locks that are dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


def query_key(query: Query) -> str:
    # Canonical form so equal predicates share one critical section.
    return json.dumps(query, sort_keys=True, default=str)


def _json_scalar(column: sa.ColumnElement[Any], field: str, sample: Any) -> sa.ColumnElement[Any]:
    element = column[field]
    # bool before int: bool is an int subclass.
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, int):
        return element.as_integer()
    if isinstance(sample, float):
        return element.as_float()
    if isinstance(sample, str):
        return element.as_string()
    raise UnsupportedQueryError(f"unsupported value for {field!r}: {type(sample).__name__}")


def compile_query(column: sa.ColumnElement[Any], query: Query) -> list[sa.ColumnElement[bool]]:
    # Attribute equality and {"$in": [...]} membership only; an empty query matches everything.
    clauses: list[sa.ColumnElement[bool]] = []
    for field, condition in query.items():
        if isinstance(condition, Mapping):
            unknown = set(condition) - {"$in"}
            if unknown:
                raise UnsupportedQueryError(f"unsupported operators for {field!r}: {sorted(unknown)}")
            values = list(condition["$in"])
            if not values:
                clauses.append(sa.false())
                continue
            if len({type(value) for value in values}) > 1:
                raise UnsupportedQueryError(f"mixed value types in $in for {field!r}")
            clauses.append(_json_scalar(column, field, values[0]).in_(values))
        elif condition is None:
            clauses.append(column[field].as_string().is_(None))
        else:
            clauses.append(_json_scalar(column, field, condition) == condition)
    return clauses


class TableAccessor(Generic[RecordT]):
    """Async access to one document collection.

    Records are validated into ``record_type`` on the way out and written as
    plain JSON documents. ``update`` is upsert-by-query: every match receives a
    shallow ``$set`` of the supplied fields, and a record is inserted only when
    nothing matches. The per-query key lock is held across the read and the
    write, which is what keeps concurrent upserts of one key from both inserting;
    the SQLite driver only opens its transaction at the first write statement.
    ``update`` and ``set_exclusive_flag`` lock different keys and may interleave.
    """

    def __init__(self, engine: AsyncEngine, name: str, record_type: Any) -> None:
        self.name = name
        self._engine = engine
        self._table = build_collection_table(name)
        self._adapter: TypeAdapter[RecordT] = TypeAdapter(record_type)
        self._key_locks = KeyedLock()
        self._ready = False
        self._ready_lock = asyncio.Lock()

    @property
    def _doc(self) -> sa.ColumnElement[Any]:
        return self._table.c.doc

    async def _ensure_table(self) -> None:
        if self._ready:
            return
        async with self._ready_lock:
            if self._ready:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(self._table.metadata.create_all)
            self._ready = True

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncConnection]:
        # Surface engine/driver failures as StoreError so callers never see a silent success.
        try:
            await self._ensure_table()
            async with self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.warning("collection_store_failed collection=%s operation=%s", self.name, operation, exc_info=exc)
            raise StoreError(f"{operation} on collection {self.name!r} failed") from exc

    def _to_record(self, doc: Mapping[str, Any]) -> RecordT:
        data = {key: value for key, value in doc.items() if key != IDENTITY_FIELD}
        try:
            return self._adapter.validate_python(data)
        except ValidationError as exc:
            raise StoreError(f"stored document in {self.name!r} does not match its record type") from exc

    def _to_document(self, data: RecordT | Mapping[str, Any]) -> dict[str, Any]:
        if isinstance(data, BaseModel):
            doc = data.model_dump(mode="json", by_alias=True, exclude_unset=True)
        else:
            doc = dict(data)
        doc.pop(IDENTITY_FIELD, None)
        return doc

    async def _select(self, conn: AsyncConnection, clauses: list[sa.ColumnElement[bool]]) -> list[sa.Row[Any]]:
        result = await conn.execute(
            sa.select(self._table.c[IDENTITY_FIELD], self._doc).where(*clauses).order_by(self._table.c[IDENTITY_FIELD])
        )
        return list(result.all())

    async def _set_fields(self, conn: AsyncConnection, rows: list[sa.Row[Any]], fields: Mapping[str, Any]) -> int:
        modified = 0
        for row_id, doc in rows:
            merged = {**doc, **fields}
            if merged == doc:
                continue
            await conn.execute(
                sa.update(self._table).where(self._table.c[IDENTITY_FIELD] == row_id).values(doc=merged)
            )
            modified += 1
        return modified

    async def find(self, id: str) -> RecordT | None:
        records = await self.search({"id": id})
        return records[0] if records else None

    async def search(self, query: Query) -> list[RecordT]:
        clauses = compile_query(self._doc, query)
        async with self._transaction("search") as conn:
            rows = await self._select(conn, clauses)
        return [self._to_record(doc) for _, doc in rows]

    async def insert(self, data: RecordT | Mapping[str, Any]) -> WriteResult:
        doc = self._to_document(data)
        async with self._transaction("insert") as conn:
            await conn.execute(sa.insert(self._table).values(doc=doc))
        return WriteResult(inserted=1)

    async def update(self, query: Query, data: RecordT | Mapping[str, Any]) -> WriteResult:
        clauses = compile_query(self._doc, query)
        doc = self._to_document(data)
        async with self._key_locks.hold(query_key(query)):
            async with self._transaction("update") as conn:
                rows = await self._select(conn, clauses)
                if not rows:
                    await conn.execute(sa.insert(self._table).values(doc=doc))
                    return WriteResult(inserted=1)
                modified = await self._set_fields(conn, rows, doc)
        return WriteResult(matched=len(rows), modified=modified)

    async def set_exclusive_flag(self, scope: Query, target: Query, field: str) -> WriteResult:
        # Clear `field` on every record in scope and set it on the target records, atomically.
        scope_clauses = compile_query(self._doc, scope)
        target_clauses = compile_query(self._doc, {**scope, **target})
        async with self._key_locks.hold(query_key(scope)):
            async with self._transaction("set_exclusive_flag") as conn:
                targets = await self._select(conn, target_clauses)
                if not targets:
                    return WriteResult()
                target_ids = {row_id for row_id, _ in targets}
                others = [row for row in await self._select(conn, scope_clauses) if row[0] not in target_ids]
                modified = await self._set_fields(conn, others, {field: False})
                modified += await self._set_fields(conn, targets, {field: True})
        return WriteResult(matched=len(targets), modified=modified)

    async def delete(self, id: str) -> WriteResult:
        return await self.delete_where({"id": id})

    async def delete_where(self, query: Query) -> WriteResult:
        clauses = compile_query(self._doc, query)
        async with self._transaction("delete") as conn:
            result = await conn.execute(sa.delete(self._table).where(*clauses))
        return WriteResult(deleted=max(result.rowcount or 0, 0))

    async def compact(self) -> None:
        try:
            await self._ensure_table()
            async with self._engine.connect() as conn:
                conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
                await conn.exec_driver_sql("VACUUM")
        except SQLAlchemyError as exc:
            logger.warning("collection_compact_failed collection=%s", self.name, exc_info=exc)
            raise StoreError(f"compaction of collection {self.name!r} failed") from exc

    async def close(self) -> None:
        await self._engine.dispose()
