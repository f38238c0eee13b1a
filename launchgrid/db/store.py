from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, List, Mapping, Optional

from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel

from ..errors import StoreError
from ..persistence.base import Row, Store, split_filter
from ..utils.clock import ensure_utc
from .models import ROW_MODELS

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Map plain ``sqlite://``/``postgres://`` URLs onto async drivers."""
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


class SQLStore(Store):
    """Store rows in SQLite or PostgreSQL through an async SQLAlchemy engine."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = normalize_database_url(database_url)
        connect_args = (
            {"check_same_thread": False} if self.database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            self.database_url, echo=echo, future=True, connect_args=connect_args
        )
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            async with self._init_lock:
                if not self._initialized:
                    await self.init_db()
        async with AsyncSession(self.engine) as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(f"Database operation failed: {exc}")
                raise StoreError(f"Database operation failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Helper methods
    def _table(self, name: str) -> Table:
        model = ROW_MODELS.get(name)
        if model is None:
            raise StoreError(f"Unknown table: {name}")
        return model.__table__

    def _where(self, table: Table, filters: Optional[Mapping[str, Any]]) -> list:
        clauses = []
        for key, expected in (filters or {}).items():
            name, op = split_filter(key)
            if name not in table.c:
                raise StoreError(f"Unknown column {name} on {table.name}")
            column = table.c[name]
            if op == "eq":
                if isinstance(expected, (list, tuple, set, frozenset)):
                    clauses.append(column.in_(list(expected)))
                elif expected is None:
                    clauses.append(column.is_(None))
                else:
                    clauses.append(column == expected)
            elif op == "ne":
                if expected is None:
                    clauses.append(column.is_not(None))
                else:
                    clauses.append(column != expected)
            elif op == "lte":
                clauses.append(column <= expected)
            elif op == "lt":
                clauses.append(column < expected)
            elif op == "gte":
                clauses.append(column >= expected)
            else:
                clauses.append(column > expected)
        return clauses

    @staticmethod
    def _row(mapping: Mapping[str, Any]) -> Row:
        return {
            key: ensure_utc(value) if isinstance(value, datetime) else value
            for key, value in mapping.items()
        }

    # ------------------------------------------------------------------
    # Store API
    async def find(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        tbl = self._table(table)
        stmt = select(tbl).where(*self._where(tbl, filters))
        if order_by:
            column = tbl.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.session() as session:
            result = await session.execute(stmt)
            return [self._row(r._mapping) for r in result]

    async def insert(self, table: str, row: Row) -> Row:
        tbl = self._table(table)
        async with self.session() as session:
            await session.execute(insert(tbl).values(**row))
            await session.commit()
        return dict(row)

    async def update(
        self,
        table: str,
        row_id: str,
        patch: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Row]:
        tbl = self._table(table)
        clauses = [tbl.c.id == row_id, *self._where(tbl, expected)]
        async with self.session() as session:
            result = await session.execute(update(tbl).where(*clauses).values(**patch))
            if result.rowcount == 0:
                await session.rollback()
                return None
            fetched = await session.execute(select(tbl).where(tbl.c.id == row_id))
            row = fetched.first()
            await session.commit()
        return self._row(row._mapping) if row is not None else None

    async def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        tbl = self._table(table)
        async with self.session() as session:
            result = await session.execute(delete(tbl).where(*self._where(tbl, filters)))
            await session.commit()
            return result.rowcount

    async def close(self) -> None:
        await self.engine.dispose()
