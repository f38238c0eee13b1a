"""In-memory implementation of the store protocol."""

from __future__ import annotations

import asyncio
import copy
import operator
from typing import Any, Dict, List, Mapping, Optional

from ..errors import StoreError
from .base import TABLES, Row, Store, split_filter

_COMPARE = {
    "lte": operator.le,
    "lt": operator.lt,
    "gte": operator.ge,
    "gt": operator.gt,
}


def _matches(row: Row, filters: Mapping[str, Any]) -> bool:
    for key, expected in filters.items():
        name, op = split_filter(key)
        value = row.get(name)
        if op == "eq":
            if isinstance(expected, (list, tuple, set, frozenset)):
                if value not in expected:
                    return False
            elif value != expected:
                return False
        elif op == "ne":
            if value == expected:
                return False
        elif value is None or expected is None or not _COMPARE[op](value, expected):
            return False
    return True


class InMemoryStore(Store):
    """Store rows in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Row]] = {name: {} for name in TABLES}
        self._lock = asyncio.Lock()

    def _table(self, name: str) -> Dict[str, Row]:
        try:
            return self._tables[name]
        except KeyError:
            raise StoreError(f"Unknown table: {name}") from None

    # ------------------------------------------------------------------
    async def find(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        async with self._lock:
            rows = [r for r in self._table(table).values() if _matches(r, filters or {})]
            if order_by:
                rows.sort(
                    key=lambda r: (r.get(order_by) is None, r.get(order_by)),
                    reverse=descending,
                )
            if limit is not None:
                rows = rows[:limit]
            return copy.deepcopy(rows)

    async def insert(self, table: str, row: Row) -> Row:
        async with self._lock:
            rows = self._table(table)
            if row["id"] in rows:
                raise StoreError(f"Duplicate id {row['id']} in {table}")
            rows[row["id"]] = copy.deepcopy(dict(row))
            return copy.deepcopy(rows[row["id"]])

    async def update(
        self,
        table: str,
        row_id: str,
        patch: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Row]:
        async with self._lock:
            row = self._table(table).get(row_id)
            if row is None or not _matches(row, expected or {}):
                return None
            row.update(copy.deepcopy(dict(patch)))
            return copy.deepcopy(row)

    async def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        async with self._lock:
            rows = self._table(table)
            doomed = [key for key, r in rows.items() if _matches(r, filters)]
            for key in doomed:
                del rows[key]
            return len(doomed)

    async def close(self) -> None:
        pass
