"""Store abstraction consumed by the LaunchGrid services."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

Row = Dict[str, Any]

TABLES = (
    "projects",
    "pillars",
    "workflows",
    "steps",
    "tasks",
    "engagement_jobs",
    "audit_logs",
)

# Filter keys may carry an operator suffix, e.g. ``next_poll_at__lte``.
OPERATORS = ("lte", "lt", "gte", "gt", "ne")


def split_filter(key: str) -> Tuple[str, str]:
    """Return ``(column, operator)`` for a filter key."""
    name, sep, op = key.rpartition("__")
    if sep and op in OPERATORS:
        return name, op
    return key, "eq"


class Store(Protocol):
    """Protocol for row stores with per-call atomicity.

    Filter values that are lists, tuples or sets match any of their members.
    ``update`` applies ``patch`` only when the row also matches ``expected``
    and returns ``None`` when it does not (or the row is missing), which is
    how callers implement optimistic writes.
    """

    async def find(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Return rows matching ``filters``."""

    async def insert(self, table: str, row: Row) -> Row:
        """Persist a new row and return it."""

    async def update(
        self,
        table: str,
        row_id: str,
        patch: Mapping[str, Any],
        *,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Row]:
        """Apply ``patch`` to a row, conditionally on ``expected``."""

    async def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        """Delete matching rows and return how many were removed."""

    async def close(self) -> None:
        """Release any held resources."""
