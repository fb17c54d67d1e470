"""Base work item store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

Row = dict[str, Any]
Filters = Mapping[str, Any]


def to_json_value(value: Any) -> Any:
    """Convert a Python value into something the store can persist as JSON."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_value(v) for v in value]
    return value


def table_name(table: Any) -> str:
    """Resolve a table enum or plain string to its name."""
    return table.value if isinstance(table, Enum) else str(table)


def serialize_row(row: Mapping[str, Any]) -> Row:
    return {key: to_json_value(value) for key, value in row.items()}


class WorkItemStore(ABC):
    """
    Async access to the shared relational store.

    Filters are ``{column: value}`` equality matches. A ``None`` value matches
    NULL, and a list/tuple/set value matches any of its members.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        desc: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        """Return rows matching all filters."""

    @abstractmethod
    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        """Insert one row and return it as stored (with generated id)."""

    @abstractmethod
    async def update(self, table: str, values: Mapping[str, Any], filters: Filters) -> list[Row]:
        """Update matching rows and return them as stored."""

    @abstractmethod
    async def upsert(self, table: str, row: Mapping[str, Any], on_conflict: str) -> Row:
        """Insert or overwrite the row identified by the ``on_conflict`` columns."""

    async def get(self, table: str, row_id: Any) -> Row | None:
        rows = await self.select(table, {"id": row_id}, limit=1)
        return rows[0] if rows else None

    async def first(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        desc: bool = False,
    ) -> Row | None:
        rows = await self.select(table, filters, order_by=order_by, desc=desc, limit=1)
        return rows[0] if rows else None

    async def update_if(
        self,
        table: str,
        filters: Filters,
        expected: Filters,
        values: Mapping[str, Any],
    ) -> bool:
        """
        Conditional update.

        Applies ``values`` only to rows matching ``filters`` whose current
        columns still equal ``expected``. Returns True when a row changed, so
        exactly one of several concurrent callers wins a gate.
        """
        combined = dict(filters)
        combined.update(expected)
        updated = await self.update(table, values, combined)
        return bool(updated)

    async def close(self) -> None:
        """Release backend resources."""
