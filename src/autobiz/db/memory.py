"""In-process work item store for dry runs and tests."""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from autobiz.clock import now_iso
from autobiz.db.base import (
    Filters,
    Row,
    WorkItemStore,
    serialize_row,
    table_name,
    to_json_value,
)

logger = logging.getLogger(__name__)


def _matches(row: Row, filters: Filters | None) -> bool:
    if not filters:
        return True
    for column, expected in filters.items():
        actual = row.get(column)
        expected = to_json_value(expected)
        if expected is None:
            if actual is not None:
                return False
        elif isinstance(expected, list):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def _sort_key(column: str):
    def key(row: Row) -> tuple[int, Any]:
        value = row.get(column)
        # NULLs sort last in ascending order
        return (1, "") if value is None else (0, value)

    return key


class InMemoryStore(WorkItemStore):
    """
    Dict-of-lists store with the same semantics as the Supabase backend.

    Every mutation runs under one lock, so ``update_if`` is atomic within the
    process. Returned rows are copies.
    """

    def __init__(self, seed: Mapping[str, list[Row]] | None = None) -> None:
        self._tables: dict[str, list[Row]] = defaultdict(list)
        self._lock = asyncio.Lock()
        for table, rows in (seed or {}).items():
            for row in rows:
                self._tables[table_name(table)].append(self._prepare(row))

    @staticmethod
    def _prepare(row: Mapping[str, Any]) -> Row:
        stored = serialize_row(row)
        stored.setdefault("id", str(uuid4()))
        stored.setdefault("created_at", now_iso())
        return stored

    def rows(self, table: str) -> list[Row]:
        """Synchronous snapshot of a table (test and CLI inspection)."""
        return copy.deepcopy(self._tables.get(table_name(table), []))

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        desc: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        async with self._lock:
            rows = [r for r in self._tables.get(table_name(table), []) if _matches(r, filters)]
            if order_by:
                rows = sorted(rows, key=_sort_key(order_by), reverse=desc)
            if limit is not None:
                rows = rows[:limit]
            return copy.deepcopy(rows)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        async with self._lock:
            stored = self._prepare(row)
            self._tables[table_name(table)].append(stored)
            logger.debug(f"Inserted into {table_name(table)}: {stored['id']}")
            return copy.deepcopy(stored)

    async def update(self, table: str, values: Mapping[str, Any], filters: Filters) -> list[Row]:
        changes = serialize_row(values)
        async with self._lock:
            updated = []
            for row in self._tables.get(table_name(table), []):
                if _matches(row, filters):
                    row.update(copy.deepcopy(changes))
                    updated.append(copy.deepcopy(row))
            return updated

    async def upsert(self, table: str, row: Mapping[str, Any], on_conflict: str) -> Row:
        keys = [k.strip() for k in on_conflict.split(",") if k.strip()]
        incoming = serialize_row(row)
        async with self._lock:
            for existing in self._tables[table_name(table)]:
                if all(existing.get(k) == incoming.get(k) for k in keys):
                    existing.update(copy.deepcopy(incoming))
                    return copy.deepcopy(existing)
            stored = self._prepare(incoming)
            self._tables[table_name(table)].append(stored)
            return copy.deepcopy(stored)
