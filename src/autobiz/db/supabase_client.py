"""Supabase Client - Singleton database connection.

Provides the async work item store on top of the synchronous Supabase client.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any

from supabase import Client, create_client

from autobiz.db.base import Filters, Row, WorkItemStore, serialize_row, table_name, to_json_value
from autobiz.errors import ConfigurationError

logger = logging.getLogger(__name__)

_client: Client | None = None


def get_supabase_client(url: str | None = None, key: str | None = None) -> Client | None:
    """Get or create Supabase client singleton."""
    global _client

    if _client is not None:
        return _client

    url = url or os.getenv("SUPABASE_URL")
    key = key or os.getenv("SUPABASE_KEY")

    if not url or not key:
        logger.warning("SUPABASE_URL or SUPABASE_KEY not set. Cloud persistence disabled.")
        return None

    try:
        _client = create_client(url, key)
        logger.info("Supabase client initialized")
        return _client
    except Exception as e:
        logger.error(f"Failed to initialize Supabase: {e}")
        return None


def _apply_filters(query: Any, filters: Filters | None) -> Any:
    for column, value in (filters or {}).items():
        value = to_json_value(value)
        if value is None:
            query = query.is_(column, "null")
        elif isinstance(value, list):
            query = query.in_(column, value)
        else:
            query = query.eq(column, value)
    return query


class SupabaseStore(WorkItemStore):
    """
    Work item store backed by Supabase tables.

    The Supabase client is blocking, so calls are offloaded to a single worker
    thread. Errors are logged and propagated to the caller.
    """

    def __init__(self, client: Client | None = None, url: str | None = None, key: str | None = None):
        self.client = client or get_supabase_client(url, key)
        if self.client is None:
            raise ConfigurationError("Supabase is not configured (SUPABASE_URL / SUPABASE_KEY)")
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="supabase")

    async def _run(self, fn, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(fn, *args))

    # -------------------------------------------------------------------------
    # Sync implementations (worker thread)
    # -------------------------------------------------------------------------

    def _select_sync(
        self,
        table: str,
        filters: Filters | None,
        order_by: str | None,
        desc: bool,
        limit: int | None,
    ) -> list[Row]:
        query = _apply_filters(self.client.table(table).select("*"), filters)
        if order_by:
            query = query.order(order_by, desc=desc)
        if limit is not None:
            query = query.limit(limit)
        return list(query.execute().data or [])

    def _insert_sync(self, table: str, row: Row) -> Row:
        result = self.client.table(table).insert(row).execute()
        return result.data[0] if result.data else dict(row)

    def _update_sync(self, table: str, values: Row, filters: Filters) -> list[Row]:
        query = _apply_filters(self.client.table(table).update(values), filters)
        return list(query.execute().data or [])

    def _upsert_sync(self, table: str, row: Row, on_conflict: str) -> Row:
        result = self.client.table(table).upsert(row, on_conflict=on_conflict).execute()
        return result.data[0] if result.data else dict(row)

    # -------------------------------------------------------------------------
    # WorkItemStore
    # -------------------------------------------------------------------------

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        desc: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        name = table_name(table)
        try:
            return await self._run(self._select_sync, name, filters, order_by, desc, limit)
        except Exception as e:
            logger.error(f"Failed to select from {name}: {e}")
            raise

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        name = table_name(table)
        try:
            return await self._run(self._insert_sync, name, serialize_row(row))
        except Exception as e:
            logger.error(f"Failed to insert into {name}: {e}")
            raise

    async def update(self, table: str, values: Mapping[str, Any], filters: Filters) -> list[Row]:
        name = table_name(table)
        try:
            return await self._run(self._update_sync, name, serialize_row(values), filters)
        except Exception as e:
            logger.error(f"Failed to update {name}: {e}")
            raise

    async def upsert(self, table: str, row: Mapping[str, Any], on_conflict: str) -> Row:
        name = table_name(table)
        try:
            return await self._run(self._upsert_sync, name, serialize_row(row), on_conflict)
        except Exception as e:
            logger.error(f"Failed to upsert {name}: {e}")
            raise

    async def close(self) -> None:
        self._executor.shutdown(wait=False)
