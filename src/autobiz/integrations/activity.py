"""Append-only audit trail and user notifications."""

from __future__ import annotations

import logging
from typing import Any

from autobiz.clock import now_iso
from autobiz.constants import ActivityStatus, Table
from autobiz.db.base import Row, WorkItemStore

logger = logging.getLogger(__name__)


class ActivityLog:
    """
    Write-once activity entries for observability.

    Writes are fire-and-forget: a failed insert is logged and never raised
    into the workflow that produced it.
    """

    def __init__(self, store: WorkItemStore) -> None:
        self.store = store

    async def record(
        self,
        agent_id: str,
        agent_name: str,
        action: str,
        status: ActivityStatus | str = ActivityStatus.COMPLETED,
        metadata: dict[str, Any] | None = None,
        project_id: str | None = None,
    ) -> Row | None:
        """Append an agent activity entry."""
        entry = {
            "agent_id": agent_id,
            "agent_name": agent_name,
            "action": action,
            "status": status,
            "metadata": metadata or {},
            "project_id": project_id,
            "created_at": now_iso(),
        }
        try:
            return await self.store.insert(Table.ACTIVITY_LOGS, entry)
        except Exception as e:
            logger.warning(f"Failed to write activity log ({agent_id}: {action}): {e}")
            return None

    async def record_trading(
        self,
        project_id: str,
        user_id: str,
        agent_id: str,
        agent_name: str,
        action: str,
        status: ActivityStatus | str = ActivityStatus.COMPLETED,
        details: dict[str, Any] | None = None,
    ) -> Row | None:
        """Append a trading activity entry."""
        entry = {
            "project_id": project_id,
            "user_id": user_id,
            "agent_id": agent_id,
            "agent_name": agent_name,
            "action": action,
            "status": status,
            "details": details or {},
            "created_at": now_iso(),
        }
        try:
            return await self.store.insert(Table.TRADING_ACTIVITY_LOGS, entry)
        except Exception as e:
            logger.warning(f"Failed to write trading activity log ({agent_id}: {action}): {e}")
            return None

    async def tail(self, project_id: str, limit: int = 10) -> list[Row]:
        """Most recent agent activity for a project, newest first."""
        return await self.store.select(
            Table.ACTIVITY_LOGS,
            {"project_id": project_id},
            order_by="created_at",
            desc=True,
            limit=limit,
        )


class Notifier:
    """User-facing notification sink (fire-and-forget inserts)."""

    def __init__(self, store: WorkItemStore) -> None:
        self.store = store

    async def notify(
        self,
        user_id: str | None,
        type: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> Row | None:
        if not user_id:
            logger.debug(f"Notification '{title}' dropped: no user")
            return None
        try:
            return await self.store.insert(
                Table.NOTIFICATIONS,
                {
                    "user_id": user_id,
                    "type": type,
                    "title": title,
                    "message": message,
                    "metadata": metadata or {},
                    "is_read": False,
                    "created_at": now_iso(),
                },
            )
        except Exception as e:
            logger.warning(f"Failed to send notification '{title}': {e}")
            return None
