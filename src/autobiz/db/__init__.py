"""Work item store backends."""

from autobiz.db.base import WorkItemStore
from autobiz.db.memory import InMemoryStore

__all__ = ["WorkItemStore", "InMemoryStore"]
