"""Bounded fan-out with per-item error capture."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class Outcome(Generic[T, R]):
    """Result of running one item: either ``value`` or ``error`` is set."""

    item: T
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    limit: int,
) -> list[Outcome[T, R]]:
    """
    Run ``worker`` over ``items`` with at most ``limit`` in flight.

    Outcomes come back in input order. An exception raised for one item is
    stored on its outcome and never cancels the others. ``limit=1`` runs the
    items strictly one after another.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(item: T) -> Outcome[T, R]:
        async with semaphore:
            try:
                return Outcome(item=item, value=await worker(item))
            except Exception as e:
                return Outcome(item=item, error=e)

    return list(await asyncio.gather(*(run(item) for item in items)))
