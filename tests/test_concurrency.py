"""Tests for bounded fan-out."""

from __future__ import annotations

import asyncio

import pytest

from autobiz.concurrency import gather_bounded


@pytest.mark.asyncio
async def test_results_in_input_order_with_errors_captured():
    async def worker(n: int) -> int:
        await asyncio.sleep(0.01 * (5 - n))
        if n == 2:
            raise ValueError("bad item")
        return n * 10

    outcomes = await gather_bounded([1, 2, 3, 4], worker, limit=4)

    assert [o.item for o in outcomes] == [1, 2, 3, 4]
    assert [o.value for o in outcomes if o.ok] == [10, 30, 40]
    assert str(outcomes[1].error) == "bad item"
    assert outcomes[1].ok is False


@pytest.mark.asyncio
async def test_limit_bounds_in_flight_work():
    in_flight = 0
    peak = 0

    async def worker(n: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.005)
        in_flight -= 1
        return n

    await gather_bounded(range(10), worker, limit=3)

    assert peak == 3


@pytest.mark.asyncio
async def test_empty_input():
    assert await gather_bounded([], lambda n: asyncio.sleep(0), limit=2) == []
