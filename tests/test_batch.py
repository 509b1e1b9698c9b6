"""Tests for bounded-concurrency batch execution."""

import asyncio

import pytest

from medparse.pipeline.batch import process_batch


class TestProcessBatch:
    """Tests for process_batch."""

    @pytest.mark.asyncio
    async def test_results_keep_input_order(self):
        """Later items finishing first do not reorder results."""

        async def worker(item):
            await asyncio.sleep(0.01 * (5 - item))
            return item * 10

        assert await process_batch([0, 1, 2, 3, 4], worker, 3) == [0, 10, 20, 30, 40]

    @pytest.mark.asyncio
    async def test_concurrency_limit(self):
        in_flight = 0
        peak = 0

        async def worker(item):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return item

        await process_batch(list(range(10)), worker, 2)

        assert peak == 2

    @pytest.mark.asyncio
    async def test_limit_above_item_count(self):
        async def worker(item):
            return item

        assert await process_batch(["a", "b"], worker, 8) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_empty_input(self):
        async def worker(item):
            raise AssertionError("worker must not be called")

        assert await process_batch([], worker, 2) == []

    @pytest.mark.asyncio
    async def test_invalid_concurrency(self):
        async def worker(item):
            return item

        with pytest.raises(ValueError):
            await process_batch([1], worker, 0)

    @pytest.mark.asyncio
    async def test_first_failure_propagates_and_cancels(self):
        started = []
        finished = []

        async def worker(item):
            started.append(item)
            if item == 1:
                raise RuntimeError("page 1 failed")
            await asyncio.sleep(0.05)
            finished.append(item)
            return item

        with pytest.raises(RuntimeError, match="page 1 failed"):
            await process_batch([0, 1, 2, 3], worker, 2)

        # Item 0 was still sleeping when item 1 failed
        assert 0 not in finished
        assert 3 not in started
