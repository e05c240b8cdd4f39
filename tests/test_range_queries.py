"""
Tests for position ranges, time ranges, scans and filters.
"""

import pytest

from segstore import PredicateError


async def fill_segments(engine, clock, segment_sizes, cached):
    """
    Insert values 0..N-1, sealing a segment after each size in segment_sizes.

    Returns:
        Values in insertion order.
    """
    values = []
    for size in segment_sizes:
        for _ in range(size):
            value = len(values)
            await engine.put(f"key{value}", value)
            values.append(value)
        clock.advance()
        await engine.checkpoint(force_rotation=True)
    for _ in range(cached):
        value = len(values)
        await engine.put(f"key{value}", value)
        values.append(value)
    return values


class TestRangeByPosition:
    """Tests for recency-ordered range reads."""

    async def test_all_values_newest_first(self, engine, sample_items):
        for key, value in sample_items:
            await engine.put(key, value)

        result = await engine.range_by_position(0, engine.index_size())

        assert list(reversed(result)) == [value for _, value in sample_items]

    async def test_served_from_cache(self, engine, clock):
        await fill_segments(engine, clock, [3], cached=4)

        assert await engine.range_by_position(1, 3) == [5, 4]
        assert engine.stats.file_reads == 0

    async def test_across_segments(self, engine, clock):
        """Test ranges spanning cache and several sealed segments."""
        values = await fill_segments(engine, clock, [2, 2, 2], cached=2)
        newest_first = list(reversed(values))

        assert await engine.range_by_position(0, 8) == newest_first
        assert await engine.range_by_position(3, 5) == newest_first[3:5]
        assert await engine.range_by_position(1, 7) == newest_first[1:7]
        for start in range(8):
            for end in range(start, 9):
                assert await engine.range_by_position(start, end) == newest_first[start:end]

    async def test_only_needed_segments_loaded(self, engine, clock):
        """Test that the walk stops at the segment owning the oldest requested entry."""
        await fill_segments(engine, clock, [2, 2, 2], cached=2)
        reads_before = engine.stats.file_reads

        # Positions 2..3 live in the newest sealed segment only
        assert await engine.range_by_position(2, 4) == [5, 4]
        assert engine.stats.file_reads - reads_before == 1

    async def test_all_sealed(self, engine, clock):
        values = await fill_segments(engine, clock, [3, 3], cached=0)

        assert await engine.range_by_position(0, 6) == list(reversed(values))

    async def test_bounds_are_clamped(self, engine, clock):
        values = await fill_segments(engine, clock, [3], cached=2)

        assert await engine.range_by_position(0, 100000) == list(reversed(values))
        assert await engine.range_by_position(3, 100) == [1, 0]
        assert await engine.range_by_position(50, 100) == []

    async def test_invalid_bounds(self, engine, sample_items):
        for key, value in sample_items:
            await engine.put(key, value)

        assert await engine.range_by_position(5, 2) == []
        assert await engine.range_by_position(-1, 3) == []
        assert await engine.range_by_position(0, -3) == []
        assert await engine.range_by_position(4, 4) == []

    async def test_empty_engine(self, engine):
        assert await engine.range_by_position(0, 10) == []

    async def test_recent_returns_cache(self, engine, clock):
        await fill_segments(engine, clock, [3], cached=2)

        assert await engine.recent() == [4, 3]


class TestRangeByTime:
    """Tests for timestamp-window range reads."""

    async def insert_timed(self, engine, clock):
        # created_at offsets from base: a=0 b=0 c=1000 d=2000 e=2000 f=3000
        base = clock.now
        schedule = [("a", 0), ("b", 0), ("c", 1000), ("d", 2000), ("e", 2000), ("f", 3000)]
        for key, offset in schedule:
            clock.now = base + offset
            await engine.put(key, key.upper())
        return base

    async def test_window_selects_inserted_values(self, engine, clock):
        base = await self.insert_timed(engine, clock)

        assert await engine.range_by_time(base, base + 1000) == ["B", "A"]
        assert await engine.range_by_time(base + 1000, base + 3000) == ["E", "D", "C"]
        assert await engine.range_by_time(base + 2000, base + 2001) == ["E", "D"]

    async def test_window_is_half_open(self, engine, clock):
        base = await self.insert_timed(engine, clock)

        # Upper bound equal to a creation time excludes those entries
        assert await engine.range_by_time(base + 1000, base + 2000) == ["C"]
        assert await engine.range_by_time(base + 3000, base + 3000) == []

    async def test_window_between_insertions(self, engine, clock):
        base = await self.insert_timed(engine, clock)

        assert await engine.range_by_time(base + 1, base + 999) == []
        assert await engine.range_by_time(base + 1500, base + 2500) == ["E", "D"]

    async def test_window_covering_everything(self, engine, clock):
        base = await self.insert_timed(engine, clock)

        result = await engine.range_by_time(base - 10**6, base + 10**6)
        assert result == ["F", "E", "D", "C", "B", "A"]

    async def test_reversed_window(self, engine, clock):
        base = await self.insert_timed(engine, clock)

        assert await engine.range_by_time(base + 3000, base) == []

    async def test_window_over_sealed_segments(self, engine, clock):
        base = await self.insert_timed(engine, clock)
        await engine.checkpoint(force_rotation=True)
        clock.now = base + 5000
        await engine.put("g", "G")

        assert await engine.range_by_time(base + 1000, base + 6000) == ["G", "F", "E", "D", "C"]
        assert await engine.range_by_time(base, base + 1) == ["B", "A"]

    async def test_position_translation(self, engine, clock):
        base = await self.insert_timed(engine, clock)

        # seqs [2, 5) -> newest-first positions [1, 4)
        assert engine._query.position_range_for_time(base + 1000, base + 3000) == (1, 4)


class TestScan:
    """Tests for visitor walks."""

    async def test_batches_in_order(self, engine, clock):
        await fill_segments(engine, clock, [2, 3], cached=2)
        batches = []

        visited = await engine.scan([batches.append], limit=None)

        assert batches == [[6, 5], [4, 3, 2], [1, 0]]
        assert visited == 7

    async def test_multiple_visitors(self, engine, clock):
        await fill_segments(engine, clock, [2], cached=1)
        totals = []
        counts = []

        await engine.scan(
            [lambda batch: totals.append(sum(batch)), lambda batch: counts.append(len(batch))]
        )

        assert totals == [2, 1]
        assert counts == [1, 2]

    async def test_limit_stops_walk(self, engine, clock):
        await fill_segments(engine, clock, [2, 2, 2], cached=2)
        batches = []

        visited = await engine.scan([batches.append], limit=3)

        # Cache (2) + newest segment (2) reaches the limit
        assert batches == [[7, 6], [5, 4]]
        assert visited == 4

    async def test_limit_reached_by_cache(self, engine, clock):
        await fill_segments(engine, clock, [2], cached=3)
        batches = []

        await engine.scan([batches.append], limit=3)

        assert batches == [[4, 3, 2]]
        assert engine.stats.file_reads == 0

    async def test_visitor_cannot_mutate_engine(self, engine):
        await engine.put("doc", {"n": 1})

        def vandal(batch):
            batch[0]["n"] = 99
            batch.clear()

        await engine.scan([vandal])

        assert await engine.get("doc") == {"n": 1}
        assert engine.cache_size() == 1

    async def test_non_callable_visitor(self, engine):
        with pytest.raises(TypeError):
            await engine.scan(["not a function"])


class TestFilter:
    """Tests for predicate filters."""

    async def test_filter_selects_values(self, engine, clock):
        await fill_segments(engine, clock, [3, 3], cached=3)

        result = await engine.filter(lambda value: value % 2 == 0, limit=None)

        assert result == [8, 6, 4, 2, 0]

    async def test_filter_on_documents(self, engine):
        await engine.put("a", {"country": "DE", "n": 1})
        await engine.put("b", {"country": "FR", "n": 2})
        await engine.put("c", {"country": "DE", "n": 3})

        result = await engine.filter(lambda doc: doc["country"] == "DE")

        assert [doc["n"] for doc in result] == [3, 1]

    async def test_filter_respects_limit(self, engine, clock):
        await fill_segments(engine, clock, [3, 3], cached=3)

        result = await engine.filter(lambda value: True, limit=3)

        assert result == [8, 7, 6]

    async def test_predicate_error_wrapped(self, engine):
        await engine.put("a", {"x": 1})
        await engine.put("b", {"y": 2})

        with pytest.raises(PredicateError) as exc_info:
            await engine.filter(lambda doc: doc["x"] == 1)

        assert isinstance(exc_info.value.__cause__, KeyError)
        assert engine.index_size() == 2

    async def test_non_callable_predicate(self, engine):
        with pytest.raises(TypeError):
            await engine.filter("value > 3")
