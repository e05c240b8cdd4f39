"""
QueryEngine - Point, range, time-range and full-scan reads.
"""

import bisect
import copy
import logging
from collections.abc import Callable, Iterator, Sequence
from typing import Any

from segstore.engine.index import IndexManager
from segstore.engine.segment_store import SegmentStore
from segstore.models.exceptions import PredicateError, StorageIOError
from segstore.models.stats import EngineStats

logger = logging.getLogger(__name__)

Visitor = Callable[[list[Any]], Any]
Predicate = Callable[[Any], bool]

DEFAULT_SCAN_LIMIT = 1000


class QueryEngine:
    """
    Resolves reads across the active segment and sealed segment files.

    Three position spaces meet here:
    - seq: global insertion order, 0 = oldest key
    - logical position: 0 = newest key overall (used by range_by_position)
    - in-segment position: 0 = newest item of one segment file
    """

    def __init__(self, index: IndexManager, store: SegmentStore, stats: EngineStats) -> None:
        self._index = index
        self._store = store
        self._stats = stats

    def get(self, key: str) -> Any | None:
        """
        Retrieve the value for a key.

        Raises:
            InvalidKeyError: If the key is malformed.

        Returns:
            The value, or None if the key is absent.
        """
        self._index.validate_key(key)
        location = self._index.locate(key)
        if location is None:
            return None

        offset = self._index.cache_offset_of(location.seq)
        if offset is not None:
            self._stats.memory_cache_reads += 1
            return copy.deepcopy(self._store.active[offset])

        segment = self._load(location.segment_id)
        position = self._index.sealed_position(location, len(segment))
        if not 0 <= position < len(segment):
            raise StorageIOError(
                f"Key {key!r} maps to position {position} outside segment "
                f"{location.segment_id} of {len(segment)} items"
            )
        return segment[position]

    def range_by_position(self, start: int, end: int) -> list[Any]:
        """
        Values at logical positions [start, end), newest first.

        Position 0 is the most recent insertion overall. Bounds beyond the
        index size are clamped; negative bounds or start > end give [].
        """
        size = self._index.size()
        if start < 0 or end < 0 or start > end:
            logger.debug(f"Invalid position range ({start}, {end})")
            return []
        start = min(start, size)
        end = min(end, size)

        cache_length = self._index.cache_length
        if end <= cache_length:
            self._stats.memory_cache_reads += 1
            return copy.deepcopy(self._store.active.slice(start, end))

        # Oldest entry needed, and the sealed segment that owns it
        oldest_key = self._index.key_at(size - end)
        up_to_segment = self._index.locate(oldest_key).segment_id

        result = copy.deepcopy(self._store.active.values())
        self._stats.memory_cache_reads += 1
        for segment_id in self._store.list_sealed_newest_first():
            result.extend(self._load(segment_id))
            if segment_id == up_to_segment:
                break
        return result[start:end]

    def position_range_for_time(self, from_ts: int, to_ts: int) -> tuple[int, int]:
        """
        Translate the time window [from_ts, to_ts) into logical positions.

        Creation times ascend with seq, so a left bisect over them gives the
        first seq at or after each boundary. The seq range [lo, hi) is then
        mirrored into newest-first positions [size - hi, size - lo).
        """
        created = self._index.created_at_sequence()
        lo = bisect.bisect_left(created, from_ts)
        hi = bisect.bisect_left(created, to_ts)
        size = len(created)
        return size - hi, size - lo

    def range_by_time(self, from_ts: int, to_ts: int) -> list[Any]:
        """Values inserted in the time window [from_ts, to_ts), newest first."""
        if from_ts > to_ts:
            return []
        start, end = self.position_range_for_time(from_ts, to_ts)
        logger.debug(f"Time range ({from_ts}, {to_ts}) -> positions ({start}, {end})")
        return self.range_by_position(start, end)

    def recent(self) -> list[Any]:
        """Contents of the active segment, newest first."""
        self._stats.memory_cache_reads += 1
        return copy.deepcopy(self._store.active.values())

    def _batches(self, limit: int | None) -> Iterator[list[Any]]:
        """
        Yield the active segment, then each sealed segment newest first.

        Stops once the cumulative item count reaches limit.
        """
        batch = copy.deepcopy(self._store.active.values())
        self._stats.memory_cache_reads += 1
        yield batch
        seen = len(batch)

        for segment_id in self._store.list_sealed_newest_first():
            if limit is not None and seen >= limit:
                return
            batch = self._load(segment_id)
            yield batch
            seen += len(batch)

    def scan(self, visitors: Sequence[Visitor], limit: int | None = DEFAULT_SCAN_LIMIT) -> int:
        """
        Apply each visitor to every batch of values.

        Each visitor receives its own copy of the batch, so it cannot
        modify engine contents.

        Returns:
            Number of items visited.
        """
        for visitor in visitors:
            if not callable(visitor):
                raise TypeError(f"Visitor must be callable, got {type(visitor).__name__}")

        visited = 0
        for batch in self._batches(limit):
            for visitor in visitors:
                visitor(list(batch))
            visited += len(batch)
        return visited

    def filter(self, predicate: Predicate, limit: int | None = DEFAULT_SCAN_LIMIT) -> list[Any]:
        """
        Values for which predicate(value) is true, in scan order.

        Raises:
            PredicateError: If the predicate raises.
        """
        if not callable(predicate):
            raise TypeError(f"Predicate must be callable, got {type(predicate).__name__}")

        results = []
        for batch in self._batches(limit):
            for value in batch:
                try:
                    selected = predicate(value)
                except Exception as e:
                    raise PredicateError(f"Filter predicate raised: {e!r}") from e
                if selected:
                    results.append(value)
        return results

    def _load(self, segment_id: str) -> list[Any]:
        self._stats.file_reads += 1
        return self._store.read_sealed(segment_id)
