"""
IndexManager - Primary index (key -> location) and order index (seq -> key).
"""

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from segstore.config import EngineConfig
from segstore.engine.segment_store import SegmentStore, wall_clock_ms
from segstore.models.exceptions import InvalidKeyError, InvalidValueError
from segstore.models.location import Location
from segstore.models.stats import EngineStats

logger = logging.getLogger(__name__)


class IndexManager:
    """
    Keeps the primary and order indexes consistent with the active segment.

    Invariants (hold after every put):
    - len(primary) == len(order)
    - order holds exactly seqs 0..len(primary)-1, no gaps
    - cache length == len(primary) - sum of catalog sizes

    The active segment itself lives in the SegmentStore; this class is the
    only writer to it.
    """

    def __init__(
        self,
        store: SegmentStore,
        config: EngineConfig,
        stats: EngineStats,
        primary: dict[str, Location] | None = None,
        order: list[str] | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize IndexManager.

        Args:
            store: Segment store holding the active segment and catalog.
            config: Engine configuration (key/value size limits).
            stats: Shared hit counters.
            primary: Recovered key -> Location mapping.
            order: Recovered seq -> key list.
            clock: Returns the current time in milliseconds.
        """
        self._store = store
        self._config = config
        self._stats = stats
        self._clock = clock or wall_clock_ms
        self._primary: dict[str, Location] = {}
        self._order: list[str] = []
        self._created: list[int] = []

        for key in order or []:
            self._insert(key, (primary or {})[key])

    # Validation

    def validate_key(self, key: Any) -> str:
        if not isinstance(key, str):
            raise InvalidKeyError(key, f"must be a string, got {type(key).__name__}")
        if not key:
            raise InvalidKeyError(key, "cannot be empty")
        size = len(key.encode("utf-8"))
        if size > self._config.max_key_size_bytes:
            raise InvalidKeyError(
                key, f"size {size} exceeds max_key_size_bytes={self._config.max_key_size_bytes}"
            )
        return key

    def normalize_value(self, value: Any) -> Any:
        """
        Check that value is JSON serializable and within the size limit.

        Returns:
            A detached copy of the value as it will read back from disk.
        """
        try:
            text = json.dumps(value, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise InvalidValueError(f"not serializable: {e}") from e

        size = len(text.encode("utf-8"))
        if size > self._config.max_value_size_bytes:
            raise InvalidValueError(
                f"size {size} exceeds max_value_size_bytes={self._config.max_value_size_bytes}"
            )
        return json.loads(text)

    # Mutation

    def _insert(self, key: str, location: Location) -> None:
        # Bounds-checked: the only valid position for a new seq is the end
        if location.seq != len(self._order):
            raise IndexError(
                f"Cannot insert seq {location.seq} into order index of size {len(self._order)}"
            )
        if key in self._primary:
            raise KeyError(f"Key {key!r} is already indexed")
        self._order.append(key)
        self._created.append(location.created_at)
        self._primary[key] = location

    def put(self, key: str, value: Any) -> bool:
        """
        Insert a new key or overwrite the value of an existing one.

        Existing keys keep their seq, segment and creation time; the value is
        replaced wherever it currently lives (active segment or sealed file).

        Raises:
            InvalidKeyError: Key has the wrong type or size.
            InvalidValueError: Value is not serializable or too large.

        Returns:
            True if successful.
        """
        self.validate_key(key)
        value = self.normalize_value(value)

        location = self._primary.get(key)
        if location is not None:
            self._overwrite(key, location, value)
            return True

        location = Location(
            seq=len(self._order),
            segment_id=self._store.active.id,
            created_at=self._clock(),
        )
        self._store.append_active(value)
        self._insert(key, location)
        self._stats.memory_cache_writes += 1
        return True

    def _overwrite(self, key: str, location: Location, value: Any) -> None:
        offset = self.cache_offset_of(location.seq)
        if offset is not None:
            logger.debug(f"Updating key {key!r} in active segment")
            self._store.active.set_at(offset, value)
            self._stats.memory_cache_writes += 1
            return

        logger.debug(f"Updating key {key!r} in sealed segment {location.segment_id}")
        segment_length = self._store.catalog.size_of(location.segment_id)
        if segment_length is None:
            raise KeyError(f"Segment {location.segment_id} of key {key!r} is not in the catalog")
        position = self.sealed_position(location, segment_length)
        self._store.update_sealed_at(location.segment_id, position, value)
        self._stats.file_writes += 1

    # Lookup

    def locate(self, key: str) -> Location | None:
        return self._primary.get(key)

    def key_at(self, seq: int) -> str:
        if not 0 <= seq < len(self._order):
            raise IndexError(f"seq {seq} outside order index of size {len(self._order)}")
        return self._order[seq]

    def cache_offset_of(self, seq: int) -> int | None:
        """
        Position of seq inside the active segment, if still resident.

        Returns:
            Offset counted from the newest cached value, or None if the
            entry has been sealed.
        """
        position = len(self._order) - (seq + 1)
        if 0 <= position < self.cache_length:
            return position
        return None

    def sealed_position(self, location: Location, segment_length: int) -> int:
        """
        Position of a sealed entry inside its (newest-first) segment file.

        The catalog offset of the segment is the number of items sealed
        before it, so seq - offset is the position counted from the oldest
        item in the segment.
        """
        offset = self._store.catalog.offset_of(location.segment_id)
        return segment_length - 1 - (location.seq - offset)

    def size(self) -> int:
        return len(self._order)

    def __len__(self) -> int:
        return len(self._order)

    @property
    def cache_length(self) -> int:
        return len(self._store.active)

    @property
    def primary(self) -> Mapping[str, Location]:
        return MappingProxyType(self._primary)

    @property
    def order(self) -> Sequence[str]:
        return tuple(self._order)

    def created_at_sequence(self) -> list[int]:
        """Creation timestamps in seq order (ascending)."""
        return self._created

    def snapshot(self) -> tuple[dict[str, Location], list[str]]:
        """The raw structures handed to SegmentStore.checkpoint."""
        return self._primary, self._order
