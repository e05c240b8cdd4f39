"""
SegmentStore - Owns the active segment, sealed segment files and the catalog.
"""

import logging
import os
import re
import time
from collections.abc import Callable
from typing import Any

from segstore.config import EngineConfig
from segstore.models import jsonfile
from segstore.models.catalog import SegmentCatalog
from segstore.models.exceptions import StorageIOError
from segstore.models.location import Location
from segstore.models.segment import ActiveSegment, SealedSegment

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    """Current wall clock time in milliseconds."""
    return time.time_ns() // 1_000_000


class SegmentStore:
    """
    Durable storage for the active segment and sealed segments.

    Layout of the database directory:
    - <id>.json: the active segment (no prefix)
    - <prefix><id>.json: sealed segments
    - index.json, rindex.json, meta.json: primary index, order index, catalog

    Index and catalog files are full snapshots rewritten on every checkpoint.
    """

    INDEX_FILE = "index.json"
    ORDER_INDEX_FILE = "rindex.json"
    CATALOG_FILE = "meta.json"
    RESERVED_FILES = frozenset({INDEX_FILE, ORDER_INDEX_FILE, CATALOG_FILE})

    SEGMENT_PATTERN = re.compile(r"^(?P<prefix>.*?)(?P<id>\d+)\.json$")

    def __init__(self, config: EngineConfig, clock: Callable[[], int] | None = None) -> None:
        """
        Initialize SegmentStore.

        Args:
            config: Engine configuration (path, prefix, rotation thresholds).
            clock: Returns the current time in milliseconds. Used for segment ids.
        """
        self._config = config
        self._clock = clock or wall_clock_ms
        self.database_path = os.path.abspath(config.database_path)
        self.file_prefix = config.file_prefix

        self.active: ActiveSegment
        self.catalog = SegmentCatalog()

        # Last issued segment id, keeps ids strictly increasing
        self._last_segment_id: int = -1
        self._rotated_at: float = time.monotonic()

    # Paths and listing

    def path(self, file_name: str) -> str:
        return os.path.join(self.database_path, file_name)

    def active_path(self, segment_id: str) -> str:
        return self.path(f"{segment_id}.json")

    def sealed_path(self, segment_id: str) -> str:
        return self.path(f"{self.file_prefix}{segment_id}.json")

    def _segment_files(self) -> list[tuple[str, str]]:
        """
        List segment files in the database directory.

        Returns:
            (prefix, segment_id) pairs; prefix is "" for active segment files.
        """
        result = []
        for filename in os.listdir(self.database_path):
            if filename in self.RESERVED_FILES:
                continue
            match = self.SEGMENT_PATTERN.match(filename)
            if match:
                result.append((match.group("prefix"), match.group("id")))
        return result

    def list_sealed_newest_first(self) -> list[str]:
        """
        Sealed segment ids ordered by creation time, most recent first.

        The age of a segment is derived from its id (a millisecond timestamp).
        """
        ids = [sid for prefix, sid in self._segment_files() if prefix == self.file_prefix]
        return sorted(ids, key=int, reverse=True)

    def list_active_candidates(self) -> list[str]:
        """Ids of unprefixed segment files, most recent first."""
        ids = [sid for prefix, sid in self._segment_files() if prefix == ""]
        return sorted(ids, key=int, reverse=True)

    def _observe_segment_ids(self) -> None:
        for _, sid in self._segment_files():
            self._last_segment_id = max(self._last_segment_id, int(sid))
        for sid in self.catalog:
            self._last_segment_id = max(self._last_segment_id, int(sid))

    # Active segment

    def _new_segment_id(self) -> str:
        segment_id = max(self._clock(), self._last_segment_id + 1)
        self._last_segment_id = segment_id
        return str(segment_id)

    def create_active_segment(self) -> ActiveSegment:
        """Allocate a new empty active segment; its file is written immediately."""
        segment_id = self._new_segment_id()
        # Swapped in before the write; a failed write is retried by the next checkpoint
        self.active = ActiveSegment(segment_id, self.active_path(segment_id))
        try:
            self.active.save()
        except OSError as e:
            raise StorageIOError(f"Failed to create active segment {segment_id}: {e}") from e
        logger.debug(f"Created active segment {segment_id}")
        return self.active

    def open_active(self, segment_id: str | None) -> ActiveSegment:
        """
        Load the active segment from disk, or create a fresh one.

        Args:
            segment_id: Id of an existing active segment file, or None.
        """
        self._observe_segment_ids()
        if segment_id is None:
            logger.info("Creating fresh active segment")
            return self.create_active_segment()

        self.active = ActiveSegment.load(segment_id, self.active_path(segment_id))
        logger.info(f"Loaded active segment {segment_id} with {len(self.active)} items")
        return self.active

    def append_active(self, value: Any) -> None:
        """Prepend value to the in-memory active segment (persisted on checkpoint)."""
        self.active.prepend(value)

    # Catalog and index files

    def load_catalog(self) -> SegmentCatalog:
        catalog_path = self.path(self.CATALOG_FILE)
        if os.path.exists(catalog_path):
            self.catalog = SegmentCatalog.from_json(jsonfile.read(catalog_path))
        else:
            self.catalog = SegmentCatalog()
        return self.catalog

    def load_index_files(self) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Read raw primary and order index snapshots.

        Returns:
            (index, rindex) as decoded JSON objects, empty if absent.
        """
        result = []
        for name in (self.INDEX_FILE, self.ORDER_INDEX_FILE):
            file_path = self.path(name)
            result.append(jsonfile.read(file_path) if os.path.exists(file_path) else {})
        return result[0], result[1]

    def _flush_catalog(self) -> None:
        jsonfile.write_atomic(
            self.path(self.CATALOG_FILE), jsonfile.encode(self.catalog.to_json(), pretty=True)
        )

    def checkpoint(self, primary: dict[str, Location], order: list[str]) -> int:
        """
        Persist the active segment, both indexes and the catalog.

        Every file is replaced atomically. In-memory state is not altered.

        Args:
            primary: key -> Location.
            order: seq -> key.

        Returns:
            Serialized size of the active segment in bytes.
        """
        pretty = len(primary) <= jsonfile.PRETTY_PRINT_LIMIT
        try:
            active_bytes = self.active.save()
            jsonfile.write_atomic(
                self.path(self.INDEX_FILE),
                jsonfile.encode({key: loc.to_json() for key, loc in primary.items()}, pretty),
            )
            jsonfile.write_atomic(
                self.path(self.ORDER_INDEX_FILE),
                jsonfile.encode({str(seq): key for seq, key in enumerate(order)}, pretty),
            )
            self._flush_catalog()
        except OSError as e:
            raise StorageIOError(f"Checkpoint failed: {e}") from e

        logger.debug(
            f"Checkpoint stored {len(self.active)} cached items, "
            f"{len(primary)} index entries ({active_bytes} bytes active)"
        )
        return active_bytes

    # Rotation

    @property
    def seconds_since_rotation(self) -> float:
        return time.monotonic() - self._rotated_at

    def maybe_rotate(
        self, active_byte_size: int, elapsed_seconds: float, force: bool = False
    ) -> bool:
        """
        Seal the active segment if it is too large or too old.

        Args:
            active_byte_size: Serialized size of the active segment.
            elapsed_seconds: Time since the last rotation.
            force: Rotate regardless of thresholds.

        Returns:
            True if a rotation occurred.
        """
        space_exceeded = active_byte_size >= self._config.persist_after_bytes
        if space_exceeded:
            logger.info(f"Active segment size {active_byte_size} bytes exceeded threshold")
        time_exceeded = elapsed_seconds >= self._config.persist_after_seconds
        if time_exceeded:
            logger.info(f"Active segment age {elapsed_seconds:.1f}s exceeded threshold")

        if not (space_exceeded or time_exceeded or force):
            return False
        # Only a non-empty segment is archived
        if len(self.active) == 0:
            return False

        self._rotate()
        return True

    def _rotate(self) -> None:
        active = self.active
        size = len(active)
        sealed_path = self.sealed_path(active.id)
        try:
            SealedSegment.seal(active, sealed_path)
        except OSError as e:
            raise StorageIOError(f"Rotation of segment {active.id} failed: {e}") from e

        # From here on the segment is sealed: the in-memory catalog and the
        # active segment are swapped even if the catalog write fails, and the
        # next checkpoint rewrites meta.json. A crash before that leaves a
        # sealed file without a catalog entry, which the startup checks report.
        self.catalog.record(active.id, size)
        logger.info(f"Sealed segment {active.id} with {size} items -> {sealed_path}")
        flush_error = None
        try:
            self._flush_catalog()
        except OSError as e:
            logger.warning(f"Catalog write after sealing segment {active.id} failed: {e}")
            flush_error = e
        self._rotated_at = time.monotonic()
        self.create_active_segment()
        if flush_error is not None:
            raise StorageIOError(
                f"Catalog write after sealing segment {active.id} failed: {flush_error}"
            ) from flush_error

    # Sealed segments

    def sealed_segment(self, segment_id: str) -> SealedSegment:
        return SealedSegment(segment_id, self.sealed_path(segment_id))

    def read_sealed(self, segment_id: str) -> list[Any]:
        """Load one sealed segment fully into memory, newest first."""
        try:
            return self.sealed_segment(segment_id).read()
        except (OSError, ValueError) as e:
            raise StorageIOError(f"Failed to read sealed segment {segment_id}: {e}") from e

    def update_sealed_at(self, segment_id: str, position_from_newest: int, value: Any) -> None:
        """In-place point update of a single slot of a sealed segment."""
        try:
            self.sealed_segment(segment_id).update_at(position_from_newest, value)
        except (OSError, ValueError, IndexError) as e:
            raise StorageIOError(f"Failed to update sealed segment {segment_id}: {e}") from e
        logger.debug(f"Updated position {position_from_newest} of sealed segment {segment_id}")
