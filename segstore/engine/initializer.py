"""
EngineInitializer - Load persisted state and run startup consistency checks.
"""

import logging
import os
from pathlib import Path
from typing import Any

from segstore.engine.segment_store import SegmentStore
from segstore.models import jsonfile
from segstore.models.exceptions import CorruptStateError
from segstore.models.location import Location

logger = logging.getLogger(__name__)


class EngineInitializer:
    """
    Handles engine startup.

    Responsibilities:
    - Remove orphaned temp files from interrupted writes
    - Load or create the active segment
    - Load the primary index, order index and catalog
    - Verify they agree with each other and with the segment files on disk

    Any failed check raises CorruptStateError; the engine must not serve
    from an inconsistent directory.
    """

    def __init__(self, store: SegmentStore) -> None:
        """
        Initialize the engine initializer.

        Args:
            store: Segment store bound to the database directory.
        """
        self._store = store
        self.storage_dir = store.database_path

    def _cleanup_temp_files(self) -> None:
        """
        Remove orphaned .tmp files from interrupted checkpoints.

        The file they were replacing is still intact.
        """
        for filename in os.listdir(self.storage_dir):
            if filename.endswith(jsonfile.TEMP_SUFFIX):
                tmp_path = os.path.join(self.storage_dir, filename)
                logger.warning(f"Removing orphaned temp file {tmp_path}")
                os.remove(tmp_path)

    def recover(self) -> tuple[dict[str, Location], list[str]]:
        """
        Recover state from disk.

        The store's active segment and catalog are populated in place.

        Returns:
            Tuple of:
            - Primary index (key -> Location)
            - Order index (seq -> key)

        Raises:
            CorruptStateError: If any consistency check fails.
        """
        self._cleanup_temp_files()

        candidates = self._store.list_active_candidates()
        if len(candidates) > 1:
            self._fail("single active segment", f"found {len(candidates)}: {candidates}")

        try:
            catalog = self._store.load_catalog()
            active = self._store.open_active(candidates[0] if candidates else None)
            raw_index, raw_rindex = self._store.load_index_files()
        except (ValueError, KeyError, TypeError) as e:
            # Unparseable JSON or malformed entries
            raise CorruptStateError("readable state files", str(e)) from e

        for name, raw in (("index.json", raw_index), ("rindex.json", raw_rindex)):
            if not isinstance(raw, dict):
                self._fail("readable state files", f"{name} does not hold a JSON object")

        order = self._check_order_index(raw_rindex)
        primary = self._check_primary_index(raw_index, order)

        index_size = len(primary)
        cache_length = len(active)

        sealed_ids = self._store.list_sealed_newest_first()
        for segment_id in sealed_ids:
            if segment_id not in catalog:
                self._fail(
                    "catalog covers sealed files",
                    f"segment file {self._store.sealed_path(segment_id)} not in catalog",
                )

        num_items = cache_length
        for segment_id in sealed_ids:
            try:
                length = len(self._store.sealed_segment(segment_id).read())
            except (OSError, ValueError) as e:
                raise CorruptStateError("readable sealed segments", str(e)) from e
            if length != catalog.size_of(segment_id):
                self._fail(
                    "catalog sizes match files",
                    f"segment {segment_id} holds {length} items, "
                    f"catalog says {catalog.size_of(segment_id)}",
                )
            num_items += length

        if num_items != index_size:
            self._fail(
                "item count",
                f"{num_items} items in segments, index holds {index_size}",
            )

        if catalog.total() != index_size - cache_length:
            self._fail(
                "catalog total",
                f"catalog sizes sum to {catalog.total()}, "
                f"expected index size {index_size} - cache {cache_length}",
            )

        logger.info(
            f"Recovered {index_size} keys: {cache_length} cached, "
            f"{len(sealed_ids)} sealed segments"
        )
        return primary, order

    def _check_order_index(self, raw_rindex: dict[str, Any]) -> list[str]:
        """Order index keys must be exactly 0..n-1."""
        n = len(raw_rindex)
        if n == 0:
            return []

        try:
            seqs = [int(seq) for seq in raw_rindex]
        except ValueError as e:
            raise CorruptStateError("order index keys", str(e)) from e

        # Sum-of-range check, plus bounds so offsetting errors cannot cancel out
        if sum(seqs) != (n - 1) * n // 2 or min(seqs) != 0 or max(seqs) != n - 1:
            self._fail("order index keys", f"keys of {n} entries do not form 0..{n - 1}")
        if len(set(seqs)) != n:
            self._fail("order index keys", "duplicate sequence numbers")

        order = [""] * n
        for seq, key in zip(seqs, raw_rindex.values()):
            order[seq] = key
        logger.debug("Order index healthy")
        return order

    def _check_primary_index(
        self, raw_index: dict[str, Any], order: list[str]
    ) -> dict[str, Location]:
        if len(raw_index) != len(order):
            self._fail(
                "index sizes",
                f"index holds {len(raw_index)} entries, order index {len(order)}",
            )

        primary: dict[str, Location] = {}
        for seq, key in enumerate(order):
            if key not in raw_index:
                self._fail("index agreement", f"order index key {key!r} missing from index")
            try:
                location = Location.from_json(raw_index[key])
            except (KeyError, TypeError, ValueError) as e:
                raise CorruptStateError("index entries", f"key {key!r}: {e!r}") from e
            if location.seq != seq:
                self._fail(
                    "index agreement",
                    f"key {key!r} has seq {location.seq} in index, {seq} in order index",
                )
            primary[key] = location
        return primary

    def _fail(self, check: str, detail: str) -> None:
        logger.critical(f"Consistency check failed: {check}: {detail}")
        raise CorruptStateError(check, detail)

    def __enter__(self) -> "EngineInitializer":
        """Context manager entry."""
        Path(self.storage_dir).mkdir(parents=True, exist_ok=True)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        pass
