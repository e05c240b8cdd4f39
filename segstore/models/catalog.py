"""
SegmentCatalog - Item counts of sealed segments, in seal order.
"""

from collections.abc import Iterator
from typing import Any


class SegmentCatalog:
    """
    Maps sealed segment id -> number of items in that segment.

    Segment ids are decimal millisecond timestamps, so numeric order is
    seal order. The catalog is used to compute the global sequence offset
    of a sealed segment: the sum of the sizes of all segments sealed
    before it.
    """

    def __init__(self, sizes: dict[str, int] | None = None) -> None:
        self._sizes: dict[str, int] = {}
        for segment_id, size in sorted((sizes or {}).items(), key=lambda kv: int(kv[0])):
            self._sizes[segment_id] = size

    def record(self, segment_id: str, size: int) -> None:
        """
        Register a newly sealed segment.

        Args:
            segment_id: Id of the sealed segment. Must be newer than every
                segment already in the catalog.
            size: Number of items sealed into it.
        """
        if segment_id in self._sizes:
            raise ValueError(f"Segment {segment_id} is already in the catalog")
        if self._sizes and int(segment_id) <= int(next(reversed(self._sizes))):
            raise ValueError(f"Segment {segment_id} is older than the newest sealed segment")
        if size < 0:
            raise ValueError(f"Segment size must be >= 0, got {size}")
        self._sizes[segment_id] = size

    def size_of(self, segment_id: str) -> int | None:
        return self._sizes.get(segment_id)

    def offset_of(self, segment_id: str) -> int:
        """
        Sequence offset of a sealed segment.

        Returns:
            Sum of sizes of all segments sealed strictly before `segment_id`.
        """
        offset = 0
        for sid, size in self._sizes.items():
            if sid == segment_id:
                return offset
            offset += size
        raise KeyError(f"Segment {segment_id} is not in the catalog")

    def total(self) -> int:
        return sum(self._sizes.values())

    def __contains__(self, segment_id: object) -> bool:
        return segment_id in self._sizes

    def __len__(self) -> int:
        return len(self._sizes)

    def __iter__(self) -> Iterator[str]:
        """Iterate segment ids oldest first."""
        return iter(self._sizes)

    def items(self) -> list[tuple[str, int]]:
        return list(self._sizes.items())

    def to_json(self) -> dict[str, Any]:
        """Serialize to the on-disk meta format."""
        return {"archive": {sid: {"size": size} for sid, size in self._sizes.items()}}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "SegmentCatalog":
        """Deserialize from the on-disk meta format."""
        archive = data.get("archive", {}) if isinstance(data, dict) else None
        if not isinstance(archive, dict):
            raise ValueError("meta file does not hold an archive object")
        return cls({str(sid): int(entry["size"]) for sid, entry in archive.items()})
