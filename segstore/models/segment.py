"""
Segments - The mutable active segment and immutable sealed segments.
"""

import os
from typing import Any

from segstore.models import jsonfile


class ActiveSegment:
    """
    The single mutable segment receiving new writes.

    Values are held in memory newest first (position 0 is the most recent
    insertion still resident). The backing file is only rewritten on
    checkpoint.
    """

    def __init__(self, id: str, file_path: str, values: list[Any] | None = None) -> None:
        """
        Initialize ActiveSegment.

        Args:
            id: Segment id (creation timestamp in milliseconds).
            file_path: Path to the segment file.
            values: Existing contents, newest first.
        """
        self.id = id
        self.file_path = file_path
        self._values: list[Any] = values if values is not None else []

    @classmethod
    def load(cls, id: str, file_path: str) -> "ActiveSegment":
        values = jsonfile.read(file_path)
        if not isinstance(values, list):
            raise ValueError(f"Segment file {file_path} does not hold a JSON array")
        return cls(id, file_path, values)

    def prepend(self, value: Any) -> None:
        self._values.insert(0, value)

    def set_at(self, position: int, value: Any) -> None:
        if not 0 <= position < len(self._values):
            raise IndexError(f"Position {position} outside active segment of {len(self._values)}")
        self._values[position] = value

    def __getitem__(self, position: int) -> Any:
        return self._values[position]

    def __len__(self) -> int:
        return len(self._values)

    def slice(self, start: int, end: int) -> list[Any]:
        return self._values[start:end]

    def values(self) -> list[Any]:
        """Copy of the contents, newest first."""
        return list(self._values)

    def serialize(self) -> bytes:
        return jsonfile.encode(self._values)

    def save(self) -> int:
        """
        Write the full contents to disk.

        Returns:
            Serialized size in bytes.
        """
        payload = self.serialize()
        jsonfile.write_atomic(self.file_path, payload)
        return len(payload)


class SealedSegment:
    """
    An immutable on-disk segment produced by rotation.

    Contents are newest first, mirroring the active segment they came
    from. Reads load the whole file and are not cached.
    """

    def __init__(self, id: str, file_path: str) -> None:
        self.id = id
        self.file_path = file_path

    def exists(self) -> bool:
        return os.path.exists(self.file_path)

    def read(self) -> list[Any]:
        """Load all values, newest first."""
        values = jsonfile.read(self.file_path)
        if not isinstance(values, list):
            raise ValueError(f"Segment file {self.file_path} does not hold a JSON array")
        return values

    def update_at(self, position: int, value: Any) -> None:
        """
        Point update of a single slot, rewriting the file.

        Args:
            position: Position counted from the newest item in the segment.
            value: Replacement value.
        """
        values = self.read()
        if not 0 <= position < len(values):
            raise IndexError(
                f"Position {position} outside sealed segment {self.id} of {len(values)}"
            )
        values[position] = value
        jsonfile.write_atomic(self.file_path, jsonfile.encode(values))

    @classmethod
    def seal(cls, active: ActiveSegment, file_path: str) -> "SealedSegment":
        """
        Seal the active segment under a new file name.

        The active contents are written first so the sealed file is complete
        even if no checkpoint ran since the last write.
        """
        active.save()
        os.replace(active.file_path, file_path)
        return cls(active.id, file_path)
