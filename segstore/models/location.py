"""
Location - Where a key lives: its sequence number, segment and insertion time.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Location:
    """
    Primary index entry for a key.

    Attributes:
        seq: Global insertion-order sequence number, assigned once per key.
        segment_id: Id of the segment that held the key when it was inserted.
            Stays valid after that segment is sealed.
        created_at: Insertion time in milliseconds.
    """

    seq: int
    segment_id: str
    created_at: int

    def to_json(self) -> dict[str, Any]:
        """Serialize to the on-disk index entry format."""
        return {"seq": self.seq, "segment": self.segment_id, "created_at": self.created_at}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Location":
        """Deserialize from an on-disk index entry."""
        return cls(
            seq=int(data["seq"]),
            segment_id=str(data["segment"]),
            created_at=int(data["created_at"]),
        )
