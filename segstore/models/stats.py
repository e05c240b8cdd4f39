"""
EngineStats - Cache hit counters.
"""

from dataclasses import asdict, dataclass


@dataclass
class EngineStats:
    """
    Counters for where reads and writes were served.

    Attributes:
        memory_cache_reads: Reads served from the active segment.
        memory_cache_writes: Writes applied to the active segment.
        file_reads: Sealed segment files loaded from disk.
        file_writes: Sealed segment files rewritten by point updates.
    """

    memory_cache_reads: int = 0
    memory_cache_writes: int = 0
    file_reads: int = 0
    file_writes: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
