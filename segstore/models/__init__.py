"""
Data models for the storage engine.
"""

from segstore.models.catalog import SegmentCatalog
from segstore.models.exceptions import (
    CorruptStateError,
    EngineClosedError,
    InvalidConfigError,
    InvalidKeyError,
    InvalidValueError,
    PredicateError,
    StorageIOError,
    StoreError,
)
from segstore.models.location import Location
from segstore.models.segment import ActiveSegment, SealedSegment
from segstore.models.stats import EngineStats

__all__ = [
    "ActiveSegment",
    "SealedSegment",
    "SegmentCatalog",
    "Location",
    "EngineStats",
    "StoreError",
    "InvalidKeyError",
    "InvalidValueError",
    "InvalidConfigError",
    "CorruptStateError",
    "StorageIOError",
    "PredicateError",
    "EngineClosedError",
]
