"""
Segment-archiving key-value storage engine.

This package provides an embedded key-value store with:
- put(key, value) - Insert, or overwrite in place without changing position
- get(key) - Point lookup across memory and sealed segment files
- range_by_position(start, end) - Values by recency, newest first
- range_by_time(t0, t1) - Values inserted in a time window
- scan(visitors, limit) / filter(predicate, limit) - Full walks
"""

from segstore.config import EngineConfig
from segstore.engine.engine import Engine, EngineState
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

__all__ = [
    "Engine",
    "EngineConfig",
    "EngineState",
    "Location",
    "StoreError",
    "InvalidKeyError",
    "InvalidValueError",
    "InvalidConfigError",
    "CorruptStateError",
    "StorageIOError",
    "PredicateError",
    "EngineClosedError",
]
