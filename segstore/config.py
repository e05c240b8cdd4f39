"""
EngineConfig - Tunable options for the storage engine.
"""

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any

from segstore.models.exceptions import InvalidConfigError

logger = logging.getLogger(__name__)

MB = 1024 * 1024


@dataclass
class EngineConfig:
    """
    Configuration for the storage engine.

    Attributes:
        database_path: Directory holding segments, index files and catalog.
        logfile_path: Optional file that engine log records are appended to.
        persist_after_MB: Seal the active segment once its serialized
            size reaches this many megabytes.
        persist_after_seconds: Seal the active segment once it is this old.
        flush_interval: Seconds between periodic checkpoints.
        file_prefix: Prefix distinguishing sealed segment files from the
            active one. Must contain a `_` separator.
        debug: Enable verbose (DEBUG level) logging.
        max_key_size_bytes: Maximum UTF-8 size of a key.
        max_value_size_bytes: Maximum serialized size of a value.
    """

    database_path: str = "./database/"
    logfile_path: str | None = None
    persist_after_MB: float = 20
    persist_after_seconds: float = 12 * 60 * 60
    flush_interval: float = 5 * 60
    file_prefix: str = "dbjs_"
    debug: bool = False
    max_key_size_bytes: int = 1024
    max_value_size_bytes: int = MB

    # Bounds: (exclusive lower, inclusive upper) unless noted
    MAX_PERSIST_AFTER_MB = 100
    MIN_PERSIST_AFTER_SECONDS = 4
    MAX_PERSIST_AFTER_SECONDS = 100 * 24 * 60 * 60
    MIN_FLUSH_INTERVAL = 3
    MAX_FLUSH_INTERVAL = 10 * 60 * 60
    MIN_KEY_SIZE_BYTES = 100
    MAX_KEY_SIZE_BYTES = 64 * 1024
    MIN_VALUE_SIZE_BYTES = 1024  # inclusive
    MAX_VALUE_SIZE_BYTES = 10 * MB

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """
        Check every option against its allowed range.

        Raises:
            InvalidConfigError: If any option is out of range.
        """
        if not self.database_path or not str(self.database_path).strip():
            raise InvalidConfigError("database_path cannot be empty")

        if not 0 < self.persist_after_MB <= self.MAX_PERSIST_AFTER_MB:
            raise InvalidConfigError(
                f"persist_after_MB must be in range (0, {self.MAX_PERSIST_AFTER_MB}], "
                f"got {self.persist_after_MB}"
            )

        if not (
            self.MIN_PERSIST_AFTER_SECONDS
            < self.persist_after_seconds
            <= self.MAX_PERSIST_AFTER_SECONDS
        ):
            raise InvalidConfigError(
                f"persist_after_seconds must be in range "
                f"({self.MIN_PERSIST_AFTER_SECONDS}, {self.MAX_PERSIST_AFTER_SECONDS}], "
                f"got {self.persist_after_seconds}"
            )

        if not self.MIN_FLUSH_INTERVAL < self.flush_interval <= self.MAX_FLUSH_INTERVAL:
            raise InvalidConfigError(
                f"flush_interval must be in range "
                f"({self.MIN_FLUSH_INTERVAL}, {self.MAX_FLUSH_INTERVAL}], "
                f"got {self.flush_interval}"
            )

        if not self.MIN_KEY_SIZE_BYTES < self.max_key_size_bytes <= self.MAX_KEY_SIZE_BYTES:
            raise InvalidConfigError(
                f"max_key_size_bytes must be in range "
                f"({self.MIN_KEY_SIZE_BYTES}, {self.MAX_KEY_SIZE_BYTES}], "
                f"got {self.max_key_size_bytes}"
            )

        if not (
            self.MIN_VALUE_SIZE_BYTES
            <= self.max_value_size_bytes
            <= self.MAX_VALUE_SIZE_BYTES
        ):
            raise InvalidConfigError(
                f"max_value_size_bytes must be in range "
                f"[{self.MIN_VALUE_SIZE_BYTES}, {self.MAX_VALUE_SIZE_BYTES}], "
                f"got {self.max_value_size_bytes}"
            )

        if not self.file_prefix or "_" not in self.file_prefix:
            raise InvalidConfigError(
                f"file_prefix must contain a '_' separator, got {self.file_prefix!r}"
            )
        # A purely numeric prefix would be indistinguishable from a segment id
        if self.file_prefix.replace("_", "").isdigit():
            raise InvalidConfigError(
                f"file_prefix cannot consist of digits only, got {self.file_prefix!r}"
            )

    @property
    def persist_after_bytes(self) -> int:
        """Rotation size threshold in bytes."""
        return int(self.persist_after_MB * MB)

    @classmethod
    def from_mapping(cls, overrides: Mapping[str, Any]) -> "EngineConfig":
        """
        Build a config from defaults plus user overrides.

        Args:
            overrides: Option names mapped to values. Unknown names are rejected.

        Returns:
            A validated EngineConfig.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise InvalidConfigError(f"Unknown config options: {sorted(unknown)}")

        for name, value in overrides.items():
            logger.debug(f"Overriding config option {name}={value!r}")
        return cls(**dict(overrides))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
