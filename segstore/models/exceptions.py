"""
Custom exceptions for the storage engine.
"""


class StoreError(Exception):
    """Base class for all storage engine errors."""


class InvalidKeyError(StoreError, ValueError):
    """
    Raised when a key has the wrong type, is empty, or is too large.

    Recoverable: no engine state is changed.
    """

    def __init__(self, key: object, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid key {key!r:.80}: {reason}")


class InvalidValueError(StoreError, ValueError):
    """
    Raised when a value is not JSON serializable or exceeds the size limit.

    Recoverable: no engine state is changed.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid value: {reason}")


class InvalidConfigError(StoreError, ValueError):
    """Raised when an engine configuration option is out of range."""


class CorruptStateError(StoreError):
    """
    Raised when a startup consistency check fails.

    This is a fail-fast error: the engine refuses to serve rather than
    risk further corruption of the database directory.
    """

    def __init__(self, check: str, detail: str):
        self.check = check
        self.detail = detail
        super().__init__(f"Consistency check '{check}' failed: {detail}")


class StorageIOError(StoreError, OSError):
    """
    Raised when a checkpoint, rotation or segment read fails on disk.

    In-memory state is not rolled back; the next checkpoint retries
    with the current state.
    """


class PredicateError(StoreError):
    """Raised when a filter predicate raises while being evaluated."""


class EngineClosedError(StoreError):
    """Raised when an operation is attempted on a closed engine."""
