"""
Engine - Main database engine API.
"""

import asyncio
import contextlib
import logging
import os
import signal
import threading
from collections.abc import AsyncIterator, Callable, Iterable, Sequence
from enum import Enum
from typing import Any

from segstore.config import EngineConfig
from segstore.engine.index import IndexManager
from segstore.engine.initializer import EngineInitializer
from segstore.engine.query import DEFAULT_SCAN_LIMIT, Predicate, QueryEngine, Visitor
from segstore.engine.segment_store import SegmentStore
from segstore.models.exceptions import EngineClosedError, StoreError
from segstore.models.location import Location
from segstore.models.stats import EngineStats

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class EngineState(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    CLOSING = "closing"
    CLOSED = "closed"


class Engine:
    """
    Segment-archiving key-value storage engine.

    Provides:
    - put(key, value): Insert a key or overwrite its value in place
    - get(key): Retrieve a value by key
    - range_by_position(start, end): Values by recency, newest first
    - range_by_time(t0, t1): Values inserted in a time window
    - scan(visitors, limit) / filter(predicate, limit): Full walks
    - checkpoint(): Persist state, rotating the active segment if due

    Architecture:
    - New values are prepended to the in-memory active segment
    - Periodic checkpoints write the active segment, indexes and catalog
    - Once the active segment is large or old enough it is sealed into an
      immutable file and a fresh active segment is started
    - Reads check the active segment first, then the owning sealed file

    Every public operation holds one asyncio.Lock, so reads and writes never
    interleave with a checkpoint or rotation. Blocking file I/O runs in the
    default thread pool while the lock is held.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        clock: Callable[[], int] | None = None,
        **options: Any,
    ) -> None:
        """
        Initialize the database engine.

        Args:
            config: Engine configuration. If omitted, built from `options`.
            clock: Returns the current time in milliseconds. Defaults to the
                wall clock; tests inject a deterministic one.
            **options: EngineConfig fields, used when config is None.

        Raises:
            InvalidConfigError: If an option is out of range.
            CorruptStateError: If the database directory fails a consistency check.
        """
        if config is None:
            config = EngineConfig.from_mapping(options)
        elif options:
            raise TypeError("Pass either an EngineConfig or keyword options, not both")

        self._state = EngineState.INITIALIZING
        self._config = config

        database_path = os.path.abspath(config.database_path)

        # Check parent directory is writable (if dir doesn't exist)
        if not os.path.exists(database_path):
            parent = os.path.dirname(database_path)
            if not os.access(parent, os.W_OK):
                raise PermissionError(
                    f"Cannot create database_path: {database_path}. "
                    f"Parent directory not writable: {parent}"
                )
        elif not os.access(database_path, os.W_OK):
            raise PermissionError(f"database_path not writable: {database_path}")

        self._log_handler: logging.Handler | None = None
        self._configure_logging()

        self._stats = EngineStats()
        self._store = SegmentStore(config, clock=clock)

        # Exclusion lock and periodic checkpoint task (lazy initialized in async context)
        self._lock: asyncio.Lock | None = None
        self._checkpoint_task: asyncio.Task | None = None
        self._close_future: asyncio.Future | None = None
        self._async_initialized: bool = False
        self._init_lock = threading.Lock()

        # (loop, signal) pairs installed by install_signal_handlers()
        self._signal_handlers: list[tuple[asyncio.AbstractEventLoop, signal.Signals]] = []

        try:
            with EngineInitializer(self._store) as initializer:
                primary, order = initializer.recover()
        except StoreError:
            self._detach_log_handler()
            raise

        self._index = IndexManager(
            self._store, config, self._stats, primary=primary, order=order, clock=clock
        )
        self._query = QueryEngine(self._index, self._store, self._stats)

        self._state = EngineState.RUNNING
        self.info()

    @classmethod
    async def create(
        cls,
        config: EngineConfig | None = None,
        *,
        clock: Callable[[], int] | None = None,
        **options: Any,
    ) -> "Engine":
        """
        Async factory method to create and initialize engine.

        Returns:
            Initialized Engine instance with the periodic checkpoint running.
        """
        engine = cls(config, clock=clock, **options)
        await engine._ensure_async_initialized()
        return engine

    async def _ensure_async_initialized(self) -> None:
        """
        Ensure asyncio primitives exist and the checkpoint worker runs.

        Thread-safe: Uses double-checked locking with threading.Lock
        to prevent races during concurrent initialization.
        """
        if self._async_initialized:
            return

        with self._init_lock:
            if not self._async_initialized:
                self._lock = asyncio.Lock()
                self._async_initialized = True
        self._start_checkpoint_worker()

    def _configure_logging(self) -> None:
        package_logger = logging.getLogger("segstore")
        if self._config.debug:
            package_logger.setLevel(logging.DEBUG)

        if self._config.logfile_path:
            handler = logging.FileHandler(self._config.logfile_path)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            package_logger.addHandler(handler)
            self._log_handler = handler

    def _detach_log_handler(self) -> None:
        if self._log_handler is not None:
            logging.getLogger("segstore").removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def stats(self) -> EngineStats:
        return self._stats

    def _check_open(self) -> None:
        if self._state is not EngineState.RUNNING:
            raise EngineClosedError(f"Engine is {self._state.value}")

    @contextlib.asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        """Hold the exclusion lock for one operation."""
        self._check_open()
        await self._ensure_async_initialized()
        async with self._lock:
            # State may have changed while waiting for the lock
            self._check_open()
            yield

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Run a blocking function in the thread pool.

        If the caller is cancelled, the lock stays held until the thread
        finishes.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, fn, *args)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            with contextlib.suppress(Exception):
                await future
            raise

    # Writes

    async def put(self, key: str, value: Any) -> bool:
        """
        Insert a key, or overwrite the value of an existing key in place.

        Args:
            key: Non-empty string of at most max_key_size_bytes.
            value: JSON-serializable value of at most max_value_size_bytes.

        Raises:
            InvalidKeyError: If the key is malformed.
            InvalidValueError: If the value is not serializable or too large.

        Returns:
            True if successful.
        """
        async with self._exclusive():
            return await self._call(self._index.put, key, value)

    # Reads

    async def get(self, key: str) -> Any | None:
        """
        Retrieve a value by key.

        Raises:
            InvalidKeyError: If the key is malformed.

        Returns:
            The value if found, None otherwise.
        """
        async with self._exclusive():
            return await self._call(self._query.get, key)

    async def range_by_position(self, start: int, end: int) -> list[Any]:
        """
        Values at positions [start, end) counted from the newest insertion.

        Returns:
            Values newest first.
        """
        async with self._exclusive():
            return await self._call(self._query.range_by_position, start, end)

    async def range_by_time(self, from_ts: int, to_ts: int) -> list[Any]:
        """
        Values inserted at times in [from_ts, to_ts), in milliseconds.

        Returns:
            Values newest first.
        """
        async with self._exclusive():
            return await self._call(self._query.range_by_time, from_ts, to_ts)

    async def recent(self) -> list[Any]:
        """Values still held in the active segment, newest first."""
        async with self._exclusive():
            return self._query.recent()

    async def scan(
        self, visitors: Sequence[Visitor], limit: int | None = DEFAULT_SCAN_LIMIT
    ) -> int:
        """
        Apply each visitor to the active segment, then each sealed segment.

        Args:
            visitors: Callables receiving a newest-first batch of values.
            limit: Stop once this many items were visited (None = all).

        Returns:
            Number of items visited.
        """
        async with self._exclusive():
            return await self._call(self._query.scan, visitors, limit)

    async def filter(
        self, predicate: Predicate, limit: int | None = DEFAULT_SCAN_LIMIT
    ) -> list[Any]:
        """
        Values for which predicate(value) is true.

        Raises:
            PredicateError: If the predicate raises.
        """
        async with self._exclusive():
            return await self._call(self._query.filter, predicate, limit)

    def locate(self, key: str) -> Location | None:
        """Index entry of a key, for inspection and debugging."""
        return self._index.locate(key)

    def index_size(self) -> int:
        return self._index.size()

    def cache_size(self) -> int:
        return self._index.cache_length

    def info(self) -> dict[str, Any]:
        """
        Summarize configuration, sizes and hit counters.

        The summary is also logged at INFO level.
        """
        sealed = {
            segment_id: self._store.catalog.size_of(segment_id)
            for segment_id in self._store.list_sealed_newest_first()
        }
        summary = {
            "config": self._config.to_dict(),
            "database_path": self._store.database_path,
            "index_size": self.index_size(),
            "order_index_size": len(self._index.order),
            "cache_size": self.cache_size(),
            "active_segment": self._store.active.id,
            "sealed_segments": sealed,
            "counters": self._stats.to_dict(),
        }
        logger.info(
            f"Database {summary['database_path']}: index size {summary['index_size']}, "
            f"cache size {summary['cache_size']}, sealed segments {sealed}, "
            f"counters {summary['counters']}"
        )
        return summary

    # Checkpoint and rotation

    async def checkpoint(self, force_rotation: bool = False) -> bool:
        """
        Persist the active segment, indexes and catalog; rotate if due.

        Args:
            force_rotation: Seal a non-empty active segment regardless of
                the size and age thresholds.

        Raises:
            StorageIOError: If writing fails. In-memory state is kept and
                the next checkpoint retries.

        Returns:
            True if the active segment was sealed.
        """
        async with self._exclusive():
            return await self._call(self._checkpoint_sync, force_rotation)

    def _checkpoint_sync(self, force_rotation: bool) -> bool:
        primary, order = self._index.snapshot()
        active_bytes = self._store.checkpoint(primary, order)
        return self._store.maybe_rotate(
            active_bytes, self._store.seconds_since_rotation, force=force_rotation
        )

    def _start_checkpoint_worker(self) -> None:
        """Start the periodic checkpoint task if not already running."""
        if self._state is not EngineState.RUNNING:
            return
        if self._checkpoint_task is None or self._checkpoint_task.done():
            self._checkpoint_task = asyncio.create_task(self._checkpoint_worker())

    async def _checkpoint_worker(self) -> None:
        """Background worker that checkpoints every flush_interval seconds."""
        while True:
            try:
                await asyncio.sleep(self._config.flush_interval)
                if self._state is not EngineState.RUNNING:
                    break
                await self.checkpoint()
            except asyncio.CancelledError:
                break
            except EngineClosedError:
                break
            except StoreError as e:
                # Retried on the next tick with the then-current state
                logger.error(f"Periodic checkpoint failed: {e}")

    # Shutdown

    def install_signal_handlers(
        self, signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM)
    ) -> None:
        """
        Wire the shutdown hook to OS signals on the running event loop.

        The handlers are removed again on close().
        """
        loop = asyncio.get_running_loop()
        for sig in signals:
            loop.add_signal_handler(sig, self.shutdown_hook, sig.name)
            self._signal_handlers.append((loop, sig))

    def _remove_signal_handlers(self) -> None:
        for loop, sig in self._signal_handlers:
            if not loop.is_closed():
                loop.remove_signal_handler(sig)
        self._signal_handlers.clear()

    def shutdown_hook(self, reason: str = "shutdown") -> asyncio.Future:
        """
        Request a graceful shutdown; safe to call repeatedly.

        Must be called from the event loop thread.

        Returns:
            Future completing when the engine is closed.
        """
        logger.info(f"Shutdown requested: {reason}")
        return self._begin_close()

    def _begin_close(self) -> asyncio.Future:
        if self._close_future is None:
            self._close_future = asyncio.ensure_future(self._close())
        return self._close_future

    async def close(self) -> None:
        """
        Close the engine after a final checkpoint.

        Waits for an in-flight checkpoint, persists once more, cancels the
        periodic checkpoint and removes signal handlers. Idempotent: once
        closed, further calls return without raising, even if the final
        checkpoint failed.
        """
        if self._close_future is not None and self._close_future.done():
            return
        await asyncio.shield(self._begin_close())

    async def _close(self) -> None:
        if self._state is EngineState.CLOSED:
            return
        logger.info("Closing engine")
        # Set before lazy init so no checkpoint worker is started
        self._state = EngineState.CLOSING
        await self._ensure_async_initialized()
        try:
            async with self._lock:
                await self._call(self._checkpoint_sync, False)
        finally:
            if self._checkpoint_task:
                self._checkpoint_task.cancel()
                try:
                    await self._checkpoint_task
                except asyncio.CancelledError:
                    pass
            self._remove_signal_handlers()
            self._state = EngineState.CLOSED
            logger.info("Engine closed")
            self._detach_log_handler()

    async def __aenter__(self) -> "Engine":
        await self._ensure_async_initialized()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
