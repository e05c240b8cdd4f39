"""
Tests for the checkpoint worker, shutdown and diagnostics.
"""

import asyncio
import os
import signal
import time

import pytest

from segstore import Engine, EngineConfig, EngineState, StorageIOError
from segstore.models import jsonfile


class TestClose:
    """Tests for graceful shutdown."""

    async def test_close_runs_final_checkpoint(self, temp_dir, clock):
        engine = await Engine.create(database_path=temp_dir, clock=clock)
        await engine.put("key", "value")

        await engine.close()

        assert engine.state is EngineState.CLOSED
        assert "key" in jsonfile.read(os.path.join(temp_dir, "index.json"))

    async def test_close_is_idempotent(self, temp_dir, clock):
        engine = await Engine.create(database_path=temp_dir, clock=clock)

        await engine.close()
        await engine.close()

        assert engine.state is EngineState.CLOSED

    async def test_shutdown_hook_is_idempotent(self, temp_dir, clock):
        engine = await Engine.create(database_path=temp_dir, clock=clock)
        await engine.put("key", "value")

        first = engine.shutdown_hook("test")
        second = engine.shutdown_hook("again")
        assert first is second

        await first
        assert engine.state is EngineState.CLOSED

    async def test_close_cancels_checkpoint_worker(self, temp_dir, clock):
        engine = await Engine.create(database_path=temp_dir, clock=clock)
        task = engine._checkpoint_task
        assert task is not None and not task.done()

        await engine.close()

        assert task.done()

    async def test_signal_handlers(self, temp_dir, clock):
        engine = await Engine.create(database_path=temp_dir, clock=clock)
        engine.install_signal_handlers([signal.SIGUSR1])
        await engine.put("key", "value")

        os.kill(os.getpid(), signal.SIGUSR1)
        for _ in range(100):
            if engine.state is EngineState.CLOSED:
                break
            await asyncio.sleep(0.01)

        await engine.close()
        assert engine.state is EngineState.CLOSED
        assert engine._signal_handlers == []
        assert "key" in jsonfile.read(os.path.join(temp_dir, "index.json"))

    async def test_close_after_failed_final_checkpoint(self, temp_dir, clock, monkeypatch):
        engine = await Engine.create(database_path=temp_dir, clock=clock)
        await engine.put("key", "value")

        def broken_write(file_path, payload):
            raise OSError("disk full")

        monkeypatch.setattr(jsonfile, "write_atomic", broken_write)
        with pytest.raises(StorageIOError):
            await engine.close()

        assert engine.state is EngineState.CLOSED
        await engine.close()

    async def test_close_unused_engine_starts_no_worker(self, temp_dir, clock):
        engine = Engine(database_path=temp_dir, clock=clock)

        await engine.close()

        assert engine._checkpoint_task is None
        assert engine.state is EngineState.CLOSED

    def test_config_and_options_are_exclusive(self, temp_dir):
        with pytest.raises(TypeError):
            Engine(EngineConfig(database_path=temp_dir), database_path=temp_dir)


class TestCheckpointWorker:
    """Tests for the periodic checkpoint task."""

    async def test_worker_checkpoints_periodically(self, temp_dir, clock):
        engine = Engine(database_path=temp_dir, clock=clock)
        # Below the configurable minimum, to keep the test fast
        engine.config.flush_interval = 0.01
        index_path = os.path.join(temp_dir, "index.json")

        async with engine:
            await engine.put("key", "value")

            for _ in range(100):
                if os.path.exists(index_path):
                    break
                await asyncio.sleep(0.01)

            assert jsonfile.read(index_path)["key"]["seq"] == 0

    async def test_concurrent_puts_and_checkpoints(self, temp_dir, clock):
        async with Engine(database_path=temp_dir, clock=clock) as engine:
            puts = [engine.put(f"key{i}", i) for i in range(50)]
            checkpoints = [engine.checkpoint(force_rotation=True) for _ in range(5)]
            await asyncio.gather(*puts[:25], *checkpoints, *puts[25:])

        async with Engine(database_path=temp_dir, clock=clock) as engine:
            assert engine.index_size() == 50
            for i in range(50):
                assert await engine.get(f"key{i}") == i

    async def test_failed_checkpoint_keeps_state(self, engine, monkeypatch):
        await engine.put("key", "value")

        def broken_write(file_path, payload):
            raise OSError("disk full")

        monkeypatch.setattr(jsonfile, "write_atomic", broken_write)
        with pytest.raises(StorageIOError):
            await engine.checkpoint()

        assert engine.state is EngineState.RUNNING
        assert await engine.get("key") == "value"

        monkeypatch.undo()
        assert await engine.checkpoint() is False
        assert jsonfile.read(engine._store.active_path(engine._store.active.id)) == ["value"]

    async def test_failed_catalog_write_during_rotation(self, temp_dir, clock, monkeypatch):
        """Persistence resumes after meta.json could not be written while sealing."""
        async with Engine(database_path=temp_dir, clock=clock) as engine:
            store = engine._store
            flush_catalog = store._flush_catalog
            calls = []

            def flaky_flush():
                calls.append(1)
                # First call is the checkpoint, second the rotation
                if len(calls) == 2:
                    raise OSError("disk full")
                flush_catalog()

            monkeypatch.setattr(store, "_flush_catalog", flaky_flush)
            await engine.put("a", 1)
            with pytest.raises(StorageIOError):
                await engine.checkpoint(force_rotation=True)

            assert engine.cache_size() == 0
            assert store.catalog.total() == engine.index_size() - engine.cache_size()

            clock.advance()
            await engine.put("b", 2)
            assert await engine.checkpoint(force_rotation=True) is True
            assert await engine.range_by_position(0, 2) == [2, 1]

        async with Engine(database_path=temp_dir, clock=clock) as engine:
            assert await engine.get("a") == 1
            assert await engine.get("b") == 2

    async def test_cancelled_put_keeps_lock_until_done(self, engine, monkeypatch):
        """A checkpoint never runs while a cancelled put is still indexing."""
        events = []
        index_put = engine._index.put
        store_checkpoint = engine._store.checkpoint

        def slow_put(key, value):
            events.append("put started")
            time.sleep(0.3)
            result = index_put(key, value)
            events.append("put finished")
            return result

        def recording_checkpoint(primary, order):
            events.append("checkpoint")
            return store_checkpoint(primary, order)

        monkeypatch.setattr(engine._index, "put", slow_put)
        monkeypatch.setattr(engine._store, "checkpoint", recording_checkpoint)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(engine.put("a", 1), 0.05)
        await engine.checkpoint()

        assert events[:3] == ["put started", "put finished", "checkpoint"]
        assert engine.index_size() == 1


class TestDiagnostics:
    """Tests for info() and logging configuration."""

    async def test_info_counters(self, engine):
        await engine.put("a", 1)
        await engine.put("b", 2)
        await engine.get("a")
        segment_id = engine._store.active.id
        await engine.checkpoint(force_rotation=True)
        await engine.get("b")

        info = engine.info()

        assert info["index_size"] == 2
        assert info["order_index_size"] == 2
        assert info["cache_size"] == 0
        assert info["sealed_segments"] == {segment_id: 2}
        assert info["counters"] == {
            "memory_cache_reads": 1,
            "memory_cache_writes": 2,
            "file_reads": 1,
            "file_writes": 0,
        }

    async def test_logfile(self, temp_dir, clock):
        logfile = os.path.join(temp_dir, "engine.log")
        database_path = os.path.join(temp_dir, "db")

        async with Engine(
            database_path=database_path, logfile_path=logfile, debug=True, clock=clock
        ) as engine:
            await engine.put("key", "value")

        assert engine._log_handler is None
        with open(logfile) as f:
            contents = f.read()
        assert "Closing engine" in contents
        assert " - INFO - " in contents
