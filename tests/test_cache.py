from __future__ import annotations

import json
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

from forgor.system.cache import (
    SCHEMA_TAG,
    CachedContext,
    ContextCache,
    DiskStore,
    Freshness,
    classify,
)
from forgor.system.inventory import SystemContext, ToolInventory


def make_context(tag: str = "a") -> SystemContext:
    return SystemContext(
        os="linux",
        shell="bash",
        architecture="x86_64",
        user=tag,
        working_directory="/home/dev",
        tools=ToolInventory(system_commands=("grep", "find"), container_tools=("docker",)),
    )


class Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingBuilder:
    def __init__(self) -> None:
        self.calls = 0
        self.gate: threading.Event | None = None
        self.started = threading.Event()

    def __call__(self) -> SystemContext:
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        return make_context(f"build-{self.calls}")


class ClassifyTests(unittest.TestCase):
    def test_boundaries(self) -> None:
        self.assertEqual(classify(None), Freshness.MISSING)
        self.assertEqual(classify(0), Freshness.FRESH)
        self.assertEqual(classify(299.9), Freshness.FRESH)
        self.assertEqual(classify(300), Freshness.STALE)
        self.assertEqual(classify(359.9), Freshness.STALE)
        self.assertEqual(classify(360), Freshness.EXPIRED)


class ContextCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = Clock()
        self.builder = CountingBuilder()
        self.cache = ContextCache(self.builder, clock=self.clock)
        self.cache.refresh()
        self.assertEqual(self.builder.calls, 1)

    def test_fresh_read_does_not_rebuild(self) -> None:
        self.clock.now += 120
        context = self.cache.get()
        self.assertEqual(context.user, "build-1")
        self.assertEqual(self.builder.calls, 1)
        self.assertFalse(self.cache.refreshing)

    def test_stale_read_returns_snapshot_and_refreshes_in_background(self) -> None:
        self.builder.gate = threading.Event()
        self.builder.started = threading.Event()
        self.clock.now += 330

        context = self.cache.get()

        self.assertEqual(context.user, "build-1")
        self.assertTrue(self.builder.started.wait(5))
        self.assertTrue(self.cache.refreshing)
        self.builder.gate.set()
        self.assertTrue(self.cache.wait_for_refresh(5))
        self.assertFalse(self.cache.refreshing)
        self.assertEqual(self.builder.calls, 2)
        self.assertEqual(self.cache.get().user, "build-2")

    def test_expired_read_blocks_and_rebuilds(self) -> None:
        self.clock.now += 400
        context = self.cache.get()
        self.assertEqual(context.user, "build-2")
        self.assertEqual(self.builder.calls, 2)

    def test_concurrent_stale_reads_trigger_one_refresh(self) -> None:
        self.builder.gate = threading.Event()
        self.builder.started = threading.Event()
        self.clock.now += 330
        results: list[str] = []
        barrier = threading.Barrier(2)

        def reader() -> None:
            barrier.wait(5)
            results.append(self.cache.get().user)

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        self.assertEqual(results, ["build-1", "build-1"])
        self.assertTrue(self.cache.refreshing)
        self.assertFalse(self.cache.trigger_background_refresh())
        self.builder.gate.set()
        self.assertTrue(self.cache.wait_for_refresh(5))
        self.assertEqual(self.builder.calls, 2)

    def test_background_failure_releases_flag(self) -> None:
        def failing() -> SystemContext:
            raise RuntimeError("probe exploded")

        cache = ContextCache(failing, clock=self.clock)
        self.assertTrue(cache.trigger_background_refresh())
        self.assertTrue(cache.wait_for_refresh(5))
        self.assertFalse(cache.refreshing)

    def test_status_and_clear(self) -> None:
        self.clock.now += 30
        status = self.cache.status()
        self.assertEqual(status.source, "memory")
        self.assertEqual(status.freshness, Freshness.FRESH)
        self.assertAlmostEqual(status.expires_in, 270)
        self.cache.clear()
        self.assertEqual(self.cache.status().freshness, Freshness.MISSING)


class DiskStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "system-context.json"
        self.store = DiskStore(self.path)
        self.clock = Clock()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_persisted_snapshot_is_shared_between_caches(self) -> None:
        writer = ContextCache(CountingBuilder(), self.store, clock=self.clock)
        writer.refresh()
        record = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(record["schema"], SCHEMA_TAG)
        self.assertEqual(record["built_at"], 1000.0)
        self.assertEqual(list(self.path.parent.glob("*.tmp")), [])

        builder = CountingBuilder()
        reader = ContextCache(builder, DiskStore(self.path), clock=self.clock)
        self.clock.now += 60
        self.assertEqual(reader.get().user, "build-1")
        self.assertEqual(builder.calls, 0)
        self.assertEqual(reader.status().source, "memory")

    def test_expired_disk_entry_is_rebuilt(self) -> None:
        self.store.save(CachedContext(context=make_context("old"), built_at=0.0))
        builder = CountingBuilder()
        cache = ContextCache(builder, self.store, clock=self.clock)
        self.assertEqual(cache.get().user, "build-1")
        self.assertEqual(builder.calls, 1)

    def test_corrupt_file_is_a_miss(self) -> None:
        self.path.write_text("{not json", encoding="utf-8")
        self.assertIsNone(self.store.load())
        builder = CountingBuilder()
        cache = ContextCache(builder, self.store, clock=self.clock)
        self.assertEqual(cache.get().user, "build-1")
        self.assertIsNotNone(self.store.load())

    def test_unknown_schema_is_a_miss(self) -> None:
        self.store.save(CachedContext(context=make_context(), built_at=1000.0))
        record = json.loads(self.path.read_text(encoding="utf-8"))
        record["schema"] = "forgor.context/0"
        self.path.write_text(json.dumps(record), encoding="utf-8")
        self.assertIsNone(self.store.load())

    def test_fingerprint_mismatch_is_a_miss(self) -> None:
        self.store.save(CachedContext(context=make_context(), built_at=1000.0))
        record = json.loads(self.path.read_text(encoding="utf-8"))
        record["context"]["tools"]["system_commands"].append("rm")
        self.path.write_text(json.dumps(record), encoding="utf-8")
        self.assertIsNone(self.store.load())

    def test_concurrent_reader_sees_whole_snapshots(self) -> None:
        first = CachedContext(context=make_context("first"), built_at=1000.0)
        second = CachedContext(
            context=SystemContext(
                os="linux",
                shell="zsh",
                architecture="arm64",
                user="second",
                working_directory="/srv",
                tools=ToolInventory(package_managers=("apt",), languages=(), cloud_tools=("aws", "gcloud")),
            ),
            built_at=2000.0,
        )
        stop = threading.Event()
        errors: list[Exception] = []

        def write() -> None:
            try:
                for turn in range(200):
                    self.store.save(first if turn % 2 == 0 else second)
            except Exception as exc:
                errors.append(exc)
            finally:
                stop.set()

        reader = DiskStore(self.path)
        seen: list[CachedContext | None] = []
        with patch("forgor.system.cache.get_runtime_logger") as get_logger:
            writer = threading.Thread(target=write)
            writer.start()
            while not stop.is_set():
                seen.append(reader.load())
            writer.join()
            seen.append(reader.load())

        self.assertEqual(errors, [])
        logged = [call.args[0] for call in get_logger.return_value.warning.call_args_list]
        self.assertEqual(logged, [])
        for entry in seen:
            if entry is None:
                continue
            self.assertIn((entry.context, entry.built_at), [(first.context, 1000.0), (second.context, 2000.0)])
        self.assertEqual(seen[-1], second)

    def test_clear_removes_file_and_temp_files(self) -> None:
        self.store.save(CachedContext(context=make_context(), built_at=1000.0))
        stray = self.path.with_name(self.path.name + ".999.tmp")
        stray.write_text("partial", encoding="utf-8")
        self.store.clear()
        self.assertFalse(self.path.exists())
        self.assertFalse(stray.exists())
        self.assertFalse(self.store.info()["file_exists"])


if __name__ == "__main__":
    unittest.main()
