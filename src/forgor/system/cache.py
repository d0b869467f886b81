"""Two-tier SystemContext cache: one in-process snapshot plus a shared file.

A snapshot younger than ``expiry`` is served as is. Between ``expiry`` and
``expiry + grace`` it is still served, and one background refresh is started.
Older than that, the caller blocks on a synchronous rebuild.
"""

from __future__ import annotations

import json
import os
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from forgor.paths import context_cache_path, context_lock_path
from forgor.runtime_logging import get_runtime_logger
from forgor.system.inventory import SystemContext

if os.name == "posix":
    import fcntl
else:  # pragma: no cover
    fcntl = None

EXPIRY_SECONDS = 5 * 60.0
GRACE_SECONDS = 60.0
SCHEMA_TAG = "forgor.context/1"
LOCK_TIMEOUT_SECONDS = 5.0
LOCK_POLL_SECONDS = 0.1

Clock = Callable[[], float]
Builder = Callable[[], SystemContext]


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"
    MISSING = "missing"


class CacheError(OSError):
    """The persistent tier could not be read or written."""


def classify(age: float | None, expiry: float = EXPIRY_SECONDS, grace: float = GRACE_SECONDS) -> Freshness:
    if age is None:
        return Freshness.MISSING
    if age < expiry:
        return Freshness.FRESH
    if age < expiry + grace:
        return Freshness.STALE
    return Freshness.EXPIRED


class ReadWriteLock:
    """Many readers or one writer; writers are preferred once waiting."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(slots=True, frozen=True)
class CachedContext:
    context: SystemContext
    built_at: float


@contextmanager
def file_lock(path: Path, *, exclusive: bool, timeout: float = LOCK_TIMEOUT_SECONDS) -> Iterator[None]:
    """Advisory cross-process lock on ``path`` (shared for readers)."""
    if fcntl is None:  # pragma: no cover
        yield
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = path.open("a+")
    mode = (fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH) | fcntl.LOCK_NB
    deadline = time.monotonic() + timeout
    try:
        while True:
            try:
                fcntl.flock(handle.fileno(), mode)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise CacheError(f"timed out waiting for lock {path}")
                time.sleep(LOCK_POLL_SECONDS)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()


class DiskStore:
    def __init__(self, path: Path | None = None, lock_path: Path | None = None) -> None:
        self.path = path or context_cache_path()
        self.lock_path = lock_path or self.path.with_name(self.path.name + ".lock")

    @property
    def temp_path(self) -> Path:
        return self.path.with_name(self.path.name + f".{os.getpid()}.tmp")

    def load(self) -> CachedContext | None:
        """Return the stored entry, or ``None`` for a missing or unusable file."""
        if not self.path.exists():
            return None
        with file_lock(self.lock_path, exclusive=False):
            try:
                raw = self.path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
        return self._decode(raw)

    def _decode(self, raw: str) -> CachedContext | None:
        logger = get_runtime_logger()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("context.cache.corrupt", path=str(self.path), error=str(exc))
            return None
        if not isinstance(payload, dict) or payload.get("schema") != SCHEMA_TAG:
            logger.info("context.cache.schema_mismatch", path=str(self.path))
            return None
        try:
            context = SystemContext.model_validate(payload["context"])
            built_at = float(payload["built_at"])
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            logger.warning("context.cache.corrupt", path=str(self.path), error=str(exc))
            return None
        if payload.get("fingerprint") != context.tools.fingerprint():
            logger.warning("context.cache.fingerprint_mismatch", path=str(self.path))
            return None
        return CachedContext(context=context, built_at=built_at)

    def peek_built_at(self) -> float | None:
        entry = self.load()
        return entry.built_at if entry else None

    def save(self, entry: CachedContext) -> None:
        payload: dict[str, Any] = {
            "schema": SCHEMA_TAG,
            "built_at": entry.built_at,
            "fingerprint": entry.context.tools.fingerprint(),
            "context": entry.context.model_dump(mode="json"),
        }
        data = json.dumps(payload, indent=2, sort_keys=True)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with file_lock(self.lock_path, exclusive=True):
            temp = self.temp_path
            try:
                temp.write_text(data + "\n", encoding="utf-8")
                os.replace(temp, self.path)
            except OSError:
                temp.unlink(missing_ok=True)
                raise

    def clear(self) -> None:
        with file_lock(self.lock_path, exclusive=True):
            self.path.unlink(missing_ok=True)
            for stray in self.path.parent.glob(self.path.name + ".*.tmp"):
                stray.unlink(missing_ok=True)

    def info(self) -> dict[str, Any]:
        details: dict[str, Any] = {
            "cache_dir": str(self.path.parent),
            "file_path": str(self.path),
            "lock_file": str(self.lock_path),
            "file_exists": self.path.exists(),
        }
        if details["file_exists"]:
            stat = self.path.stat()
            details["file_size"] = stat.st_size
            details["file_mtime"] = stat.st_mtime
        return details


@dataclass(slots=True)
class CacheStatus:
    age_seconds: float | None
    freshness: Freshness
    refreshing: bool
    source: str
    expiry_seconds: float
    grace_seconds: float

    @property
    def expires_in(self) -> float | None:
        if self.age_seconds is None:
            return None
        return self.expiry_seconds - self.age_seconds


class ContextCache:
    """Process-wide SystemContext cache backed by an optional DiskStore."""

    def __init__(
        self,
        builder: Builder,
        store: DiskStore | None = None,
        *,
        clock: Clock = time.time,
        expiry: float = EXPIRY_SECONDS,
        grace: float = GRACE_SECONDS,
    ) -> None:
        self._builder = builder
        self._store = store
        self._clock = clock
        self.expiry = expiry
        self.grace = grace
        self._rw = ReadWriteLock()
        self._entry: CachedContext | None = None
        self._refreshing = threading.Lock()
        self._worker: threading.Thread | None = None
        self.builds = 0

    @property
    def store(self) -> DiskStore | None:
        return self._store

    @property
    def refreshing(self) -> bool:
        return self._refreshing.locked()

    def _age(self, entry: CachedContext) -> float:
        return max(0.0, self._clock() - entry.built_at)

    def _freshness(self, entry: CachedContext | None) -> Freshness:
        return classify(None if entry is None else self._age(entry), self.expiry, self.grace)

    def get(self) -> SystemContext:
        logger = get_runtime_logger()
        with self._rw.read_locked():
            entry = self._entry
            if entry is not None and self._age(entry) < self.expiry:
                return entry.context

        # Another process may have refreshed the shared file meanwhile.
        adopted = self._adopt_disk_entry()
        if adopted is not None:
            entry = adopted

        freshness = self._freshness(entry)
        if entry is not None and freshness is Freshness.FRESH:
            return entry.context
        if entry is not None and freshness is Freshness.STALE:
            logger.debug("context.cache.stale", age=round(self._age(entry), 1))
            self.trigger_background_refresh()
            return entry.context

        logger.debug("context.cache.rebuild", reason=freshness.value)
        return self._rebuild(force=False).context

    def _adopt_disk_entry(self) -> CachedContext | None:
        if self._store is None:
            return None
        try:
            loaded = self._store.load()
        except OSError as exc:
            get_runtime_logger().warning("context.cache.read_failed", error=str(exc))
            return None
        if loaded is None or self._freshness(loaded) is Freshness.EXPIRED:
            return None
        with self._rw.write_locked():
            if self._entry is None or self._entry.built_at < loaded.built_at:
                self._entry = loaded
            return self._entry

    def _build(self) -> CachedContext:
        started = time.monotonic()
        context = self._builder()
        entry = CachedContext(context=context, built_at=self._clock())
        self.builds += 1
        get_runtime_logger().info(
            "context.cache.rebuilt",
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            tools=len(context.tools.available),
        )
        return entry

    def _rebuild(self, *, force: bool) -> CachedContext:
        if force:
            # Readers keep the old snapshot until the new one is published.
            entry = self._build()
            with self._rw.write_locked():
                if self._entry is None or self._entry.built_at <= entry.built_at:
                    self._entry = entry
        else:
            with self._rw.write_locked():
                current = self._entry
                if current is not None and self._age(current) < self.expiry:
                    return current
                entry = self._build()
                self._entry = entry
        self._persist(entry)
        return entry

    def _persist(self, entry: CachedContext) -> None:
        if self._store is None:
            return
        try:
            self._store.save(entry)
        except OSError as exc:
            get_runtime_logger().warning("context.cache.write_failed", error=str(exc))

    def refresh(self) -> SystemContext:
        """Rebuild now, regardless of age."""
        return self._rebuild(force=True).context

    def trigger_background_refresh(self) -> bool:
        """Start a refresh thread unless one is already running."""
        if not self._refreshing.acquire(blocking=False):
            get_runtime_logger().debug("context.cache.refresh_in_progress")
            return False
        worker = threading.Thread(
            target=self._background_refresh,
            name="forgor-context-refresh",
            daemon=False,
        )
        self._worker = worker
        try:
            worker.start()
        except RuntimeError:
            self._refreshing.release()
            raise
        return True

    def _background_refresh(self) -> None:
        logger = get_runtime_logger()
        logger.info("context.cache.refresh_started")
        try:
            self._rebuild(force=True)
        except Exception as exc:  # noqa: BLE001
            logger.warning("context.cache.refresh_failed", error=str(exc))
        finally:
            self._refreshing.release()

    def wait_for_refresh(self, timeout: float | None = None) -> bool:
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def age(self) -> float | None:
        with self._rw.read_locked():
            entry = self._entry
        if entry is not None:
            return self._age(entry)
        if self._store is None:
            return None
        try:
            built_at = self._store.peek_built_at()
        except OSError:
            return None
        return None if built_at is None else max(0.0, self._clock() - built_at)

    def status(self) -> CacheStatus:
        with self._rw.read_locked():
            in_memory = self._entry is not None
        age = self.age()
        if in_memory:
            source = "memory"
        elif age is not None:
            source = "disk"
        else:
            source = "none"
        return CacheStatus(
            age_seconds=age,
            freshness=classify(age, self.expiry, self.grace),
            refreshing=self.refreshing,
            source=source,
            expiry_seconds=self.expiry,
            grace_seconds=self.grace,
        )

    def clear(self) -> None:
        with self._rw.write_locked():
            self._entry = None
            if self._store is not None:
                self._store.clear()
        get_runtime_logger().info("context.cache.cleared")


_context_cache: ContextCache | None = None
_context_cache_lock = threading.Lock()


def get_context_cache(builder: Builder | None = None) -> ContextCache:
    """Process-wide cache; ``builder`` only applies on first use."""
    global _context_cache
    with _context_cache_lock:
        if _context_cache is None:
            if builder is None:
                from forgor.system.probe import SystemProber

                builder = SystemProber().build
            _context_cache = ContextCache(builder, DiskStore(context_cache_path(), context_lock_path()))
        return _context_cache


def set_context_cache(cache: ContextCache | None) -> None:
    global _context_cache
    with _context_cache_lock:
        _context_cache = cache
