"""Shared engine handles and compiled module caching.

Compiling the interpreter module is the most expensive step of creating a
sandbox. ModuleCache keeps one compiled module per (canonical path, engine)
so every sandbox sharing an EngineHandle reuses it. A compiled module is only
valid for the engine that compiled it, which is why the engine is part of the
key.

EngineHandle wraps a wasmtime.Engine configured once with epoch interruption
always on and fuel accounting on request. It also owns the engine's epoch
counter, which counts elapsed tick intervals of wall-clock time, so deadlines
expressed in ticks mean the same thing to every execution sharing the engine
whichever of their tickers drives it.
"""

from __future__ import annotations

import math
import threading
import time
from collections import Counter
from datetime import timedelta
from pathlib import Path

from wasmtime import Config, Engine, Module, Store, WasmtimeError

from wasm_sandbox.core.errors import (
    InterpreterNotFoundError,
    ModuleLoadError,
    RuntimeInitError,
    SandboxIOError,
)
from wasm_sandbox.core.logging import SandboxLogger

DEFAULT_TICK_INTERVAL = timedelta(milliseconds=10)

# Longest gap tick() replays; an engine idle for longer is rebased instead
MAX_CATCH_UP_TICKS = 1_000


class EngineHandle:
    """Shareable wasmtime engine plus its epoch counter.

    The counter follows wall-clock time in units of tick_interval: tick()
    brings it up to the number of intervals elapsed, however many tickers
    call it and however often, so it never runs ahead of the clock by more
    than the single tick a forced interrupt() adds. Stores arm their deadline
    through arm(); interrupt() only jumps straight to a store's deadline when
    no other armed store could be reached by the jump.

    Attributes:
        engine: Underlying wasmtime.Engine
        consume_fuel: Whether fuel accounting is enabled
        tick_interval: Wall-clock length of one epoch tick
    """

    def __init__(
        self,
        consume_fuel: bool = False,
        tick_interval: timedelta = DEFAULT_TICK_INTERVAL,
    ) -> None:
        if tick_interval <= timedelta(0):
            raise RuntimeInitError("tick interval must be positive")

        cfg = Config()
        cfg.epoch_interruption = True
        cfg.consume_fuel = consume_fuel
        try:
            self._engine = Engine(cfg)
        except WasmtimeError as e:
            raise RuntimeInitError(f"failed to create engine: {e}") from e

        self.consume_fuel = consume_fuel
        self.tick_interval = tick_interval
        self._lock = threading.Lock()
        self._epoch = 0
        # Wall-clock reference: the counter is due origin_epoch at origin
        self._origin = time.monotonic()
        self._origin_epoch = 0
        self._armed: Counter[int] = Counter()

    @classmethod
    def with_fuel(cls, tick_interval: timedelta = DEFAULT_TICK_INTERVAL) -> EngineHandle:
        """Create a handle with fuel accounting enabled."""
        return cls(consume_fuel=True, tick_interval=tick_interval)

    def __repr__(self) -> str:
        return f"EngineHandle(consume_fuel={self.consume_fuel}, epoch={self._epoch})"

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def epoch(self) -> int:
        """Number of epoch increments issued through this handle."""
        return self._epoch

    @property
    def armed_deadlines(self) -> list[int]:
        """Absolute deadlines of the stores currently armed on this engine."""
        with self._lock:
            return sorted(self._armed.elements())

    def increment_epoch(self) -> int:
        """Unconditionally advance the epoch counter by one tick."""
        with self._lock:
            self._advance_locked(1)
            return self._epoch

    def _advance_locked(self, count: int) -> None:
        for _ in range(count):
            self._engine.increment_epoch()
        self._epoch += count

    def _wall_epoch(self, now: float) -> int:
        elapsed = now - self._origin
        return self._origin_epoch + int(elapsed / self.tick_interval.total_seconds())

    def _rebase_locked(self, now: float) -> None:
        self._origin = now
        self._origin_epoch = self._epoch

    def _catch_up_locked(self) -> int:
        now = time.monotonic()
        due = self._wall_epoch(now) - self._epoch
        if due <= 0:
            return 0
        if due > MAX_CATCH_UP_TICKS:
            # Idle engine: skip the gap instead of replaying it
            self._advance_locked(1)
            self._rebase_locked(now)
            return 1
        self._advance_locked(due)
        return due

    def _others_armed_locked(self, deadline: int | None) -> bool:
        others = self._armed.copy()
        if deadline is not None:
            others[deadline] -= 1
        return any(n > 0 and d > self._epoch for d, n in others.items())

    def tick(self) -> bool:
        """Bring the epoch up to wall-clock time.

        Returns:
            True if the counter was advanced
        """
        with self._lock:
            return self._catch_up_locked() > 0

    def deadline_ticks(self, timeout: timedelta) -> int:
        """Number of ticks after which a store running for timeout traps.

        One tick of slack lets the wall-clock race report the timeout first;
        the epoch trap is the backstop that stops the abandoned call.
        """
        return max(1, math.ceil(timeout / self.tick_interval)) + 1

    def arm(self, store: Store, timeout: timedelta) -> int:
        """Set store's epoch deadline for timeout and register it.

        Returns:
            The absolute epoch at which the store traps; pass it to release()
            once the store is done
        """
        with self._lock:
            self._catch_up_locked()
            ticks = self.deadline_ticks(timeout)
            store.set_epoch_deadline(ticks)
            deadline = self._epoch + ticks
            self._armed[deadline] += 1
            return deadline

    def release(self, deadline: int) -> None:
        """Forget a deadline registered by arm()."""
        with self._lock:
            self._armed[deadline] -= 1
            if self._armed[deadline] <= 0:
                del self._armed[deadline]

    def interrupt(self, until: int | None = None) -> None:
        """Force the epoch one tick past wall-clock time.

        When no other armed store is live, the counter jumps straight to
        `until` (the abandoned store's deadline) and the wall-clock reference
        restarts from there. Otherwise regular ticks carry it the rest of the
        way, so other stores keep the full time their deadline gives them.
        """
        with self._lock:
            self._catch_up_locked()
            now = time.monotonic()
            target = self._wall_epoch(now) + 1
            alone = not self._others_armed_locked(until)
            if alone and until is not None:
                target = max(target, until)
            if target > self._epoch:
                self._advance_locked(target - self._epoch)
            if alone:
                self._rebase_locked(now)


_default_engines: dict[bool, EngineHandle] = {}
_default_engines_lock = threading.Lock()


def default_engine(consume_fuel: bool = False) -> EngineHandle:
    """Process-wide engine handle for sandboxes that do not bring their own."""
    with _default_engines_lock:
        handle = _default_engines.get(consume_fuel)
        if handle is None:
            handle = EngineHandle(consume_fuel=consume_fuel)
            _default_engines[consume_fuel] = handle
        return handle


def canonicalize(path: str | Path) -> Path:
    """Resolve path to the symlink-free absolute identity used as cache key.

    Raises:
        InterpreterNotFoundError: If the file does not exist
        SandboxIOError: For other filesystem errors
    """
    try:
        return Path(path).resolve(strict=True)
    except FileNotFoundError as e:
        raise InterpreterNotFoundError(str(path)) from e
    except OSError as e:
        raise SandboxIOError(f"cannot resolve {path}: {e}") from e


def compile_module(handle: EngineHandle, path: str | Path) -> Module:
    """Read and compile a module without touching any cache.

    Raises:
        InterpreterNotFoundError: If the file does not exist
        SandboxIOError: If the file cannot be read
        ModuleLoadError: If the bytes are not a valid module
    """
    try:
        wasm_bytes = Path(path).read_bytes()
    except FileNotFoundError as e:
        raise InterpreterNotFoundError(str(path)) from e
    except OSError as e:
        raise SandboxIOError(f"cannot read {path}: {e}") from e

    try:
        return Module(handle.engine, wasm_bytes)
    except WasmtimeError as e:
        raise ModuleLoadError(f"failed to compile module: {e}") from e


class ModuleCache:
    """Thread-safe cache of compiled modules.

    Lookups and inserts hold the lock only briefly; compilation happens
    outside it, so concurrent misses compile in parallel. Before inserting,
    the entry is checked again: a caller that lost the race drops its own
    module and returns the one already cached.

    Examples:
        >>> cache = ModuleCache()
        >>> handle = EngineHandle()
        >>> m1 = cache.get_or_compile(handle, "bin/python.wasm")
        >>> m2 = cache.get_or_compile(handle, "bin/python.wasm")
        >>> m1 is m2
        True
    """

    def __init__(self, logger: SandboxLogger | None = None) -> None:
        self._lock = threading.Lock()
        # (canonical path, id(handle)) -> (handle, module); holding the handle
        # keeps its id from being reused while the entry exists
        self._entries: dict[tuple[Path, int], tuple[EngineHandle, Module]] = {}
        self.logger = logger or SandboxLogger("wasm_sandbox.cache")

    def get_or_compile(self, handle: EngineHandle, path: str | Path) -> Module:
        """Return the cached module for path, compiling it on first use.

        Args:
            handle: Engine the module is compiled for
            path: Path to the WASM file

        Returns:
            Shared compiled module

        Raises:
            InterpreterNotFoundError: If the file does not exist
            SandboxIOError: For other filesystem errors
            ModuleLoadError: If the file is not a valid module
        """
        canonical = canonicalize(path)
        key = (canonical, id(handle))

        with self._lock:
            entry = self._entries.get(key)
        if entry is not None:
            self.logger.log_cache_event("hit", str(canonical))
            return entry[1]

        self.logger.log_cache_event("miss", str(canonical))
        module = compile_module(handle, canonical)

        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                winner = existing[1]
            else:
                self._entries[key] = (handle, module)
                winner = module
        if winner is not module:
            self.logger.log_cache_event("race_lost", str(canonical))
        return winner

    def _matching_keys(self, path: str | Path, handle: EngineHandle | None) -> list[tuple[Path, int]]:
        try:
            canonical = Path(path).resolve(strict=True)
        except OSError:
            return []
        return [
            key
            for key in self._entries
            if key[0] == canonical and (handle is None or key[1] == id(handle))
        ]

    def contains(self, path: str | Path, handle: EngineHandle | None = None) -> bool:
        """Check if a module for path is cached (for handle, or any engine)."""
        with self._lock:
            return bool(self._matching_keys(path, handle))

    def remove(self, path: str | Path, handle: EngineHandle | None = None) -> bool:
        """Evict cached modules for path.

        Returns:
            True if at least one entry was removed
        """
        with self._lock:
            keys = self._matching_keys(path, handle)
            for key in keys:
                del self._entries[key]
        if keys:
            self.logger.log_cache_event("evicted", str(keys[0][0]))
        return bool(keys)

    def clear(self) -> None:
        """Drop every cached module."""
        with self._lock:
            self._entries.clear()
        self.logger.log_cache_event("cleared", "*")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def is_empty(self) -> bool:
        return len(self) == 0


_global_cache: ModuleCache | None = None
_global_cache_lock = threading.Lock()


def global_cache() -> ModuleCache:
    """Process-wide module cache, created on first use."""
    global _global_cache
    with _global_cache_lock:
        if _global_cache is None:
            _global_cache = ModuleCache()
        return _global_cache


def reset_global_cache() -> None:
    """Drop the process-wide cache so the next global_cache() starts empty."""
    global _global_cache
    with _global_cache_lock:
        _global_cache = None
