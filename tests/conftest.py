"""Shared pytest fixtures for all tests.

Most tests run tiny hand-written WASI guests compiled from WAT instead of the
real interpreter, so they exercise the engine, limiter and orchestration
without needing bin/python.wasm. Tests that need the real interpreter use the
`interpreter_path` fixture, which skips when the binary is absent.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import structlog
from wasmtime import wat2wasm

from wasm_sandbox.cache import EngineHandle, ModuleCache
from wasm_sandbox.core.logging import SandboxLogger
from wasm_sandbox.runtime_paths import get_interpreter_path

WASI = "wasi_snapshot_preview1"


def wat_string(text: str) -> str:
    """Escape text as a WAT string literal body."""
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def write_guest(fd: int, text: str, exit_code: int | None = None) -> str:
    """Guest that writes text to fd, then optionally calls proc_exit."""
    exit_call = f"(call $proc_exit (i32.const {exit_code}))" if exit_code is not None else ""
    return f"""
(module
  (import "{WASI}" "fd_write" (func $fd_write (param i32 i32 i32 i32) (result i32)))
  (import "{WASI}" "proc_exit" (func $proc_exit (param i32)))
  (memory (export "memory") 1)
  (data (i32.const 64) "{wat_string(text)}")
  (func (export "_start")
    (i32.store (i32.const 0) (i32.const 64))
    (i32.store (i32.const 4) (i32.const {len(text.encode("utf-8"))}))
    (drop (call $fd_write (i32.const {fd}) (i32.const 0) (i32.const 1) (i32.const 8)))
    {exit_call}))
"""


HELLO_WAT = write_guest(1, "hello\n")

ECHO_WAT = f"""
(module
  (import "{WASI}" "fd_read" (func $fd_read (param i32 i32 i32 i32) (result i32)))
  (import "{WASI}" "fd_write" (func $fd_write (param i32 i32 i32 i32) (result i32)))
  (memory (export "memory") 1)
  (func (export "_start")
    (i32.store (i32.const 0) (i32.const 1024))
    (i32.store (i32.const 4) (i32.const 4096))
    (drop (call $fd_read (i32.const 0) (i32.const 0) (i32.const 1) (i32.const 8)))
    (i32.store (i32.const 16) (i32.const 1024))
    (i32.store (i32.const 20) (i32.load (i32.const 8)))
    (drop (call $fd_write (i32.const 1) (i32.const 16) (i32.const 1) (i32.const 24)))))
"""

# Writes argv[2] (the source passed with -c) to stdout
ARGV_WAT = f"""
(module
  (import "{WASI}" "args_sizes_get" (func $args_sizes_get (param i32 i32) (result i32)))
  (import "{WASI}" "args_get" (func $args_get (param i32 i32) (result i32)))
  (import "{WASI}" "fd_write" (func $fd_write (param i32 i32 i32 i32) (result i32)))
  (memory (export "memory") 2)
  (func (export "_start")
    (local $arg i32)
    (drop (call $args_sizes_get (i32.const 0) (i32.const 4)))
    (drop (call $args_get (i32.const 16) (i32.const 1024)))
    (local.set $arg (i32.load (i32.const 24)))
    (i32.store (i32.const 8) (local.get $arg))
    (i32.store (i32.const 12)
      (i32.sub
        (i32.sub (i32.add (i32.const 1024) (i32.load (i32.const 4))) (local.get $arg))
        (i32.const 1)))
    (drop (call $fd_write (i32.const 1) (i32.const 8) (i32.const 1) (i32.const 0)))))
"""

# Writes the NUL-separated environment block to stdout
ENV_WAT = f"""
(module
  (import "{WASI}" "environ_sizes_get" (func $environ_sizes_get (param i32 i32) (result i32)))
  (import "{WASI}" "environ_get" (func $environ_get (param i32 i32) (result i32)))
  (import "{WASI}" "fd_write" (func $fd_write (param i32 i32 i32 i32) (result i32)))
  (memory (export "memory") 1)
  (func (export "_start")
    (drop (call $environ_sizes_get (i32.const 0) (i32.const 4)))
    (drop (call $environ_get (i32.const 64) (i32.const 1024)))
    (i32.store (i32.const 8) (i32.const 1024))
    (i32.store (i32.const 12) (i32.load (i32.const 4)))
    (drop (call $fd_write (i32.const 1) (i32.const 8) (i32.const 1) (i32.const 0)))))
"""

PYTHON_TRACEBACK = (
    "Traceback (most recent call last):\n"
    '  File "<string>", line 1, in <module>\n'
    "ValueError: invalid literal for int() with base 10: 'abc'\n"
)

RAISES_WAT = write_guest(2, PYTHON_TRACEBACK, exit_code=1)

EXIT_ZERO_WAT = write_guest(1, "bye\n", exit_code=0)

LOOP_WAT = """
(module
  (memory (export "memory") 1)
  (func (export "_start")
    (loop $spin (br $spin))))
"""

GROW_WAT = """
(module
  (memory (export "memory") 1)
  (func (export "_start")
    (if (i32.eq (memory.grow (i32.const 1)) (i32.const -1))
      (then unreachable))))
"""

BIG_MEMORY_WAT = """
(module
  (memory (export "memory") 16)
  (func (export "_start")))
"""

# Memory already at two pages when it exits with code 3
EXIT_AT_CEILING_WAT = f"""
(module
  (import "{WASI}" "proc_exit" (func $proc_exit (param i32)))
  (memory (export "memory") 2)
  (func (export "_start")
    (call $proc_exit (i32.const 3))))
"""

# Asks for 100 more pages, ignores the refusal and exits with code 1
GROW_THEN_EXIT_WAT = f"""
(module
  (import "{WASI}" "proc_exit" (func $proc_exit (param i32)))
  (memory (export "memory") 1)
  (func (export "_start")
    (drop (memory.grow (i32.const 100)))
    (call $proc_exit (i32.const 1))))
"""

BIG_TABLE_WAT = """
(module
  (memory (export "memory") 1)
  (table (export "table") 200 funcref)
  (func (export "_start")))
"""

UNREACHABLE_WAT = """
(module
  (memory (export "memory") 1)
  (func (export "_start") unreachable))
"""

NO_START_WAT = """
(module
  (memory (export "memory") 1)
  (func (export "main")))
"""


GUESTS = {
    "hello": HELLO_WAT,
    "echo": ECHO_WAT,
    "argv": ARGV_WAT,
    "env": ENV_WAT,
    "raises": RAISES_WAT,
    "exit_zero": EXIT_ZERO_WAT,
    "loop": LOOP_WAT,
    "grow": GROW_WAT,
    "big_memory": BIG_MEMORY_WAT,
    "exit_at_ceiling": EXIT_AT_CEILING_WAT,
    "grow_then_exit": GROW_THEN_EXIT_WAT,
    "big_table": BIG_TABLE_WAT,
    "unreachable": UNREACHABLE_WAT,
    "no_start": NO_START_WAT,
}


class StructlogCapture:
    """Helper to capture structlog events."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        """Capture event dict (structlog processor signature)."""
        self.events.append(event_dict.copy())
        return event_dict

    def named(self, event: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e.get("event") == event]


@pytest.fixture
def log_capture() -> StructlogCapture:
    """Fixture providing structlog event capture."""
    return StructlogCapture()


@pytest.fixture
def capture_logger(log_capture: StructlogCapture) -> SandboxLogger:
    """SandboxLogger whose events land in log_capture."""
    logger = structlog.wrap_logger(
        structlog.ReturnLogger(),
        processors=[structlog.processors.add_log_level, log_capture],
        wrapper_class=structlog.BoundLogger,
    )
    return SandboxLogger(logger)


@pytest.fixture
def guest_wat() -> dict[str, str]:
    """WAT source of the test guests, by name."""
    return GUESTS


@pytest.fixture
def wasm_file(tmp_path: Path):
    """Factory compiling a named guest (or raw WAT text) into a .wasm file."""

    def make(guest: str, name: str | None = None) -> Path:
        wat = GUESTS.get(guest, guest)
        if name is None:
            name = f"{guest}.wasm" if guest in GUESTS else "guest.wasm"
        path = tmp_path / name
        path.write_bytes(wat2wasm(wat))
        return path

    return make


@pytest.fixture
def module_cache(capture_logger: SandboxLogger) -> ModuleCache:
    """Private ModuleCache so tests never touch the process-wide one."""
    return ModuleCache(logger=capture_logger)


@pytest.fixture
def engine() -> EngineHandle:
    return EngineHandle()


@pytest.fixture
def fuel_engine() -> EngineHandle:
    return EngineHandle.with_fuel()


@pytest.fixture
def interpreter_path() -> Path:
    """Path to the real interpreter binary; skips when it is not installed."""
    try:
        return get_interpreter_path()
    except FileNotFoundError:
        pytest.skip("bin/python.wasm not available")
