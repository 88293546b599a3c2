"""WASM host layer for one isolated interpreter run.

run_isolated() performs a single blocking execution of the interpreter module:
it builds a fresh Store wired to a SandboxLimiter, a WASI context carrying
only argv/env/stdin (no preopened directories, no sockets), arms the epoch
deadline and optional fuel budget, instantiates the module and calls _start.

Failures of the _start call are classified in a fixed order, first match
wins:

1. limiter exceeded          -> MemoryLimitExceededError
2. epoch interrupt trap      -> ExecutionTimeoutError(elapsed)
3. fuel exhaustion trap      -> OutOfFuelError(consumed)
4. WASI proc_exit            -> normal result with that exit code
5. anything else             -> SandboxExecutionError(raw message)

The call blocks the calling thread; PythonSandbox runs it on a worker thread
and owns the wall-clock race.

Memory growth is refused by the engine itself, with no callback to the host,
so a refusal is only recorded where it can be seen: a declared initial memory
or table over its ceiling, or a plain trap (an allocator abort) with no page
of headroom left. A guest that survives a refused memory.grow and exits on
its own, as CPython does when it raises MemoryError, is a normal result with
its own exit code.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from wasmtime import (
    ExitTrap,
    Func,
    Linker,
    Memory,
    Module,
    Store,
    Table,
    Trap,
    WasiConfig,
    WasmtimeError,
)

from wasm_sandbox.cache import EngineHandle
from wasm_sandbox.core.classify import is_epoch_interrupt, is_out_of_fuel
from wasm_sandbox.core.errors import (
    ExecutionTimeoutError,
    MemoryLimitExceededError,
    ModuleLoadError,
    OutOfFuelError,
    RuntimeInitError,
    SandboxExecutionError,
    SandboxIOError,
)
from wasm_sandbox.core.models import ExecutionMetadata, ExecutionResult
from wasm_sandbox.limits import SandboxLimiter

INTERPRETER_ARGV0 = "python"
ENTRY_POINT = "_start"
MEMORY_EXPORT = "memory"

# Budget for fuel-enabled engines when the config sets none
UNMETERED_FUEL = 2**63 - 1


@dataclass
class RunState:
    """Per-execution state shared between the worker thread and the orchestrator.

    Attributes:
        limiter: Resource limiter owned by this execution
        deadline_epoch: Absolute epoch at which the store traps (set once armed)
        abandoned: Set by the orchestrator once nobody waits for the result
        running: Set by the worker once the guest is about to start
        finished: Set when the worker returns, whatever the outcome
    """

    limiter: SandboxLimiter
    deadline_epoch: int | None = None
    abandoned: bool = False
    running: bool = False
    finished: threading.Event = field(default_factory=threading.Event)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def begin(self) -> bool:
        """Mark the guest as started unless the run was already abandoned."""
        with self._lock:
            if self.abandoned:
                return False
            self.running = True
            return True

    def abandon(self) -> bool:
        """Mark the run abandoned.

        Returns:
            True if the guest had already started and may still be running
        """
        with self._lock:
            self.abandoned = True
            return self.running


def build_source(code: str, prelude: str | None = None) -> str:
    """Prepend the prelude (if any) to user code."""
    if prelude is None:
        return code
    return f"{prelude}\n{code}"


def _export(exports: Any, name: str) -> Any:
    try:
        return exports[name]
    except KeyError:
        return None


def _read_output(path: str) -> str:
    try:
        with open(path, "rb") as f:
            data = f.read()
    except FileNotFoundError:
        return ""
    return data.decode("utf-8", errors="replace")


def _remaining_fuel(store: Store) -> int:
    try:
        return store.get_fuel()
    except WasmtimeError:
        return 0


def run_isolated(
    handle: EngineHandle,
    module: Module,
    code: str,
    *,
    state: RunState,
    timeout: timedelta,
    input: str | None = None,
    stdin: str | None = None,
    env_vars: Sequence[tuple[str, str]] = (),
    prelude: str | None = None,
    max_fuel: int | None = None,
    used_cached_module: bool = False,
) -> ExecutionResult:
    """Run code once inside a fresh isolated store.

    Args:
        handle: Engine the module was compiled for
        module: Compiled interpreter module
        code: User source, passed as `python -c <code>`
        state: RunState carrying this execution's limiter
        timeout: Wall-clock limit used to size the epoch deadline
        input: Call-level stdin payload
        stdin: Config-level stdin payload; wins over input when both are set
        env_vars: Environment variables exposed to the guest, in order
        prelude: Source prepended to code
        max_fuel: Instruction budget, or None for no fuel accounting
        used_cached_module: Reported in the result metadata

    Returns:
        ExecutionResult for a run that returned or called proc_exit

    Raises:
        MemoryLimitExceededError: Memory or table growth was denied
        ExecutionTimeoutError: The epoch deadline trapped the guest
        OutOfFuelError: The instruction budget ran out
        ModuleLoadError: Instantiation failed or _start is missing
        RuntimeInitError: Store, WASI or fuel setup failed
        SandboxIOError: The capture directory could not be prepared
        SandboxExecutionError: Any other trap or engine error
    """
    try:
        return _run(
            handle,
            module,
            build_source(code, prelude),
            state=state,
            timeout=timeout,
            stdin_payload=stdin if stdin is not None else input,
            env_vars=env_vars,
            max_fuel=max_fuel,
            used_cached_module=used_cached_module,
        )
    finally:
        state.finished.set()


def _run(
    handle: EngineHandle,
    module: Module,
    full_code: str,
    *,
    state: RunState,
    timeout: timedelta,
    stdin_payload: str | None,
    env_vars: Sequence[tuple[str, str]],
    max_fuel: int | None,
    used_cached_module: bool,
) -> ExecutionResult:
    start_time = time.perf_counter()
    limiter = state.limiter

    try:
        tmp = tempfile.mkdtemp(prefix="wasm-sandbox-")
    except OSError as e:
        raise SandboxIOError(f"cannot create capture directory: {e}") from e

    stdin_path = os.path.join(tmp, "stdin.txt")
    out_log = os.path.join(tmp, "stdout.log")
    err_log = os.path.join(tmp, "stderr.log")

    try:
        try:
            with open(stdin_path, "wb") as f:
                f.write((stdin_payload or "").encode("utf-8"))
        except OSError as e:
            raise SandboxIOError(f"cannot write stdin payload: {e}") from e

        wasi = WasiConfig()
        wasi.argv = (INTERPRETER_ARGV0, "-c", full_code)
        wasi.env = [(k, v) for k, v in env_vars]
        wasi.stdin_file = stdin_path
        wasi.stdout_file = out_log
        wasi.stderr_file = err_log

        store = Store(handle.engine)
        store.set_wasi(wasi)

        try:
            store.set_limits(**limiter.store_limits())
        except WasmtimeError as e:
            raise RuntimeInitError(
                f"failed to enforce memory limit of {limiter.max_memory} bytes: {e}"
            ) from e

        state.deadline_epoch = handle.arm(store, timeout)
        try:
            if not state.begin():
                raise ExecutionTimeoutError(timeout)
            exit_code, fuel_consumed = _instantiate_and_start(
                handle, store, module, limiter, start_time, max_fuel
            )
        finally:
            handle.release(state.deadline_epoch)

        stdout = _read_output(out_log)
        stderr = _read_output(err_log)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)

    return ExecutionResult(
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        metadata=ExecutionMetadata(
            duration=timedelta(seconds=time.perf_counter() - start_time),
            peak_memory=limiter.peak_memory,
            fuel_consumed=fuel_consumed,
            used_cached_module=used_cached_module,
        ),
    )


def _instantiate_and_start(
    handle: EngineHandle,
    store: Store,
    module: Module,
    limiter: SandboxLimiter,
    start_time: float,
    max_fuel: int | None,
) -> tuple[int, int | None]:
    if max_fuel is not None or handle.consume_fuel:
        if not handle.consume_fuel:
            raise RuntimeInitError("failed to set fuel: engine was created without fuel accounting")
        try:
            store.set_fuel(max_fuel if max_fuel is not None else UNMETERED_FUEL)
        except WasmtimeError as e:
            raise RuntimeInitError(f"failed to set fuel: {e}") from e

    linker = Linker(handle.engine)
    try:
        linker.define_wasi()
    except WasmtimeError as e:
        raise RuntimeInitError(f"failed to link WASI: {e}") from e

    limiter.observe_module(module)

    try:
        instance = linker.instantiate(store, module)
    except (Trap, WasmtimeError) as e:
        if limiter.exceeded:
            raise MemoryLimitExceededError(
                f"memory limit exceeded during instantiation (used {limiter.current_memory} bytes, "
                f"limit {limiter.max_memory} bytes)"
            ) from e
        raise ModuleLoadError(f"failed to instantiate: {e}") from e

    exports = instance.exports(store)
    start = _export(exports, ENTRY_POINT)
    if not isinstance(start, Func):
        raise ModuleLoadError(f"module does not export a {ENTRY_POINT} function")
    memory = _export(exports, MEMORY_EXPORT)
    tables = [item for item in exports.by_index if isinstance(item, Table)]

    def observe_usage() -> int:
        size = memory.data_len(store) if isinstance(memory, Memory) else limiter.current_memory
        limiter.observe(size)
        for table in tables:
            limiter.observe_table(table.size(store))
        return size

    try:
        start(store)
    except (Trap, WasmtimeError) as e:
        exit_code = _classify_failure(e, store, limiter, start_time, max_fuel, observe_usage())
    else:
        observe_usage()
        exit_code = 0

    fuel_consumed = None
    if max_fuel is not None:
        fuel_consumed = max(0, max_fuel - _remaining_fuel(store))
    return exit_code, fuel_consumed


def _classify_failure(
    error: Exception,
    store: Store,
    limiter: SandboxLimiter,
    start_time: float,
    max_fuel: int | None,
    memory_bytes: int,
) -> int:
    """Map a failed _start call to an exit code or raise the typed error."""
    interrupted = is_epoch_interrupt(error)
    out_of_fuel = not interrupted and is_out_of_fuel(error)
    if not (interrupted or out_of_fuel or isinstance(error, ExitTrap)):
        limiter.observe_abort(memory_bytes)

    if limiter.exceeded:
        raise MemoryLimitExceededError(
            f"memory limit exceeded during execution (current {limiter.current_memory} bytes, "
            f"peak {limiter.peak_memory} bytes, limit {limiter.max_memory} bytes)"
        ) from error

    if interrupted:
        raise ExecutionTimeoutError(timedelta(seconds=time.perf_counter() - start_time)) from error

    if out_of_fuel:
        consumed = None
        if max_fuel is not None:
            consumed = max(0, max_fuel - _remaining_fuel(store))
        raise OutOfFuelError(consumed) from error

    if isinstance(error, ExitTrap):
        return error.code

    raise SandboxExecutionError(str(error)) from error
