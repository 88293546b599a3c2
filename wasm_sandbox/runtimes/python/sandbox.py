"""PythonSandbox: asynchronous orchestration layer for Python WASM execution.

Each execute() call races a blocking run_isolated() call on a worker thread
against the configured wall-clock timeout, while an interrupt ticker task
advances the shared engine's epoch counter. The epoch check is made by the
engine itself at loop headers and function entries, so even a guest that
never yields is stopped. On timeout the orchestrator forces one more tick and
abandons the worker without joining it; the ticker keeps running until the
abandoned guest reaches its deadline, and the counter jumps straight there
only when no other execution is armed on the engine.

Guest failures are data: an uncaught exception in user code produces an
ExecutionResult with a nonzero exit_code and the traceback in stderr. Only
infrastructure failures (timeouts, limits, traps, setup errors) raise.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass
from typing import TYPE_CHECKING

from wasm_sandbox.cache import (
    EngineHandle,
    ModuleCache,
    compile_module,
    default_engine,
    global_cache,
)
from wasm_sandbox.core.base import BaseSandbox
from wasm_sandbox.core.errors import (
    ExecutionTimeoutError,
    MemoryLimitExceededError,
    OutOfFuelError,
    RuntimeInitError,
    SandboxError,
    SandboxExecutionError,
)
from wasm_sandbox.core.models import ExecutionResult, SandboxConfig
from wasm_sandbox.host import RunState, run_isolated
from wasm_sandbox.limits import SandboxLimiter

if TYPE_CHECKING:
    from wasmtime import Module

    from wasm_sandbox.core.logging import SandboxLogger

# Tickers kept alive for abandoned runs until their guest traps
_draining_tickers: set[asyncio.Task[None]] = set()


@dataclass(frozen=True)
class SandboxOptions:
    """Controls module caching and engine sharing for a PythonSandbox.

    Attributes:
        use_cache: Whether to reuse compiled modules through a ModuleCache
        cache: Private cache to use; None means the process-wide cache
        engine: Shared EngineHandle; None means the process default for the
            config's fuel mode
    """

    use_cache: bool = True
    cache: ModuleCache | None = None
    engine: EngineHandle | None = None

    @classmethod
    def no_cache(cls) -> SandboxOptions:
        return cls(use_cache=False)

    @classmethod
    def with_cache(cls, cache: ModuleCache) -> SandboxOptions:
        return cls(use_cache=True, cache=cache)

    @classmethod
    def with_engine(cls, engine: EngineHandle) -> SandboxOptions:
        return cls(use_cache=True, engine=engine)


class PythonSandbox(BaseSandbox):
    """Python sandbox running an interpreter WASM module under hard limits.

    Construction resolves the engine and compiled module once; every
    execute() call then gets its own store, limiter and capture buffers, so
    concurrent calls on one sandbox never see each other's output.

    Attributes:
        config: Immutable SandboxConfig
        options: SandboxOptions used to resolve engine and module
        logger: SandboxLogger for structured event emission

    Examples:
        >>> sandbox = PythonSandbox(SandboxConfig(timeout=5))
        >>> result = await sandbox.execute("print(1 + 1)")
        >>> result.stdout.strip()
        '2'
    """

    def __init__(
        self,
        config: SandboxConfig | None = None,
        options: SandboxOptions | None = None,
        logger: SandboxLogger | None = None,
    ) -> None:
        """Resolve engine and module for config.

        Raises:
            InterpreterNotFoundError: If config.interpreter_path does not exist
            SandboxIOError: If the interpreter cannot be read
            ModuleLoadError: If the interpreter is not a valid module
            RuntimeInitError: If the engine cannot honor the fuel budget
        """
        super().__init__(config or SandboxConfig(), logger)
        self.options = options or SandboxOptions()

        engine = self.options.engine
        if engine is None:
            engine = default_engine(consume_fuel=self.config.max_fuel is not None)
        elif self.config.max_fuel is not None and not engine.consume_fuel:
            raise RuntimeInitError("max_fuel is set but the shared engine has fuel accounting disabled")
        self._engine = engine

        path = self.config.interpreter_path
        if self.options.use_cache:
            cache = self.options.cache if self.options.cache is not None else global_cache()
            self._module_was_cached = cache.contains(path, engine)
            self._module = cache.get_or_compile(engine, path)
        else:
            self._module_was_cached = False
            self._module = compile_module(engine, path)

    @property
    def engine(self) -> EngineHandle:
        """Engine handle this sandbox executes on."""
        return self._engine

    @property
    def module(self) -> Module:
        return self._module

    @property
    def is_using_cached_module(self) -> bool:
        """Whether the module was already cached when this sandbox was built."""
        return self._module_was_cached

    async def execute(self, code: str, input: str | None = None) -> ExecutionResult:
        """Execute Python code in the sandbox.

        Args:
            code: Python source to run as `python -c <code>`
            input: Optional stdin payload; ignored when config.stdin is set

        Returns:
            ExecutionResult with stdout, stderr, exit code and metadata

        Raises:
            ExecutionTimeoutError: Wall-clock timeout elapsed
            MemoryLimitExceededError: Guest hit the memory or table ceiling
            OutOfFuelError: Instruction budget exhausted
            SandboxExecutionError: Unclassified trap, or the worker crashed
            ModuleLoadError, RuntimeInitError, SandboxIOError: Setup failures
        """
        self.logger.log_execution_start(self.config, code_len=len(code), has_input=input is not None)

        loop = asyncio.get_running_loop()
        state = RunState(limiter=SandboxLimiter(self.config.max_memory))
        run = functools.partial(
            run_isolated,
            self._engine,
            self._module,
            code,
            state=state,
            timeout=self.config.timeout,
            input=input,
            stdin=self.config.stdin,
            env_vars=self.config.env_vars,
            prelude=self.config.prelude,
            max_fuel=self.config.max_fuel,
            used_cached_module=self._module_was_cached,
        )

        ticker = asyncio.create_task(self._run_ticker(state))
        future = loop.run_in_executor(None, run)
        try:
            done, _ = await asyncio.wait({future}, timeout=self.config.timeout.total_seconds())
        except asyncio.CancelledError:
            self._abandon(future, state, ticker)
            raise

        if not done:
            self._abandon(future, state, ticker)
            self.logger.log_execution_timeout(self.config.timeout.total_seconds() * 1000)
            raise ExecutionTimeoutError(self.config.timeout)

        ticker.cancel()
        try:
            result = future.result()
        except SandboxError as e:
            self._log_failure(e)
            raise
        except Exception as e:
            error = SandboxExecutionError(f"task panicked: {type(e).__name__}: {e}")
            self.logger.log_execution_failed(error)
            raise error from e

        self._log_execution_metrics(result)
        return result

    def validate_code(self, code: str) -> bool:
        """Validate Python code syntax without executing it.

        Uses the host compile() builtin; nothing is executed or imported.
        """
        try:
            compile(code, "<sandbox>", "exec")
            return True
        except (SyntaxError, ValueError):
            return False

    async def _run_ticker(self, state: RunState) -> None:
        interval = self.config.epoch_tick_interval.total_seconds()
        while not state.finished.is_set():
            await asyncio.sleep(interval)
            self._engine.tick()

    def _abandon(
        self,
        future: asyncio.Future[ExecutionResult],
        state: RunState,
        ticker: asyncio.Task[None],
    ) -> None:
        """Stop caring about an in-flight run and make its store trap."""
        running = state.abandon()
        future.cancel()
        self._engine.interrupt(until=state.deadline_epoch)
        if running:
            # The guest keeps its thread until the epoch reaches its deadline
            _draining_tickers.add(ticker)
            ticker.add_done_callback(_draining_tickers.discard)
        else:
            ticker.cancel()

    def _log_failure(self, error: SandboxError) -> None:
        if isinstance(error, MemoryLimitExceededError):
            self.logger.log_security_event(
                "memory_limit_exceeded",
                {"detail": error.detail, "max_memory": self.config.max_memory},
            )
        elif isinstance(error, OutOfFuelError):
            self.logger.log_security_event(
                "out_of_fuel",
                {"fuel_consumed": error.consumed, "max_fuel": self.config.max_fuel},
            )
        self.logger.log_execution_failed(error)
