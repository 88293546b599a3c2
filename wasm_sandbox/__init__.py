"""Run untrusted Python code inside a WebAssembly sandbox.

The interpreter WASM module runs under wasmtime with a hard memory ceiling,
a wall-clock timeout enforced through epoch interruption, and an optional
instruction (fuel) budget. The guest gets argv, environment variables and
stdin only: no filesystem directories, no network, no subprocesses.

Example:
    >>> import asyncio
    >>> from wasm_sandbox import PythonSandbox, SandboxConfig
    >>> config = SandboxConfig.builder().timeout(5).max_memory(32 * 1024 * 1024).build()
    >>> sandbox = PythonSandbox(config)
    >>> result = asyncio.run(sandbox.execute("print(1 + 1)"))
    >>> result.stdout.strip()
    '2'

A guest exception is a result with a nonzero exit code, not an error:
    >>> result = asyncio.run(sandbox.execute("int('abc')"))
    >>> parse_exception(result.stderr).exception_type
    'ValueError'
"""

from __future__ import annotations

from wasm_sandbox.cache import EngineHandle, ModuleCache, default_engine, global_cache
from wasm_sandbox.core import (
    BaseSandbox,
    ExecutionMetadata,
    ExecutionResult,
    ExecutionTimeoutError,
    InterpreterNotFoundError,
    MemoryLimitExceededError,
    ModuleLoadError,
    OutOfFuelError,
    PolicyValidationError,
    PythonExceptionError,
    RuntimeInitError,
    SandboxConfig,
    SandboxConfigBuilder,
    SandboxError,
    SandboxExecutionError,
    SandboxIOError,
    parse_exception,
)
from wasm_sandbox.core.factory import create_sandbox
from wasm_sandbox.core.logging import SandboxLogger, configure_structlog
from wasm_sandbox.limits import SandboxLimiter
from wasm_sandbox.policies import load_config
from wasm_sandbox.runtimes.python import PythonSandbox, SandboxOptions

__version__ = "0.1.0"

__all__ = [
    "BaseSandbox",
    "EngineHandle",
    "ExecutionMetadata",
    "ExecutionResult",
    "ExecutionTimeoutError",
    "InterpreterNotFoundError",
    "MemoryLimitExceededError",
    "ModuleLoadError",
    "ModuleCache",
    "OutOfFuelError",
    "PolicyValidationError",
    "PythonExceptionError",
    "PythonSandbox",
    "RuntimeInitError",
    "SandboxConfig",
    "SandboxConfigBuilder",
    "SandboxError",
    "SandboxExecutionError",
    "SandboxIOError",
    "SandboxLimiter",
    "SandboxLogger",
    "SandboxOptions",
    "configure_structlog",
    "create_sandbox",
    "default_engine",
    "global_cache",
    "load_config",
    "parse_exception",
]
