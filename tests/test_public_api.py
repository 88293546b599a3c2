"""Tests for public API exports from the wasm_sandbox package.

Verifies all components are correctly exported and accessible via
'from wasm_sandbox import ...' statements and that __all__ is complete.
"""

from __future__ import annotations

import wasm_sandbox


def test_all_names_resolve() -> None:
    for name in wasm_sandbox.__all__:
        assert hasattr(wasm_sandbox, name), name


def test_version() -> None:
    assert wasm_sandbox.__version__ == "0.1.0"


def test_python_sandbox_extends_base() -> None:
    from wasm_sandbox import BaseSandbox, PythonSandbox

    assert issubclass(PythonSandbox, BaseSandbox)
    assert hasattr(BaseSandbox, "execute")
    assert hasattr(BaseSandbox, "validate_code")


def test_error_hierarchy_exported() -> None:
    from wasm_sandbox import (
        ExecutionTimeoutError,
        InterpreterNotFoundError,
        MemoryLimitExceededError,
        ModuleLoadError,
        OutOfFuelError,
        PolicyValidationError,
        PythonExceptionError,
        RuntimeInitError,
        SandboxError,
        SandboxExecutionError,
        SandboxIOError,
    )

    for error_class in (
        ExecutionTimeoutError,
        InterpreterNotFoundError,
        MemoryLimitExceededError,
        ModuleLoadError,
        OutOfFuelError,
        PolicyValidationError,
        PythonExceptionError,
        RuntimeInitError,
        SandboxExecutionError,
        SandboxIOError,
    ):
        assert issubclass(error_class, SandboxError)


def test_config_builder_exported() -> None:
    from wasm_sandbox import SandboxConfig, SandboxConfigBuilder

    assert isinstance(SandboxConfig.builder(), SandboxConfigBuilder)


def test_parse_exception_exported() -> None:
    from wasm_sandbox import parse_exception

    assert parse_exception("KeyError: 'x'").exception_type == "KeyError"
