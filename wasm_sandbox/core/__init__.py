"""Core sandbox abstractions and models.

This module provides the foundational types for the WASM Python sandbox:
Pydantic models for configuration and results, the base sandbox
abstraction, the error taxonomy and stderr exception parsing.
"""

from __future__ import annotations

from .base import BaseSandbox
from .classify import parse_exception
from .errors import (
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
from .models import ExecutionMetadata, ExecutionResult, SandboxConfig, SandboxConfigBuilder

__all__ = [
    "BaseSandbox",
    "ExecutionMetadata",
    "ExecutionResult",
    "ExecutionTimeoutError",
    "InterpreterNotFoundError",
    "MemoryLimitExceededError",
    "ModuleLoadError",
    "OutOfFuelError",
    "PolicyValidationError",
    "PythonExceptionError",
    "RuntimeInitError",
    "SandboxConfig",
    "SandboxConfigBuilder",
    "SandboxError",
    "SandboxExecutionError",
    "SandboxIOError",
    "parse_exception",
]
