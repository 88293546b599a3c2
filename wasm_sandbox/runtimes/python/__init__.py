"""Python runtime: a WASI build of the CPython interpreter."""

from __future__ import annotations

from .sandbox import PythonSandbox, SandboxOptions

__all__ = ["PythonSandbox", "SandboxOptions"]
