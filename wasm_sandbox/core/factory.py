"""Factory function for creating sandbox instances.

Provides create_sandbox(), which fills in defaults (config loaded from TOML
when a path is given, process-wide cache and engine otherwise) and returns a
ready PythonSandbox.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from wasm_sandbox.core.models import SandboxConfig
from wasm_sandbox.policies import load_config

if TYPE_CHECKING:
    from wasm_sandbox.core.logging import SandboxLogger
    from wasm_sandbox.runtimes.python.sandbox import PythonSandbox, SandboxOptions


def create_sandbox(
    config: SandboxConfig | None = None,
    options: SandboxOptions | None = None,
    logger: SandboxLogger | None = None,
    config_path: str | None = None,
) -> PythonSandbox:
    """Create a Python sandbox.

    Args:
        config: Optional SandboxConfig. If None, loaded from config_path when
                given, else defaults.
        options: Optional SandboxOptions controlling cache and engine reuse.
        logger: Optional SandboxLogger. If None, the sandbox creates one.
        config_path: Optional TOML file used when config is None.

    Returns:
        PythonSandbox with engine and module already resolved

    Raises:
        ValueError: If both config and config_path are given
        InterpreterNotFoundError: If the interpreter binary is missing
        ModuleLoadError: If the interpreter binary is invalid

    Examples:
        >>> sandbox = create_sandbox()
        >>> sandbox = create_sandbox(SandboxConfig(timeout=5, max_fuel=1_000_000_000))
        >>> sandbox = create_sandbox(config_path="config/sandbox.toml")
    """
    if config is not None and config_path is not None:
        raise ValueError("Pass either config or config_path, not both")

    if config is None:
        config = load_config(config_path) if config_path is not None else SandboxConfig()

    from wasm_sandbox.runtimes.python.sandbox import PythonSandbox

    return PythonSandbox(config=config, options=options, logger=logger)
