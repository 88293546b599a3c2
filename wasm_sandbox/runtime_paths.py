"""Interpreter binary path resolution.

Locates the interpreter WASM binary bundled with the package, falling back to
project-relative paths for development workflows.
"""

from __future__ import annotations

import os
from pathlib import Path

INTERPRETER_BINARY = "python.wasm"
INTERPRETER_ENV_VAR = "WASM_SANDBOX_INTERPRETER"


def get_interpreter_path(binary_name: str = INTERPRETER_BINARY) -> Path:
    """Get path to the interpreter WASM binary, with fallback for development.

    Searches in the following order:
    1. The WASM_SANDBOX_INTERPRETER environment variable
    2. The bin/ directory next to the installed package
    3. The bin/ directory of the current working directory

    Args:
        binary_name: Name of the WASM binary file

    Returns:
        Path to the interpreter binary

    Raises:
        FileNotFoundError: If the binary cannot be found in any search location
    """
    override = os.environ.get(INTERPRETER_ENV_VAR)
    if override:
        override_path = Path(override)
        if override_path.is_file():
            return override_path
        raise FileNotFoundError(
            f"{INTERPRETER_ENV_VAR} points to '{override}', which is not a file"
        )

    # wasm_sandbox/ -> project root
    package_dir = Path(__file__).parent.parent
    bundled_path = package_dir / "bin" / binary_name
    if bundled_path.is_file():
        return bundled_path

    cwd_bin = Path.cwd() / "bin" / binary_name
    if cwd_bin.is_file():
        return cwd_bin

    search_locations = [str(bundled_path), str(cwd_bin)]
    raise FileNotFoundError(
        f"WASM binary '{binary_name}' not found. Searched locations:\n"
        + "\n".join(f"  - {loc}" for loc in search_locations)
        + f"\n\nSet {INTERPRETER_ENV_VAR} or place the binary in bin/."
    )


def default_interpreter_path() -> Path:
    """Interpreter path used when a config does not name one.

    Never raises: when no binary is found the conventional bin/python.wasm is
    returned and the missing file is reported later as InterpreterNotFoundError.
    """
    try:
        return get_interpreter_path()
    except FileNotFoundError:
        return Path("bin") / INTERPRETER_BINARY
