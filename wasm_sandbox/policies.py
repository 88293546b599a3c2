"""Configuration loading for WASM sandbox execution.

Provides the default limits and TOML-based loading of SandboxConfig. TOML
durations are plain numbers: `timeout_seconds` and `epoch_tick_interval_ms`.
Environment variables live in an `[env]` table and keep their file order.

Example config/sandbox.toml:

    timeout_seconds = 5
    max_memory = 33554432
    max_fuel = 500000000
    interpreter_path = "bin/python.wasm"
    epoch_tick_interval_ms = 5
    prelude = "import math"

    [env]
    PYTHONHASHSEED = "0"
"""

from __future__ import annotations

import os
import tomllib
from datetime import timedelta
from typing import Any

from wasm_sandbox.core.errors import PolicyValidationError
from wasm_sandbox.core.models import (
    DEFAULT_EPOCH_TICK_INTERVAL,
    DEFAULT_MAX_MEMORY,
    DEFAULT_TIMEOUT,
    SandboxConfig,
)

DEFAULT_CONFIG: dict[str, Any] = {
    # Wall-clock limit - the orchestrator abandons the run when it elapses
    "timeout_seconds": DEFAULT_TIMEOUT.total_seconds(),

    # Linear memory cap - prevents memory bombs
    "max_memory": DEFAULT_MAX_MEMORY,

    # How often the interrupt ticker advances the engine epoch
    "epoch_tick_interval_ms": DEFAULT_EPOCH_TICK_INTERVAL.total_seconds() * 1000,

    # Environment whitelist - only expose explicitly required variables
    "env": {},
}

_KNOWN_KEYS = {
    "timeout_seconds",
    "max_memory",
    "max_fuel",
    "interpreter_path",
    "epoch_tick_interval_ms",
    "stdin",
    "env",
    "prelude",
}


def _to_config_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Translate TOML keys to SandboxConfig field names."""
    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise PolicyValidationError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    env = data.get("env", {})
    if not isinstance(env, dict):
        raise PolicyValidationError("Config 'env' must be a table of string values")

    try:
        fields: dict[str, Any] = {
            "timeout": timedelta(seconds=float(data["timeout_seconds"])),
            "max_memory": data["max_memory"],
            "epoch_tick_interval": timedelta(milliseconds=float(data["epoch_tick_interval_ms"])),
            "env_vars": tuple((str(k), str(v)) for k, v in env.items()),
        }
    except (TypeError, ValueError) as e:
        raise PolicyValidationError(f"Config validation failed: {e}") from e

    for key in ("max_fuel", "interpreter_path", "stdin", "prelude"):
        if key in data:
            fields[key] = data[key]
    return fields


def load_config(path: str = "config/sandbox.toml") -> SandboxConfig:
    """Load and merge user configuration with defaults.

    Performs a shallow merge of user-provided TOML settings with DEFAULT_CONFIG.
    The env table is merged key by key so defaults survive additions.

    Args:
        path: Path to the TOML file. If the file doesn't exist, returns
              SandboxConfig with defaults.

    Returns:
        SandboxConfig: Validated, immutable configuration.

    Raises:
        PolicyValidationError: If the file contains unknown keys or invalid
                               values (non-positive limits, wrong types, etc.)
        tomllib.TOMLDecodeError: If TOML file is malformed
        OSError: If file exists but cannot be read
    """
    if not os.path.exists(path):
        return SandboxConfig(**_to_config_fields(DEFAULT_CONFIG))

    with open(path, "rb") as f:
        data = tomllib.load(f)

    # Merge top-level keys, with user overrides taking precedence
    merged = DEFAULT_CONFIG | data

    # Deep merge env so default environment variables are preserved
    if isinstance(data.get("env", {}), dict):
        merged["env"] = DEFAULT_CONFIG["env"] | data.get("env", {})

    return SandboxConfig(**_to_config_fields(merged))
