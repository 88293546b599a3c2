"""Pydantic models for type-safe sandbox configuration and results.

Provides the immutable SandboxConfig (plus its accumulating builder) and the
ExecutionResult/ExecutionMetadata models returned by a successful execution.
Durations accept either timedelta values or plain numbers of seconds.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from wasm_sandbox.core.errors import PolicyValidationError
from wasm_sandbox.runtime_paths import default_interpreter_path

DEFAULT_TIMEOUT = timedelta(seconds=30)
DEFAULT_MAX_MEMORY = 64 * 1024 * 1024
DEFAULT_EPOCH_TICK_INTERVAL = timedelta(milliseconds=10)


class SandboxConfig(BaseModel):
    """Immutable description of one logical sandbox.

    Attributes:
        timeout: Wall-clock limit for a single execution
        max_memory: Linear memory ceiling in bytes
        max_fuel: Optional instruction budget (None = no fuel accounting)
        interpreter_path: Path to the interpreter WASM binary
        epoch_tick_interval: How often the interrupt ticker wakes
        stdin: Optional stdin payload (takes precedence over execute() input)
        env_vars: Ordered environment variables exposed to the guest
        prelude: Optional source prepended to user code
    """

    model_config = ConfigDict(frozen=True)

    timeout: timedelta = Field(
        default=DEFAULT_TIMEOUT,
        description="Wall-clock limit for a single execution"
    )

    max_memory: int = Field(
        default=DEFAULT_MAX_MEMORY,
        description="Linear memory ceiling in bytes"
    )

    max_fuel: int | None = Field(
        default=None,
        description="Optional instruction budget (None disables fuel accounting)"
    )

    interpreter_path: Path = Field(
        default_factory=default_interpreter_path,
        description="Path to the interpreter WASM binary"
    )

    epoch_tick_interval: timedelta = Field(
        default=DEFAULT_EPOCH_TICK_INTERVAL,
        description="Interval between interrupt-counter ticks"
    )

    stdin: str | None = Field(
        default=None,
        description="Stdin payload; overrides the execute() input argument"
    )

    env_vars: tuple[tuple[str, str], ...] = Field(
        default=(),
        description="Ordered (key, value) environment variables exposed to the guest"
    )

    prelude: str | None = Field(
        default=None,
        description="Source text prepended to user code"
    )

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise PolicyValidationError(f"Invalid sandbox config: {e}") from e

    @classmethod
    def model_validate(cls, obj: Any, *, strict: bool | None = None, context: dict[str, Any] | None = None) -> SandboxConfig:
        try:
            return super().model_validate(obj, strict=strict, context=context)  # type: ignore[arg-type]
        except ValidationError as e:
            raise PolicyValidationError(f"Invalid sandbox config: {e}") from e

    @field_validator("timeout", "epoch_tick_interval")
    @classmethod
    def validate_positive_duration(cls, v: timedelta) -> timedelta:
        """Ensure durations are strictly positive."""
        if v <= timedelta(0):
            raise ValueError("Duration must be positive")
        return v

    @field_validator("max_memory")
    @classmethod
    def validate_max_memory(cls, v: int) -> int:
        """Ensure the memory ceiling is positive."""
        if v <= 0:
            raise ValueError("Resource limits must be positive")
        return v

    @field_validator("max_fuel")
    @classmethod
    def validate_max_fuel(cls, v: int | None) -> int | None:
        """Ensure the fuel budget is positive if provided."""
        if v is not None and v <= 0:
            raise ValueError("Resource limits must be positive")
        return v

    @classmethod
    def builder(cls) -> SandboxConfigBuilder:
        """Start an accumulating builder with every field at its default."""
        return SandboxConfigBuilder()


class SandboxConfigBuilder:
    """Chainable builder for SandboxConfig.

    Only fields that were set are passed to SandboxConfig, so unset fields
    keep their defaults. env() and envs() append in call order.

    Examples:
        >>> config = (
        ...     SandboxConfig.builder()
        ...     .timeout(timedelta(seconds=5))
        ...     .max_memory(32 * 1024 * 1024)
        ...     .env("MODE", "test")
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        self._fields: dict[str, Any] = {}
        self._env_vars: list[tuple[str, str]] = []

    def timeout(self, timeout: timedelta | float) -> SandboxConfigBuilder:
        self._fields["timeout"] = timeout
        return self

    def max_memory(self, max_bytes: int) -> SandboxConfigBuilder:
        self._fields["max_memory"] = max_bytes
        return self

    def max_fuel(self, fuel: int) -> SandboxConfigBuilder:
        self._fields["max_fuel"] = fuel
        return self

    def interpreter_path(self, path: str | Path) -> SandboxConfigBuilder:
        self._fields["interpreter_path"] = Path(path)
        return self

    def epoch_tick_interval(self, interval: timedelta | float) -> SandboxConfigBuilder:
        self._fields["epoch_tick_interval"] = interval
        return self

    def stdin(self, data: str) -> SandboxConfigBuilder:
        self._fields["stdin"] = data
        return self

    def env(self, key: str, value: str) -> SandboxConfigBuilder:
        self._env_vars.append((key, value))
        return self

    def envs(self, pairs: Any) -> SandboxConfigBuilder:
        """Append many environment variables from a mapping or pair iterable."""
        items = pairs.items() if hasattr(pairs, "items") else pairs
        for key, value in items:
            self._env_vars.append((key, value))
        return self

    def prelude(self, code: str) -> SandboxConfigBuilder:
        self._fields["prelude"] = code
        return self

    def build(self) -> SandboxConfig:
        """Validate and return the immutable config.

        Raises:
            PolicyValidationError: If any accumulated value is invalid
        """
        return SandboxConfig(**self._fields, env_vars=tuple(self._env_vars))


class ExecutionMetadata(BaseModel):
    """Resource usage recorded for one execution.

    Attributes:
        duration: Wall-clock time spent inside the isolated run
        peak_memory: Highest linear memory size observed by the limiter (bytes)
        fuel_consumed: Instructions consumed (None unless a budget was configured)
        used_cached_module: Whether the compiled module came from the cache
    """

    model_config = ConfigDict(frozen=True)

    duration: timedelta = Field(default=timedelta(0))
    peak_memory: int = Field(default=0)
    fuel_consumed: int | None = Field(default=None)
    used_cached_module: bool = Field(default=False)


class ExecutionResult(BaseModel):
    """Captured output of an execution that ran to completion.

    A nonzero exit_code is a normal result: the guest asked to exit, usually
    because an uncaught exception was written to stderr. Use
    parse_exception(result.stderr) to recover the exception details.

    Attributes:
        stdout: Captured stdout, decoded as UTF-8 with replacement
        stderr: Captured stderr, decoded as UTF-8 with replacement
        exit_code: Guest exit code (0 = success)
        metadata: Timing and resource usage
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "examples": [
                {
                    "stdout": "2\n",
                    "stderr": "",
                    "exit_code": 0,
                    "metadata": {
                        "duration": 0.125,
                        "peak_memory": 8388608,
                        "fuel_consumed": None,
                        "used_cached_module": True,
                    },
                }
            ]
        },
    )

    stdout: str = Field(default="")
    stderr: str = Field(default="")
    exit_code: int = Field(default=0)
    metadata: ExecutionMetadata = Field(default_factory=ExecutionMetadata)

    def is_success(self) -> bool:
        """True when the guest exited with code 0."""
        return self.exit_code == 0
