"""Exception classes for sandbox failures.

Every failure the sandbox reports is exactly one subclass of SandboxError.
Resource-policy violations (timeout, memory, fuel) are distinguishable via
the predicate helpers on the base class so callers never need to match on
message text.

Guest-level exceptions that the interpreter reports through stderr and a
nonzero exit code are NOT raised by PythonSandbox.execute(); they come back
as an ExecutionResult with exit_code != 0. Callers opt in to a typed view by
calling parse_exception(result.stderr), which returns PythonExceptionError.
"""

from __future__ import annotations

from datetime import timedelta


class SandboxError(Exception):
    """Base class for every error raised by the sandbox."""

    @classmethod
    def from_python_stderr(cls, stderr: str) -> PythonExceptionError | None:
        """Parse an interpreter exception out of captured stderr text.

        Args:
            stderr: Captured guest stderr

        Returns:
            PythonExceptionError if an exception line was found, else None
        """
        from wasm_sandbox.core.classify import parse_exception

        return parse_exception(stderr)

    def is_timeout(self) -> bool:
        """True if this error represents a wall-clock timeout."""
        return isinstance(self, ExecutionTimeoutError)

    def is_memory_limit(self) -> bool:
        """True if this error represents a memory ceiling violation."""
        return isinstance(self, MemoryLimitExceededError)

    def is_python_exception(self) -> bool:
        """True if this error was parsed from guest stderr."""
        return isinstance(self, PythonExceptionError)

    def is_out_of_fuel(self) -> bool:
        """True if this error represents instruction budget exhaustion."""
        return isinstance(self, OutOfFuelError)


class ExecutionTimeoutError(SandboxError):
    """Raised when execution exceeds the configured wall-clock timeout."""

    def __init__(self, duration: timedelta) -> None:
        self.duration = duration
        super().__init__(f"execution timed out after {duration.total_seconds():.3f}s")


class MemoryLimitExceededError(SandboxError):
    """Raised when the guest tried to grow memory or tables past the ceiling."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"memory limit exceeded: {detail}")


class RuntimeInitError(SandboxError):
    """Raised when the WASM engine or store cannot be set up."""

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"failed to initialize runtime: {cause}")


class ModuleLoadError(SandboxError):
    """Raised when the interpreter module cannot be compiled or instantiated."""

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"failed to load Python interpreter: {cause}")


class SandboxExecutionError(SandboxError):
    """Raised when execution fails for a reason no other class describes.

    Carries the raw underlying message for diagnostics. User code errors
    (syntax errors, uncaught exceptions) are not reported this way; they are
    captured in ExecutionResult.stderr with a nonzero exit code.
    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"execution failed: {detail}")


class PythonExceptionError(SandboxError):
    """An interpreter exception recovered from guest stderr.

    Attributes:
        exception_type: Exception class name, e.g. "ValueError"
        message: Text after the first colon of the exception line
        traceback: Traceback text through the exception line, if present
    """

    def __init__(self, exception_type: str, message: str, traceback: str | None = None) -> None:
        self.exception_type = exception_type
        self.message = message
        self.traceback = traceback
        super().__init__(f"Python {exception_type}: {message}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PythonExceptionError):
            return NotImplemented
        return (
            self.exception_type == other.exception_type
            and self.message == other.message
            and self.traceback == other.traceback
        )

    __hash__ = None  # type: ignore[assignment]


class SandboxIOError(SandboxError):
    """Raised for host filesystem errors while preparing an execution."""

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"I/O error: {cause}")


class PolicyValidationError(SandboxError):
    """Raised when sandbox configuration is invalid.

    Wraps pydantic ValidationError with a domain-specific name, and is also
    raised for malformed TOML configuration values.
    """

    pass


class InterpreterNotFoundError(SandboxError):
    """Raised when the interpreter WASM binary does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Python interpreter wasm not found at: {path}")


class OutOfFuelError(SandboxError):
    """Raised when the instruction budget is exhausted."""

    def __init__(self, consumed: int | None = None) -> None:
        self.consumed = consumed
        super().__init__(f"execution ran out of fuel after {consumed} instructions")
