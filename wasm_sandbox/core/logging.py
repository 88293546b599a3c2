"""Structured logging for sandbox executions, the module cache and limit violations.

SandboxLogger emits named events (execution.start, execution.complete,
cache.*, security.*) through structlog. configure_structlog() installs a
console or JSON pipeline for applications that have not configured structlog
themselves; a plain logging.Logger can be passed instead.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from wasm_sandbox.core.errors import SandboxError
    from wasm_sandbox.core.models import ExecutionResult, SandboxConfig

DEFAULT_LOGGER_NAME = "wasm_sandbox"


def configure_structlog(
    level: int = logging.INFO,
    use_json: bool = False,
    stream: IO[str] | None = None,
) -> None:
    """Install a structlog pipeline suited to sandbox events.

    Args:
        level: Events below this level are dropped (default: logging.INFO)
        use_json: Render one JSON object per event instead of console output
        stream: Output stream (default: sys.stderr)
    """
    renderer: Any = (
        structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer()
    )
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if use_json:
        shared.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[*shared, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=True,
    )


class SandboxLogger:
    """Event-oriented facade over a structlog or standard library logger.

    Every event carries `event` (e.g. "execution.start"), `event_type` (same
    value) and `log_message` (the dotted name prefixed with "sandbox.").
    """

    _PATH_TRUNCATION_SUFFIX = "...[truncated]"
    _MAX_PATH_LENGTH = 140

    def __init__(self, logger: Any = None) -> None:
        """Wrap logger.

        Args:
            logger: structlog logger, logging.Logger, or a name for
                    structlog.get_logger(). Defaults to "wasm_sandbox".
        """
        if logger is None or isinstance(logger, str):
            self._logger = structlog.get_logger(logger or DEFAULT_LOGGER_NAME)
        else:
            self._logger = logger

    @property
    def logger(self) -> Any:
        """The wrapped logger instance."""
        return self._logger

    def _emit(self, level: int, message: str, **fields: Any) -> None:
        event = fields.pop("event", message.removeprefix("sandbox."))
        fields.setdefault("log_message", message)
        fields.setdefault("event_type", event)

        if isinstance(self._logger, logging.Logger):
            # LogRecord attributes come from `extra`
            self._logger.log(level, message, extra={"event": event, **fields})
            return

        log_method = getattr(self._logger, logging.getLevelName(level).lower(), None)
        if not callable(log_method):
            log_method = self._logger.info
        log_method(event, **fields)

    def _truncate_path(self, path: str) -> str:
        if len(path) <= self._MAX_PATH_LENGTH:
            return path
        keep = self._MAX_PATH_LENGTH - len(self._PATH_TRUNCATION_SUFFIX)
        return path[:keep] + self._PATH_TRUNCATION_SUFFIX

    def log_execution_start(self, config: SandboxConfig, code_len: int, **extra: Any) -> None:
        """Log the start of a sandbox execution with limit details.

        Emits an INFO-level structured log event at execution.start with the
        configured timeout, memory ceiling, fuel budget and code size.

        Args:
            config: SandboxConfig containing resource limits
            code_len: Length of the user code in characters (prelude excluded)
            **extra: Additional key-value pairs to include in log event
        """
        config_snapshot = {
            "timeout_ms": config.timeout.total_seconds() * 1000,
            "max_memory": config.max_memory,
            "max_fuel": config.max_fuel,
            "epoch_tick_interval_ms": config.epoch_tick_interval.total_seconds() * 1000,
            "interpreter_path": self._truncate_path(str(config.interpreter_path)),
            "env_var_count": len(config.env_vars),
            "has_prelude": config.prelude is not None,
        }

        self._emit(
            logging.INFO,
            "sandbox.execution.start",
            event="execution.start",
            runtime="python",
            code_len=code_len,
            **config_snapshot,
            **extra,
        )

    def log_execution_complete(self, result: ExecutionResult) -> None:
        """Log the completion of a sandbox execution with result metrics.

        Args:
            result: ExecutionResult containing outputs and metadata
        """
        metadata = result.metadata
        self._emit(
            logging.INFO,
            "sandbox.execution.complete",
            event="execution.complete",
            runtime="python",
            success=result.is_success(),
            exit_code=result.exit_code,
            duration_ms=metadata.duration.total_seconds() * 1000,
            peak_memory=metadata.peak_memory,
            fuel_consumed=metadata.fuel_consumed,
            used_cached_module=metadata.used_cached_module,
            stdout_bytes=len(result.stdout),
            stderr_bytes=len(result.stderr),
        )

    def log_execution_timeout(self, timeout_ms: float) -> None:
        """Log a wall-clock timeout and the abandonment of the blocking call."""
        self._emit(
            logging.WARNING,
            "sandbox.execution.timeout",
            event="execution.timeout",
            timeout_ms=timeout_ms,
        )

    def log_execution_failed(self, error: SandboxError) -> None:
        """Log an execution that ended with a typed sandbox error."""
        self._emit(
            logging.WARNING,
            "sandbox.execution.failed",
            event="execution.failed",
            error_type=type(error).__name__,
            error=str(error),
        )

    def log_cache_event(self, outcome: str, path: str) -> None:
        """Log a module cache lookup outcome.

        Args:
            outcome: One of "hit", "miss", "race_lost", "evicted", "cleared"
            path: Canonical interpreter path (truncated for readability)
        """
        event = f"cache.{outcome}"
        self._emit(
            logging.DEBUG,
            f"sandbox.{event}",
            event=event,
            path=self._truncate_path(path),
        )

    def log_security_event(self, event_type: str, details: dict[str, Any]) -> None:
        """Log a security-relevant event at WARNING level.

        Emits a WARNING-level structured log for security monitoring,
        such as fuel exhaustion or memory limit violations.

        Args:
            event_type: Type of security event (e.g., "out_of_fuel",
                       "memory_limit_exceeded")
            details: Dict containing event-specific details
        """
        event = f"security.{event_type}"
        self._emit(logging.WARNING, f"sandbox.{event}", event=event, **details)

    def log_textual_fallback(self, kind: str, message: str) -> None:
        """Log that a trap was classified by its message text.

        Structured trap codes were unavailable for this error, so the outcome
        depends on engine message wording.

        Args:
            kind: Classification decided ("interrupt" or "out_of_fuel")
            message: The error text that matched
        """
        self._emit(
            logging.WARNING,
            "sandbox.classify.textual_fallback",
            event="classify.textual_fallback",
            kind=kind,
            trap_message=message[:200],
        )
