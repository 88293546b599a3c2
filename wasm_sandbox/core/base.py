"""Abstract base class for sandbox runtime implementations.

Provides BaseSandbox ABC that defines the contract for sandbox runtimes:
an asynchronous execute() and a side-effect-free validate_code(), sharing
common initialization of config and logging.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wasm_sandbox.core.logging import SandboxLogger
    from wasm_sandbox.core.models import ExecutionResult, SandboxConfig


class BaseSandbox(ABC):
    """Abstract base class for sandbox runtime implementations.

    Attributes:
        config: Immutable SandboxConfig with limits and guest environment
        logger: SandboxLogger for structured events
    """

    def __init__(self, config: SandboxConfig, logger: SandboxLogger | None = None) -> None:
        """Initialize BaseSandbox with config and logger.

        Args:
            config: SandboxConfig with validated resource limits
            logger: Optional SandboxLogger for structured events.
                    If None, creates default logger named 'wasm_sandbox'.
        """
        self.config = config

        if logger is None:
            # Import here to avoid circular dependency
            from wasm_sandbox.core.logging import SandboxLogger
            self.logger = SandboxLogger()
        else:
            self.logger = logger

    @abstractmethod
    async def execute(self, code: str, input: str | None = None) -> ExecutionResult:
        """Execute untrusted code with resource limits.

        Implementations must honor the wall-clock timeout even when the guest
        never yields, and must not block the event loop while the guest runs.

        Args:
            code: Untrusted source code to execute
            input: Optional stdin payload (config.stdin takes precedence)

        Returns:
            ExecutionResult for a run that completed; a nonzero exit_code is
            still a result, not an error

        Raises:
            SandboxError: A subclass describing the infrastructure failure
        """
        pass

    @abstractmethod
    def validate_code(self, code: str) -> bool:
        """Validate code syntax without executing it.

        Args:
            code: Code to validate

        Returns:
            True if syntax is valid, False otherwise
        """
        pass

    def execute_sync(self, code: str, input: str | None = None) -> ExecutionResult:
        """Blocking convenience wrapper around execute() for non-async callers.

        Must not be called from inside a running event loop.
        """
        return asyncio.run(self.execute(code, input))

    def _log_execution_metrics(self, result: ExecutionResult) -> None:
        """Emit execution.complete with consistent formatting."""
        self.logger.log_execution_complete(result)
