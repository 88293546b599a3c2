"""Failure classification for WASM traps and interpreter stderr.

Two independent helpers live here:

- Trap classification (is_epoch_interrupt, is_out_of_fuel) inspects the
  structured trap code on wasmtime.Trap, walking the exception chain. A
  message-text fallback remains for errors that carry no trap code; every
  decision it makes is logged as classify.textual_fallback because it depends
  on engine message wording.
- parse_exception() heuristically recovers an interpreter exception
  (type, message, traceback) from captured stderr text.
"""

from __future__ import annotations

from collections.abc import Iterator

from wasmtime import ExitTrap, Trap, TrapCode

from wasm_sandbox.core.errors import PythonExceptionError
from wasm_sandbox.core.logging import SandboxLogger

TRACEBACK_MARKER = "Traceback (most recent call last):"

EXCEPTION_SUFFIXES = ("Error", "Exception", "Warning")
STANDALONE_EXCEPTIONS = ("KeyboardInterrupt", "SystemExit", "StopIteration", "GeneratorExit")

_INTERRUPT_MARKERS = ("epoch", "interrupt")
_FUEL_MARKERS = ("fuel",)

# Older bindings do not expose the out-of-fuel trap code
_OUT_OF_FUEL_CODE = getattr(TrapCode, "OUT_OF_FUEL", None)

_logger = SandboxLogger("wasm_sandbox.classify")


def _error_chain(error: BaseException) -> Iterator[BaseException]:
    """Yield error and its causes, guarding against reference cycles."""
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _trap_code(error: BaseException) -> TrapCode | None:
    if not isinstance(error, Trap):
        return None
    try:
        return error.trap_code
    except (AttributeError, ValueError):
        return None


def _matches_trap(error: BaseException, code: TrapCode | None, markers: tuple[str, ...], kind: str) -> bool:
    if isinstance(error, ExitTrap):
        return False

    chain = list(_error_chain(error))
    if code is not None:
        for cause in chain:
            if _trap_code(cause) == code:
                return True
        # A structured code was present but different: trust it
        if any(_trap_code(cause) is not None for cause in chain):
            return False

    for cause in chain:
        message = str(cause)
        lowered = message.lower()
        if any(marker in lowered for marker in markers):
            _logger.log_textual_fallback(kind, message)
            return True
    return False


def is_epoch_interrupt(error: BaseException) -> bool:
    """Check whether error is an epoch-deadline (interrupt) trap."""
    return _matches_trap(error, TrapCode.INTERRUPT, _INTERRUPT_MARKERS, "interrupt")


def is_out_of_fuel(error: BaseException) -> bool:
    """Check whether error is an instruction-budget exhaustion trap."""
    return _matches_trap(error, _OUT_OF_FUEL_CODE, _FUEL_MARKERS, "out_of_fuel")


def _boundary_ok(line: str, end: int) -> bool:
    return end >= len(line) or line[end] in ": \n"


def looks_like_exception(line: str) -> bool:
    """Check if a stderr line looks like a Python exception line.

    The line must start with an ASCII uppercase letter and either contain
    Error/Exception/Warning followed by end of line, colon or space, or start
    with one of the standalone exception names.
    """
    if not line or not ("A" <= line[0] <= "Z"):
        return False

    for suffix in EXCEPTION_SUFFIXES:
        idx = line.find(suffix)
        while idx != -1:
            if _boundary_ok(line, idx + len(suffix)):
                return True
            idx = line.find(suffix, idx + 1)

    for name in STANDALONE_EXCEPTIONS:
        if line.startswith(name) and _boundary_ok(line, len(name)):
            return True

    return False


def parse_exception(stderr: str) -> PythonExceptionError | None:
    """Parse a Python exception from captured stderr output.

    The last unindented line that looks like an exception wins; lines inside
    a traceback's frame listing are indented and never candidates. If a
    traceback marker precedes it, the traceback spans from the marker through
    the exception line.

    Args:
        stderr: Guest stderr text

    Returns:
        PythonExceptionError with type, message and optional traceback, or
        None if no exception line was found.

    Examples:
        >>> exc = parse_exception("ValueError: invalid value")
        >>> exc.exception_type, exc.message
        ('ValueError', 'invalid value')
    """
    if not stderr.strip():
        return None

    lines = stderr.splitlines()
    exception_line: tuple[int, str] | None = None
    traceback_start: int | None = None

    for i, line in enumerate(lines):
        if line.startswith(TRACEBACK_MARKER):
            traceback_start = i
        if line and not line[0].isspace() and not line.startswith(TRACEBACK_MARKER):
            if looks_like_exception(line):
                exception_line = (i, line)

    if exception_line is None:
        return None

    line_idx, text = exception_line
    exception_type, sep, message = text.partition(":")
    exception_type = exception_type.strip()
    message = message.strip() if sep else ""

    traceback = None
    if traceback_start is not None and traceback_start <= line_idx:
        traceback = "\n".join(lines[traceback_start : line_idx + 1])

    return PythonExceptionError(exception_type=exception_type, message=message, traceback=traceback)
