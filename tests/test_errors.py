"""Tests for the sandbox error taxonomy and stderr exception parsing."""

from __future__ import annotations

from datetime import timedelta

import pytest

from wasm_sandbox.core import (
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
    parse_exception,
)
from wasm_sandbox.core.classify import looks_like_exception

ALL_ERRORS = [
    ExecutionTimeoutError(timedelta(seconds=1)),
    MemoryLimitExceededError("grew too far"),
    RuntimeInitError("no engine"),
    ModuleLoadError("bad magic"),
    SandboxExecutionError("trap"),
    PythonExceptionError("ValueError", "bad"),
    SandboxIOError("disk"),
    PolicyValidationError("bad config"),
    InterpreterNotFoundError("bin/python.wasm"),
    OutOfFuelError(100),
]


class TestErrorTaxonomy:
    """Every failure is exactly one SandboxError subclass."""

    @pytest.mark.parametrize("error", ALL_ERRORS, ids=lambda e: type(e).__name__)
    def test_all_are_sandbox_errors(self, error):
        assert isinstance(error, SandboxError)

    @pytest.mark.parametrize("error", ALL_ERRORS, ids=lambda e: type(e).__name__)
    def test_at_most_one_predicate_holds(self, error):
        flags = [
            error.is_timeout(),
            error.is_memory_limit(),
            error.is_python_exception(),
            error.is_out_of_fuel(),
        ]
        assert sum(flags) <= 1

    def test_predicates(self):
        assert ExecutionTimeoutError(timedelta(seconds=1)).is_timeout()
        assert MemoryLimitExceededError("x").is_memory_limit()
        assert PythonExceptionError("KeyError", "'a'").is_python_exception()
        assert OutOfFuelError().is_out_of_fuel()
        assert not SandboxExecutionError("x").is_timeout()

    def test_messages(self):
        assert str(ExecutionTimeoutError(timedelta(milliseconds=500))) == "execution timed out after 0.500s"
        assert str(MemoryLimitExceededError("detail")) == "memory limit exceeded: detail"
        assert str(SandboxExecutionError("boom")) == "execution failed: boom"
        assert str(PythonExceptionError("ValueError", "bad")) == "Python ValueError: bad"
        assert "bin/python.wasm" in str(InterpreterNotFoundError("bin/python.wasm"))

    def test_fields(self):
        assert ExecutionTimeoutError(timedelta(seconds=2)).duration == timedelta(seconds=2)
        assert MemoryLimitExceededError("d").detail == "d"
        assert RuntimeInitError("c").cause == "c"
        assert ModuleLoadError("c").cause == "c"
        assert SandboxIOError("c").cause == "c"
        assert InterpreterNotFoundError("p").path == "p"
        assert OutOfFuelError(7).consumed == 7
        assert OutOfFuelError().consumed is None

    def test_python_exception_equality(self):
        a = PythonExceptionError("ValueError", "bad", "Traceback...")
        b = PythonExceptionError("ValueError", "bad", "Traceback...")

        assert a == b
        assert a != PythonExceptionError("ValueError", "bad")

    def test_from_python_stderr(self):
        error = SandboxError.from_python_stderr("KeyError: 'missing'")

        assert error == PythonExceptionError("KeyError", "'missing'")
        assert SandboxError.from_python_stderr("") is None


class TestParseException:
    """Test parse_exception() heuristics on interpreter stderr."""

    def test_simple_exception_line(self):
        exc = parse_exception("ValueError: invalid literal for int() with base 10: 'abc'")

        assert exc is not None
        assert exc.exception_type == "ValueError"
        assert exc.message == "invalid literal for int() with base 10: 'abc'"
        assert exc.traceback is None

    def test_with_traceback(self):
        stderr = 'Traceback (most recent call last):\n  File "<string>", line 1, in <module>\nValueError: invalid value'

        exc = parse_exception(stderr)

        assert exc is not None
        assert exc.exception_type == "ValueError"
        assert exc.message == "invalid value"
        assert exc.traceback is not None
        assert "Traceback" in exc.traceback
        assert exc.traceback.endswith("ValueError: invalid value")

    def test_standalone_exception(self):
        exc = parse_exception("StopIteration")

        assert exc is not None
        assert exc.exception_type == "StopIteration"
        assert exc.message == ""
        assert exc.traceback is None

    @pytest.mark.parametrize("stderr", ["", "   ", "\n\n\t"])
    def test_empty_input(self, stderr):
        assert parse_exception(stderr) is None

    def test_no_exception_line(self):
        assert parse_exception("just some output\nnothing to see") is None

    def test_last_exception_wins(self):
        stderr = (
            "Traceback (most recent call last):\n"
            '  File "<string>", line 2, in <module>\n'
            "KeyError: 'a'\n"
            "\n"
            "During handling of the above exception, another exception occurred:\n"
            "\n"
            "Traceback (most recent call last):\n"
            '  File "<string>", line 4, in <module>\n'
            "RuntimeError: wrapped\n"
        )

        exc = parse_exception(stderr)

        assert exc.exception_type == "RuntimeError"
        assert exc.message == "wrapped"
        assert exc.traceback.startswith("Traceback (most recent call last):\n  File \"<string>\", line 4")

    def test_indented_lines_are_not_candidates(self):
        stderr = "Traceback (most recent call last):\n    raise ValueError('x')\nTypeError: real one"

        exc = parse_exception(stderr)

        assert exc.exception_type == "TypeError"

    def test_message_split_at_first_colon(self):
        exc = parse_exception("OSError: [Errno 2]: No such file: 'x'")

        assert exc.exception_type == "OSError"
        assert exc.message == "[Errno 2]: No such file: 'x'"

    def test_warning_line(self):
        exc = parse_exception("DeprecationWarning: old api")

        assert exc.exception_type == "DeprecationWarning"
        assert exc.message == "old api"

    def test_exception_before_traceback_has_no_traceback(self):
        exc = parse_exception("ValueError: early\nTraceback (most recent call last):")

        assert exc.exception_type == "ValueError"
        assert exc.traceback is None


class TestLooksLikeException:
    @pytest.mark.parametrize(
        "line",
        [
            "ValueError: x",
            "ValueError",
            "MyCustomException happened",
            "UserWarning: careful",
            "KeyboardInterrupt",
            "SystemExit: 2",
            "GeneratorExit",
            "ErrorHandler raised Error",
        ],
    )
    def test_matches(self, line):
        assert looks_like_exception(line)

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "valueError: lowercase start",
            "ErrorHandler installed",
            "StopIterationX",
            "Traceback (most recent call last):",
            "Done without problems",
        ],
    )
    def test_rejects(self, line):
        assert not looks_like_exception(line)
