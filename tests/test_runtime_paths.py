"""Tests for interpreter binary path resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from wasm_sandbox import runtime_paths
from wasm_sandbox.runtime_paths import (
    INTERPRETER_ENV_VAR,
    default_interpreter_path,
    get_interpreter_path,
)


@pytest.fixture
def no_bundled_binary(monkeypatch, tmp_path):
    """Point the package-relative lookup and cwd at empty directories."""
    fake_package = tmp_path / "pkg" / "wasm_sandbox" / "runtime_paths.py"
    monkeypatch.setattr(runtime_paths, "__file__", str(fake_package))
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    monkeypatch.delenv(INTERPRETER_ENV_VAR, raising=False)
    return workdir


def test_env_override(monkeypatch, tmp_path):
    binary = tmp_path / "custom.wasm"
    binary.write_bytes(b"\0asm")
    monkeypatch.setenv(INTERPRETER_ENV_VAR, str(binary))

    assert get_interpreter_path() == binary


def test_env_override_must_exist(monkeypatch, tmp_path):
    monkeypatch.setenv(INTERPRETER_ENV_VAR, str(tmp_path / "nope.wasm"))

    with pytest.raises(FileNotFoundError, match=INTERPRETER_ENV_VAR):
        get_interpreter_path()


def test_cwd_bin_fallback(no_bundled_binary):
    binary = no_bundled_binary / "bin" / "python.wasm"
    binary.parent.mkdir()
    binary.write_bytes(b"\0asm")

    assert get_interpreter_path() == Path.cwd() / "bin" / "python.wasm"


def test_not_found_lists_locations(no_bundled_binary):
    with pytest.raises(FileNotFoundError, match="Searched locations"):
        get_interpreter_path()


def test_default_path_never_raises(no_bundled_binary):
    assert default_interpreter_path() == Path("bin") / "python.wasm"
