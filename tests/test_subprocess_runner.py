"""Tests for the tagged subprocess runner."""

from __future__ import annotations

import os
import sys
import time
from pathlib import Path

import pytest

from playheal.utils.subprocess_runner import (
    Completed,
    ProcessError,
    TimedOut,
    run_subprocess,
)

_PY = sys.executable

# ── Completed outcomes ────────────────────────────────────────────────


async def test_run_subprocess_success() -> None:
    result = await run_subprocess([_PY, "-c", "print('hello')"])

    assert isinstance(result, Completed)
    assert result.success
    assert result.returncode == 0
    assert "hello" in result.stdout
    assert result.duration_ms > 0


async def test_run_subprocess_with_working_directory(tmp_path: Path) -> None:
    (tmp_path / "spec.txt").write_text("content")

    result = await run_subprocess(
        [_PY, "-c", "import os; print(os.listdir('.'))"],
        cwd=tmp_path,
    )

    assert isinstance(result, Completed)
    assert "spec.txt" in result.stdout


async def test_run_subprocess_captures_stderr() -> None:
    result = await run_subprocess([_PY, "-c", "import sys; sys.stderr.write('error msg')"])

    assert isinstance(result, Completed)
    assert result.returncode == 0
    assert "error msg" in result.stderr


async def test_run_subprocess_nonzero_exit_is_still_completed() -> None:
    """A failing exit code is a completed run, not a process error."""
    result = await run_subprocess([_PY, "-c", "import sys; sys.exit(1)"])

    assert isinstance(result, Completed)
    assert not result.success
    assert result.returncode == 1


async def test_run_subprocess_merges_environment() -> None:
    result = await run_subprocess(
        [_PY, "-c", "import os; print(os.getenv('PLAYHEAL_VAR'), bool(os.getenv('PATH')))"],
        env={"PLAYHEAL_VAR": "set"},
    )

    assert isinstance(result, Completed)
    assert "set True" in result.stdout


async def test_run_subprocess_unicode_output() -> None:
    result = await run_subprocess(
        [_PY, "-c", "print('Hello 世界')"], env={"PYTHONIOENCODING": "utf-8"}
    )

    assert isinstance(result, Completed)
    assert "世界" in result.stdout


# ── Timeouts and process errors ───────────────────────────────────────


async def test_run_subprocess_timeout() -> None:
    result = await run_subprocess([_PY, "-c", "import time; time.sleep(10)"], timeout=0.2)

    assert isinstance(result, TimedOut)
    assert result.timeout == 0.2
    assert result.duration_ms < 10_000


_SPAWN_GRANDCHILD = """
import pathlib, subprocess, sys
child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
pathlib.Path(sys.argv[1]).write_text(str(child.pid))
child.wait()
"""


def _is_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    stat = Path(f"/proc/{pid}/stat")
    try:
        # Unreaped zombies still answer signal 0
        return stat.read_text().rsplit(")", 1)[1].split()[0] != "Z"
    except (OSError, IndexError):
        return True


@pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX only")
async def test_run_subprocess_timeout_kills_grandchildren(tmp_path: Path) -> None:
    pid_file = tmp_path / "grandchild.pid"
    start = time.perf_counter()

    result = await run_subprocess(
        [_PY, "-c", _SPAWN_GRANDCHILD, str(pid_file)], cwd=tmp_path, timeout=1.5
    )

    assert isinstance(result, TimedOut)
    assert time.perf_counter() - start < 6.0
    grandchild = int(pid_file.read_text())
    deadline = time.monotonic() + 3.0
    while _is_running(grandchild) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _is_running(grandchild)


async def test_run_subprocess_command_not_found() -> None:
    result = await run_subprocess(["nonexistent_command_xyz123"])

    assert isinstance(result, ProcessError)
    assert "Command not found" in result.detail


# ── Argument validation ───────────────────────────────────────────────


async def test_run_subprocess_empty_command() -> None:
    with pytest.raises(ValueError, match="Command cannot be empty"):
        await run_subprocess([])


async def test_run_subprocess_invalid_timeout() -> None:
    with pytest.raises(ValueError, match="Timeout must be positive"):
        await run_subprocess([_PY, "-c", "pass"], timeout=0)


async def test_run_subprocess_invalid_working_directory() -> None:
    with pytest.raises(ValueError, match="Working directory does not exist"):
        await run_subprocess([_PY, "-c", "pass"], cwd=Path("/nonexistent/path/xyz"))
