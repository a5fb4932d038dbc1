"""Subprocess runner with bounded execution and tagged outcomes.

Every invocation ends in exactly one of three outcomes:

* ``Completed`` -- the process exited on its own (any exit code).
* ``TimedOut`` -- the process ran past its timeout and was killed.
* ``ProcessError`` -- the process could not be started or waited on.

Callers match on the outcome type instead of inspecting flags, so a
timeout can never be mistaken for a failing exit code.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"


@dataclass(frozen=True)
class Completed:
    """The process ran to completion."""

    returncode: int
    stdout: str
    stderr: str
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class TimedOut:
    """The process was killed after exceeding its timeout."""

    timeout: float
    """The timeout that was exceeded, in seconds."""

    duration_ms: float = 0.0


@dataclass(frozen=True)
class ProcessError:
    """The process could not be started or failed abnormally."""

    detail: str


ProcessOutcome = Completed | TimedOut | ProcessError


async def run_subprocess(
    command: Sequence[str],
    *,
    cwd: Path | None = None,
    timeout: float = 120.0,
    env: dict[str, str] | None = None,
) -> ProcessOutcome:
    """Execute *command* and wait for it for at most *timeout* seconds.

    Args:
        command: Command and arguments as a sequence.
        cwd: Working directory for the subprocess. Defaults to current directory.
        timeout: Maximum seconds to wait for completion.
        env: Extra environment variables, merged over the current environment.

    Returns:
        ``Completed``, ``TimedOut`` or ``ProcessError``.

    Raises:
        ValueError: If command is empty, timeout is not positive, or the
            working directory does not exist.
    """
    if not command:
        raise ValueError("Command cannot be empty")

    if timeout <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout}")

    work_dir = cwd.resolve() if cwd else Path.cwd()
    if not work_dir.exists():
        raise ValueError(f"Working directory does not exist: {work_dir}")

    full_env = {**os.environ, **env} if env else None

    logger.debug(
        "Running subprocess: %s (cwd=%s, timeout=%s)",
        " ".join(str(c) for c in command),
        work_dir,
        timeout,
    )

    start_time = time.perf_counter()

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=work_dir,
            env=full_env,
            start_new_session=_POSIX,
        )
    except FileNotFoundError:
        logger.error("Command not found: %s", command[0])
        return ProcessError(f"Command not found: {command[0]}")
    except OSError as exc:
        logger.error("Failed to start %s: %s", command[0], exc)
        return ProcessError(f"Failed to start {command[0]}: {exc}")

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except TimeoutError:
        logger.warning("Subprocess timed out after %s seconds", timeout)
        _kill_process_tree(process)
        await process.wait()
        return TimedOut(
            timeout=timeout,
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )
    except OSError as exc:
        logger.error("Subprocess I/O failed: %s", exc)
        return ProcessError(f"Subprocess I/O failed: {exc}")

    duration_ms = (time.perf_counter() - start_time) * 1000
    returncode = process.returncode if process.returncode is not None else -1

    if returncode < 0:
        # Killed by a signal rather than exiting
        return ProcessError(f"{command[0]} terminated by signal {-returncode}")

    outcome = Completed(
        returncode=returncode,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=stderr_bytes.decode("utf-8", errors="replace"),
        duration_ms=duration_ms,
    )

    logger.debug(
        "Subprocess completed: returncode=%d, duration=%.2fms",
        returncode,
        duration_ms,
    )

    return outcome


def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    """Kill *process* and everything it spawned.

    On POSIX the child leads its own session, so its process group holds
    any grandchildren (``npx`` -> ``node``) that keep the output pipes open.
    """
    try:
        if _POSIX:
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass  # already exited
