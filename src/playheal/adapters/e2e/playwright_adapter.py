"""Playwright adapter: isolated test execution and JSON reporter parsing.

Runs a single test through ``npx playwright test --grep <id> --reporter=json``
and turns the reporter document into a ``VerificationOutcome``. The same
document format is read by ``collect_failed_tests`` to build the input
batch for a healing run.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from playheal.models.healing import (
    FailedTestRecord,
    VerificationOutcome,
    VerificationStatus,
)
from playheal.utils.subprocess_runner import (
    Completed,
    ProcessError,
    TimedOut,
    run_subprocess,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator, Sequence

    from playheal.utils.subprocess_runner import ProcessOutcome

    SubprocessRunner = Callable[..., Awaitable[ProcessOutcome]]

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────

DEFAULT_COMMAND = ("npx", "playwright", "test")

DEFAULT_TEST_ID_PATTERN = r"(VAL-\d+):"

_STATUS_MAP = {
    "passed": VerificationStatus.PASSED,
    "failed": VerificationStatus.FAILED,
    "timedout": VerificationStatus.TIMED_OUT,
    "skipped": VerificationStatus.FAILED,
    "interrupted": VerificationStatus.FAILED,
}

_FAILED_STATUSES = frozenset({"failed", "timedout"})


class VerificationParseError(ValueError):
    """The Playwright JSON reporter output is missing or malformed."""


# ── Runner ───────────────────────────────────────────────────────


class PlaywrightRunner:
    """Re-execute one Playwright test in isolation.

    Each call is bounded by its own timeout. Timeouts, process failures
    and unparseable output all become non-passing outcomes rather than
    exceptions.
    """

    def __init__(
        self,
        project_path: Path,
        *,
        command: Sequence[str] = DEFAULT_COMMAND,
        debug_workers: int = 1,
        runner: SubprocessRunner = run_subprocess,
    ) -> None:
        self._project_path = project_path
        self._command = list(command)
        self._debug_workers = debug_workers
        self._run = runner

    def build_command(self, test_id: str, *, debug: bool = False) -> list[str]:
        """Return the command line that runs exactly the tests matching *test_id*."""
        cmd = [*self._command, "--grep", grep_pattern(test_id), "--reporter=json"]
        if debug:
            cmd.append(f"--workers={self._debug_workers}")
        return cmd

    async def verify(
        self,
        test_id: str,
        timeout: float,
        *,
        debug: bool = False,
    ) -> VerificationOutcome:
        """Run the test identified by *test_id* within *timeout* seconds."""
        cmd = self.build_command(test_id, debug=debug)
        logger.debug("%s run for %s: %s", "Debug" if debug else "Verification", test_id, cmd)

        outcome = await self._run(cmd, cwd=self._project_path, timeout=timeout)

        if isinstance(outcome, TimedOut):
            logger.warning("Run of %s timed out after %.1fs", test_id, timeout)
            return VerificationOutcome(
                status=VerificationStatus.TIMED_OUT,
                duration_ms=outcome.duration_ms,
                error_message=f"VerificationTimeout: no result within {timeout:.0f}s",
            )

        if isinstance(outcome, ProcessError):
            logger.warning("Run of %s could not execute: %s", test_id, outcome.detail)
            return VerificationOutcome(
                status=VerificationStatus.FAILED,
                error_message=f"ExternalProcessError: {outcome.detail}",
            )

        completed = cast("Completed", outcome)
        try:
            return parse_verification_output(completed.stdout)
        except VerificationParseError as exc:
            logger.warning("Unparseable Playwright output for %s: %s", test_id, exc)
            stderr = completed.stderr.strip()
            detail = f"{exc} (stderr: {stderr[:200]})" if stderr else str(exc)
            return VerificationOutcome(
                status=VerificationStatus.UNPARSEABLE,
                duration_ms=completed.duration_ms,
                error_message=f"VerificationParseError: {detail}",
            )


# ── Parsing helpers ──────────────────────────────────────────────


def grep_pattern(test_id: str) -> str:
    """Title filter for *test_id* that skips IDs it is a prefix of (``VAL-1`` vs ``VAL-10``).

    The lookahead is valid in both Python and JavaScript regular expressions.
    """
    return re.escape(test_id) + r"(?![\w-])"


def parse_verification_output(raw_stdout: str) -> VerificationOutcome:
    """Read the first result of the first test in a Playwright JSON report.

    Playwright's JSON reporter format::

        {
          "config": {"rootDir": "..."},
          "suites": [
            {
              "title": "auth.spec.ts",
              "file": "auth.spec.ts",
              "specs": [
                {
                  "title": "VAL-001: login",
                  "file": "auth.spec.ts",
                  "tests": [
                    {"results": [{"status": "passed", "duration": 1200,
                                  "error": {"message": "..."}}]}
                  ]
                }
              ],
              "suites": [...]
            }
          ]
        }

    Raises:
        VerificationParseError: If the document is not JSON or holds no result.
    """
    data = _load_report(raw_stdout)

    for spec in _iter_specs(data.get("suites")):
        tests = spec.get("tests")
        if not isinstance(tests, list) or not tests or not isinstance(tests[0], dict):
            raise VerificationParseError(f"Spec {spec.get('title', '?')!r} has no tests")
        results = tests[0].get("results")
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            raise VerificationParseError(f"Spec {spec.get('title', '?')!r} has no results")
        return _outcome_from_result(results[0])

    raise VerificationParseError("Report contains no test specs")


def _outcome_from_result(result: dict[str, Any]) -> VerificationOutcome:
    raw_status = result.get("status")
    if not isinstance(raw_status, str) or raw_status.lower() not in _STATUS_MAP:
        raise VerificationParseError(f"Unknown result status: {raw_status!r}")

    status = _STATUS_MAP[raw_status.lower()]
    duration = result.get("duration", 0)
    if not isinstance(duration, int | float):
        raise VerificationParseError(f"Invalid duration: {duration!r}")

    error_message = None
    if status != VerificationStatus.PASSED:
        error_message = _error_text(result) or f"Test {raw_status}"

    return VerificationOutcome(
        status=status,
        duration_ms=float(duration),
        error_message=error_message,
        reported=True,
    )


def _error_text(result: dict[str, Any]) -> str:
    error = result.get("error")
    if isinstance(error, dict):
        message = error.get("message") or error.get("value") or ""
        return str(message)
    errors = result.get("errors")
    if isinstance(errors, list):
        for item in errors:
            if isinstance(item, dict) and item.get("message"):
                return str(item["message"])
    return ""


def _load_report(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise VerificationParseError(f"Invalid JSON reporter output: {exc}") from exc
    if not isinstance(data, dict):
        raise VerificationParseError("JSON reporter output is not an object")
    return cast("dict[str, Any]", data)


def _iter_specs(suites: object) -> Iterator[dict[str, Any]]:
    """Yield specs depth-first, a suite's own specs before its nested suites."""
    if not isinstance(suites, list):
        return
    for suite in suites:
        if not isinstance(suite, dict):
            continue
        for spec in suite.get("specs", []) or []:
            if isinstance(spec, dict):
                yield spec
        yield from _iter_specs(suite.get("suites"))


# ── Failed test collection ───────────────────────────────────────


def collect_failed_tests(
    report_path: Path,
    test_id_pattern: str = DEFAULT_TEST_ID_PATTERN,
) -> list[FailedTestRecord]:
    """Build the healing batch from a Playwright JSON report file.

    A test is collected when its last result failed or timed out and its
    title carries an identifier matching *test_id_pattern* (first group).

    Raises:
        ValueError: If the report cannot be read or parsed.
    """
    try:
        raw = report_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read Playwright report {report_path}: {exc}") from exc

    try:
        data = _load_report(raw)
    except VerificationParseError as exc:
        raise ValueError(f"{report_path}: {exc}") from exc

    id_re = re.compile(test_id_pattern)
    root_dir = _report_root(data, report_path)

    records: list[FailedTestRecord] = []
    seen: set[str] = set()
    for spec in _iter_specs(data.get("suites")):
        title = str(spec.get("title", ""))
        for test in spec.get("tests", []) or []:
            last = _last_result(test)
            if last is None or str(last.get("status", "")).lower() not in _FAILED_STATUSES:
                continue
            match = id_re.search(title)
            if match is None:
                logger.info("No test ID found in: %s", title)
                continue
            if match.group(1) in seen:
                # Same test failing under another project
                continue
            seen.add(match.group(1))
            file_rel = str(spec.get("file") or "")
            records.append(
                FailedTestRecord(
                    test_id=match.group(1),
                    title=title,
                    file_path=str(root_dir / file_rel) if file_rel else "",
                    error_message=_error_text(last),
                    duration_ms=float(last.get("duration", 0) or 0),
                )
            )

    logger.info("Collected %d failed tests from %s", len(records), report_path)
    return records


def _last_result(test: object) -> dict[str, Any] | None:
    if not isinstance(test, dict):
        return None
    results = test.get("results")
    if not isinstance(results, list) or not results or not isinstance(results[-1], dict):
        return None
    return cast("dict[str, Any]", results[-1])


def _report_root(data: dict[str, Any], report_path: Path) -> Path:
    config = data.get("config")
    if isinstance(config, dict) and config.get("rootDir"):
        return Path(str(config["rootDir"]))
    return report_path.resolve().parent
