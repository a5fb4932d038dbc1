"""Healing data models.

Value objects passed through the healing pipeline: the failed-test input
record, the classification and strategy produced for it, the outcome of
patching and reverification, and the per-batch summary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum


class FailureCategory(Enum):
    """Coarse classification of why an E2E test failed."""

    TIMEOUT = "timeout"
    SELECTOR_AMBIGUITY = "selector_ambiguity"
    ELEMENT_MISSING = "element_missing"
    NAVIGATION_FAILURE = "navigation_failure"
    UNKNOWN = "unknown"


class VerificationStatus(Enum):
    """Outcome of running a single test in isolation."""

    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    UNPARSEABLE = "unparseable"


class HealingState(Enum):
    """Terminal state of a healing attempt."""

    HEALED = "healed"
    STILL_FAILING = "still_failing"
    ERRORED = "errored"


@dataclass(frozen=True)
class FailedTestRecord:
    """A test that failed during the observed run."""

    test_id: str
    """Identifier used to select the test on re-execution (e.g. ``VAL-001``)."""

    title: str
    """Full test title as reported by the runner."""

    file_path: str
    """Path to the test source file."""

    error_message: str = ""
    """Error text reported for the failure."""

    duration_ms: float = 0.0
    """Duration of the failed run in milliseconds."""


@dataclass(frozen=True)
class HealingStrategy:
    """Ordered set of textual fixes selected for a failure category."""

    category: FailureCategory
    fix_ids: tuple[str, ...]
    rationale: str


@dataclass
class PatchOutcome:
    """Result of applying a strategy to a test file."""

    applied_fixes: list[str] = field(default_factory=list)
    """Human-readable descriptions, one per fix in the strategy."""

    changed_fixes: list[str] = field(default_factory=list)
    """Identifiers of the fixes that actually changed the content."""

    file_modified: bool = False
    """Whether new content was written to disk."""

    io_error: str | None = None
    """Read, backup or write failure, if any."""

    backup_path: str | None = None
    """Location of the pre-patch copy, when one was taken."""


@dataclass
class VerificationOutcome:
    """Structured outcome of a single isolated test run."""

    status: VerificationStatus
    duration_ms: float = 0.0
    error_message: str | None = None

    reported: bool = False
    """True when the outcome was read from the runner's structured report."""

    @classmethod
    def not_run(cls, reason: str) -> VerificationOutcome:
        """Outcome for a verification that was skipped after an earlier fault."""
        return cls(status=VerificationStatus.FAILED, error_message=reason)

    @property
    def passed(self) -> bool:
        return self.status == VerificationStatus.PASSED


@dataclass(frozen=True)
class HealingResult:
    """Outcome of healing one failed test."""

    test_id: str
    original_error: str
    strategy: HealingStrategy
    patch: PatchOutcome
    verification: VerificationOutcome
    state: HealingState
    error: str = ""
    """Contained fault, prefixed with its kind (e.g. ``PatchIOError: ...``)."""

    @property
    def success(self) -> bool:
        """A test is healed exactly when its reverification passed."""
        return self.verification.passed


@dataclass
class HealingSummary:
    """Aggregate over all healing results in a batch."""

    results: list[HealingResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def healed_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def still_failing_count(self) -> int:
        return self.total - self.healed_count

    @property
    def success_rate(self) -> int:
        """Healed percentage, rounded half up (0 for an empty batch)."""
        if not self.results:
            return 0
        return math.floor(100 * self.healed_count / self.total + 0.5)

    @property
    def healed(self) -> list[HealingResult]:
        return [r for r in self.results if r.success]

    @property
    def still_failing(self) -> list[HealingResult]:
        return [r for r in self.results if not r.success]

    @property
    def fixes_applied(self) -> list[str]:
        """Distinct fix descriptions across the batch, in first-seen order."""
        seen: dict[str, None] = {}
        for result in self.results:
            for description in result.patch.applied_fixes:
                seen.setdefault(description, None)
        return list(seen)
