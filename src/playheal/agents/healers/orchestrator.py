"""Healing orchestrator: drives the per-test healing pipeline over a batch.

For each failed test, strictly one at a time::

    reproduce -> classify -> select strategy -> patch -> reverify

Tests are processed sequentially because patching rewrites shared source
files and Playwright expects exclusive use of the working tree. Any fault
inside one test's pipeline is recorded on that test's result and the batch
moves on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from playheal.adapters.e2e.playwright_adapter import PlaywrightRunner
from playheal.agents.healers.classifier import FailureClassifier
from playheal.agents.healers.patcher import BackupStore, PatchApplier
from playheal.agents.healers.strategies import StrategyCatalog
from playheal.models.healing import (
    FailureCategory,
    HealingResult,
    HealingState,
    HealingSummary,
    PatchOutcome,
    VerificationOutcome,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from playheal.config import PlayhealConfig
    from playheal.models.healing import FailedTestRecord, HealingStrategy

logger = logging.getLogger(__name__)


class VerificationRunner(Protocol):
    """Runs one test in isolation and reports a structured outcome."""

    async def verify(
        self, test_id: str, timeout: float, *, debug: bool = False
    ) -> VerificationOutcome: ...


@dataclass(frozen=True)
class OrchestratorSettings:
    """Timing knobs for a healing run, in seconds."""

    debug_timeout: float = 120.0
    rerun_timeout: float = 90.0
    delay_between_tests: float = 2.0


class HealingOrchestrator:
    """Heal a batch of failed tests and summarize the outcome."""

    def __init__(
        self,
        runner: VerificationRunner,
        *,
        classifier: FailureClassifier | None = None,
        catalog: StrategyCatalog | None = None,
        patcher: PatchApplier | None = None,
        settings: OrchestratorSettings | None = None,
        disabled_categories: Iterable[FailureCategory] = (),
    ) -> None:
        self._runner = runner
        self._classifier = classifier or FailureClassifier()
        self._catalog = catalog or StrategyCatalog()
        self._patcher = patcher or PatchApplier()
        self._settings = settings or OrchestratorSettings()
        self._disabled = frozenset(disabled_categories)

    @classmethod
    def from_config(cls, config: PlayhealConfig) -> HealingOrchestrator:
        """Build an orchestrator wired to Playwright from a loaded configuration."""
        backups = (
            BackupStore(config.backup_path, keep=config.backup.keep_backups)
            if config.backup.enabled
            else None
        )
        patcher = PatchApplier(
            test_timeout_ms=config.strategies.test_timeout_ms,
            navigation_timeout_ms=config.strategies.navigation_timeout_ms,
            backups=backups,
        )
        runner = PlaywrightRunner(
            Path(config.root),
            command=config.playwright.command,
            debug_workers=config.playwright.workers,
        )
        settings = OrchestratorSettings(
            debug_timeout=config.auto_heal.debug_timeout_ms / 1000,
            rerun_timeout=config.auto_heal.rerun_timeout_ms / 1000,
            delay_between_tests=config.auto_heal.delay_between_tests_ms / 1000,
        )
        disabled = [c for c in FailureCategory if not config.strategies.is_enabled(c)]
        return cls(runner, patcher=patcher, settings=settings, disabled_categories=disabled)

    async def heal_batch(self, records: Iterable[FailedTestRecord]) -> HealingSummary:
        """Heal every record in order and return the batch summary.

        Always returns a summary, even when every attempt errored.
        """
        results: list[HealingResult] = []
        for index, record in enumerate(records):
            if index and self._settings.delay_between_tests > 0:
                await asyncio.sleep(self._settings.delay_between_tests)
            results.append(await self.heal_test(record))

        summary = HealingSummary(results=results)
        logger.info(
            "Healing complete: %d/%d healed (%d%%)",
            summary.healed_count,
            summary.total,
            summary.success_rate,
        )
        return summary

    async def heal_test(self, record: FailedTestRecord) -> HealingResult:
        """Run the full pipeline for one failed test.

        Never raises for per-test faults; they end in the ``ERRORED`` state.
        """
        logger.info("Healing test: %s (%s)", record.test_id, record.file_path)

        # Classification cannot fail, so an early fault still has a strategy to report
        strategy = self._catalog.strategy_for(self._classifier.classify(record.error_message))
        patch = PatchOutcome()

        try:
            reproduction = await self._runner.verify(
                record.test_id, self._settings.debug_timeout, debug=True
            )
            error_text = _fresh_error(reproduction) or record.error_message
            category = self._classifier.classify(error_text)
            strategy = self._catalog.strategy_for(category)
            logger.info("Classified %s as %s", record.test_id, category.value)

            patch = self._patch(record, strategy)
            if patch.io_error:
                return self._result(
                    record,
                    strategy,
                    patch,
                    VerificationOutcome.not_run("Skipped: test file could not be patched"),
                    error=patch.io_error,
                    errored=True,
                )

            verification = await self._runner.verify(
                record.test_id, self._settings.rerun_timeout
            )
        except Exception as exc:
            logger.exception("Healing %s failed unexpectedly", record.test_id)
            return self._result(
                record,
                strategy,
                patch,
                VerificationOutcome.not_run(f"Skipped: {exc}"),
                error=f"{type(exc).__name__}: {exc}",
                errored=True,
            )

        error = "" if verification.passed else (verification.error_message or "")
        return self._result(record, strategy, patch, verification, error=error)

    def _patch(self, record: FailedTestRecord, strategy: HealingStrategy) -> PatchOutcome:
        if strategy.category in self._disabled:
            logger.info(
                "Strategy %s disabled, leaving %s unchanged",
                strategy.category.value,
                record.file_path,
            )
            return PatchOutcome()
        if not record.file_path:
            return PatchOutcome(io_error="PatchIOError: no test file recorded for this test")
        return self._patcher.apply_to_file(Path(record.file_path), strategy)

    def _result(
        self,
        record: FailedTestRecord,
        strategy: HealingStrategy,
        patch: PatchOutcome,
        verification: VerificationOutcome,
        *,
        error: str,
        errored: bool = False,
    ) -> HealingResult:
        if errored:
            state = HealingState.ERRORED
        elif verification.passed:
            state = HealingState.HEALED
        else:
            state = HealingState.STILL_FAILING

        result = HealingResult(
            test_id=record.test_id,
            original_error=record.error_message,
            strategy=strategy,
            patch=patch,
            verification=verification,
            state=state,
            error=error,
        )
        logger.info("Result for %s: %s", record.test_id, state.value)
        return result


def _fresh_error(outcome: VerificationOutcome) -> str:
    """Error text from a reproduction run, when it actually reported one."""
    if outcome.reported and not outcome.passed and outcome.error_message:
        return outcome.error_message
    return ""

