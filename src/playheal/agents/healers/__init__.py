"""Self-healing engine for failing E2E tests."""

from playheal.agents.healers.classifier import DEFAULT_RULES, FailureClassifier
from playheal.agents.healers.orchestrator import (
    HealingOrchestrator,
    OrchestratorSettings,
    VerificationRunner,
)
from playheal.agents.healers.patcher import BackupStore, PatchApplier, PatchIOError
from playheal.agents.healers.strategies import StrategyCatalog

__all__ = [
    "DEFAULT_RULES",
    "BackupStore",
    "FailureClassifier",
    "HealingOrchestrator",
    "OrchestratorSettings",
    "PatchApplier",
    "PatchIOError",
    "StrategyCatalog",
    "VerificationRunner",
]
