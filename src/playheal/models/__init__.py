"""Data models for playheal."""

from playheal.models.healing import (
    FailedTestRecord,
    FailureCategory,
    HealingResult,
    HealingState,
    HealingStrategy,
    HealingSummary,
    PatchOutcome,
    VerificationOutcome,
    VerificationStatus,
)

__all__ = [
    "FailedTestRecord",
    "FailureCategory",
    "HealingResult",
    "HealingState",
    "HealingStrategy",
    "HealingSummary",
    "PatchOutcome",
    "VerificationOutcome",
    "VerificationStatus",
]
