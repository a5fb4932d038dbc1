"""E2E test framework adapters."""

from playheal.adapters.e2e.playwright_adapter import (
    PlaywrightRunner,
    VerificationParseError,
    collect_failed_tests,
    parse_verification_output,
)

__all__ = [
    "PlaywrightRunner",
    "VerificationParseError",
    "collect_failed_tests",
    "parse_verification_output",
]
