"""Failure classification for E2E test errors.

Maps raw error text to a ``FailureCategory`` by evaluating an ordered list
of ``(pattern, category)`` rules. The first rule whose pattern matches any
part of the message wins; when nothing matches the category is ``UNKNOWN``.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from playheal.models.healing import FailureCategory

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

ClassificationRule = tuple[re.Pattern[str], FailureCategory]


def _rules(category: FailureCategory, *patterns: str) -> list[ClassificationRule]:
    return [(re.compile(p, re.IGNORECASE), category) for p in patterns]


# ── Detection patterns, in priority order ─────────────────────────────

DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    *_rules(
        FailureCategory.TIMEOUT,
        r"test timeout",
        r"timeout\s+(?:of\s+)?\d+\s*ms\s+exceeded",
        r"timeout.*?exceeded",
        r"timed out",
    ),
    *_rules(
        FailureCategory.SELECTOR_AMBIGUITY,
        r"strict mode violation",
        r"multiple elements",
        r"resolved to \d+ elements",
    ),
    *_rules(
        FailureCategory.ELEMENT_MISSING,
        r"(?:locator|element).*?not found",
        r"not visible",
        r"selector.*?not found",
        r"waiting for selector.*?failed",
        r"unable to locate element",
        r"no such element",
    ),
    *_rules(
        FailureCategory.NAVIGATION_FAILURE,
        r"page\.goto",
        r"navigation",
        r"net::ERR_\w+",
        r"page\.reload",
        r"failed to load",
    ),
)


class FailureClassifier:
    """Classify error messages into failure categories.

    The rule list is injectable so tests and callers can extend or reorder
    it; the default order is timeout, selector ambiguity, missing element,
    navigation.
    """

    def __init__(self, rules: Sequence[ClassificationRule] = DEFAULT_RULES) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        return self._rules

    def classify(self, error_message: str | None) -> FailureCategory:
        """Return the category of the first rule matching *error_message*."""
        if not error_message:
            return FailureCategory.UNKNOWN

        for pattern, category in self._rules:
            if pattern.search(error_message):
                logger.debug("Matched %r -> %s", pattern.pattern, category.value)
                return category

        return FailureCategory.UNKNOWN
