"""Static catalog mapping failure categories to remediation strategies."""

from __future__ import annotations

from types import MappingProxyType

from playheal.models.healing import FailureCategory, HealingStrategy

# Fix identifiers understood by ``PatchApplier``
INCREASE_TEST_TIMEOUT = "increase_test_timeout"
ADD_EXACT_MATCHING = "add_exact_matching"
ADD_FIRST_SELECTOR = "add_first_selector"
ADD_WAIT_FOR_ELEMENT = "add_wait_for_element"
ADD_LOAD_STATE_WAIT = "add_load_state_wait"
INCREASE_NAVIGATION_TIMEOUT = "increase_navigation_timeout"
MARK_TEST_SLOW = "mark_test_slow"

_CATALOG = MappingProxyType(
    {
        FailureCategory.TIMEOUT: HealingStrategy(
            category=FailureCategory.TIMEOUT,
            fix_ids=(INCREASE_TEST_TIMEOUT,),
            rationale=(
                "Test is timing out - likely due to slow loading or incorrect wait conditions"
            ),
        ),
        FailureCategory.SELECTOR_AMBIGUITY: HealingStrategy(
            category=FailureCategory.SELECTOR_AMBIGUITY,
            fix_ids=(ADD_EXACT_MATCHING, ADD_FIRST_SELECTOR),
            rationale="Multiple elements match selector - need more specific locators",
        ),
        FailureCategory.ELEMENT_MISSING: HealingStrategy(
            category=FailureCategory.ELEMENT_MISSING,
            fix_ids=(ADD_WAIT_FOR_ELEMENT,),
            rationale="Element selectors need updating - page structure may have changed",
        ),
        FailureCategory.NAVIGATION_FAILURE: HealingStrategy(
            category=FailureCategory.NAVIGATION_FAILURE,
            fix_ids=(ADD_LOAD_STATE_WAIT, INCREASE_NAVIGATION_TIMEOUT),
            rationale="Navigation issues - network or page loading problems",
        ),
        FailureCategory.UNKNOWN: HealingStrategy(
            category=FailureCategory.UNKNOWN,
            fix_ids=(MARK_TEST_SLOW,),
            rationale=(
                "Unable to determine failure cause - applying general resilience improvements"
            ),
        ),
    }
)


class StrategyCatalog:
    """Read-only lookup from failure category to healing strategy."""

    def __init__(self, table: dict[FailureCategory, HealingStrategy] | None = None) -> None:
        self._table = MappingProxyType(dict(table)) if table is not None else _CATALOG

    def strategy_for(self, category: FailureCategory) -> HealingStrategy:
        """Return the strategy for *category*, falling back to the general one."""
        return self._table.get(category) or self._table[FailureCategory.UNKNOWN]

    def categories(self) -> list[FailureCategory]:
        return list(self._table)
