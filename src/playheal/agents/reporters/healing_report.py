"""Plain-text healing report.

Renders a ``HealingSummary`` as the textual payload handed to external
sinks (issue trackers, chat, CI logs). Sinks own any tracker-specific
schema; this module only produces text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from playheal.models.healing import HealingResult, HealingSummary

MAX_ERROR_EXCERPT = 80

OUTCOME_LABELS = {
    True: "HEALED",
    False: "FAILED",
}


def truncate(text: str, limit: int = MAX_ERROR_EXCERPT) -> str:
    """Cut *text* to *limit* characters, marking the cut with an ellipsis."""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


def render_healing_report(summary: HealingSummary) -> str:
    """Render *summary* as a plain-text report."""
    lines = [
        "AUTOMATED TEST HEALING REPORT",
        "",
        "HEALING OVERVIEW:",
        f"- Tests Successfully Healed: {summary.healed_count}",
        f"- Tests Still Failing: {summary.still_failing_count}",
        f"- Total Healing Attempts: {summary.total}",
        f"- Success Rate: {summary.success_rate}%",
        "",
        "DETAILED HEALING RESULTS:",
    ]

    for index, result in enumerate(summary.results, start=1):
        lines.extend(_render_result(index, result))

    lines.append("")
    lines.append("HEALING ACTIONS TAKEN:")
    fixes = summary.fixes_applied
    if fixes:
        lines.extend(f"- {fix}" for fix in fixes)
    else:
        lines.append("- None")

    return "\n".join(lines) + "\n"


def _render_result(index: int, result: HealingResult) -> list[str]:
    lines = [
        "",
        f"{index}. {result.test_id}: {OUTCOME_LABELS[result.success]}",
        f"   Original Error: {truncate(result.original_error) or '(none)'}",
        f"   Fix Strategy: {result.strategy.rationale}",
    ]
    if result.patch.applied_fixes:
        lines.append(f"   Applied Fixes: {', '.join(result.patch.applied_fixes)}")
    if result.error:
        lines.append(f"   Error: {truncate(result.error, 200)}")
    if result.success:
        lines.append("   Test now passes after healing")
    else:
        lines.append("   Test still failing - manual intervention required")
    return lines
