"""JSON reporter: machine-readable rendering of a healing run."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

    from playheal.models.healing import HealingResult, HealingSummary

logger = logging.getLogger(__name__)


class JSONReporter:
    """Serialize a ``HealingSummary`` into a single JSON document."""

    def generate(self, output_path: Path, summary: HealingSummary) -> Path:
        """Write the JSON report to *output_path* and return it."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.generate_string(summary), encoding="utf-8")
        logger.info("JSON report written to %s", output_path)
        return output_path

    def generate_string(self, summary: HealingSummary) -> str:
        """Return the JSON report as a string."""
        return json.dumps(build_report(summary), indent=2, ensure_ascii=False, default=str)


def build_report(summary: HealingSummary) -> dict[str, Any]:
    """Build the JSON report structure."""
    return {
        "tool": "playheal",
        "timestamp": datetime.now(tz=UTC).isoformat(),
        "summary": {
            "total": summary.total,
            "healed": summary.healed_count,
            "still_failing": summary.still_failing_count,
            "success_rate": summary.success_rate,
        },
        "results": [_serialize_result(r) for r in summary.results],
        "fixes_applied": summary.fixes_applied,
    }


def _serialize_result(result: HealingResult) -> dict[str, Any]:
    return {
        "test_id": result.test_id,
        "success": result.success,
        "state": result.state.value,
        "original_error": result.original_error,
        "error": result.error,
        "strategy": {
            "category": result.strategy.category.value,
            "fix_ids": list(result.strategy.fix_ids),
            "rationale": result.strategy.rationale,
        },
        "patch": {
            "applied_fixes": result.patch.applied_fixes,
            "changed_fixes": result.patch.changed_fixes,
            "file_modified": result.patch.file_modified,
            "io_error": result.patch.io_error,
            "backup_path": result.patch.backup_path,
        },
        "verification": {
            "status": result.verification.status.value,
            "duration_ms": result.verification.duration_ms,
            "error_message": result.verification.error_message,
        },
    }
