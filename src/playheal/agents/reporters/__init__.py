"""Reporters for healing results."""

from __future__ import annotations

from playheal.agents.reporters.healing_report import render_healing_report
from playheal.agents.reporters.json_reporter import JSONReporter
from playheal.agents.reporters.terminal import CLIReporter, reporter

__all__ = [
    "CLIReporter",
    "JSONReporter",
    "render_healing_report",
    "reporter",
]
