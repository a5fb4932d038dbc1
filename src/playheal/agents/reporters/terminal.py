"""Terminal reporter with rich output formatting."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from playheal.agents.reporters.healing_report import truncate
from playheal.models.healing import HealingState

if TYPE_CHECKING:
    from playheal.models.healing import HealingSummary

console = Console()

_PERFECT_RATE = 100
_GOOD_RATE = 50

_STATE_STYLES = {
    HealingState.HEALED: ("✓ healed", "green"),
    HealingState.STILL_FAILING: ("✗ still failing", "red"),
    HealingState.ERRORED: ("⚠ errored", "magenta"),
}


def _rate_color(rate: int) -> str:
    """Return a Rich color name for a healed-percentage."""
    if rate >= _PERFECT_RATE:
        return "green"
    if rate >= _GOOD_RATE:
        return "yellow"
    return "red"


class CLIReporter:
    """Rich terminal output for healing runs."""

    def __init__(self, output: Console | None = None) -> None:
        self.console = output or console

    def print_header(self, title: str) -> None:
        """Print a bold header."""
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]\n")

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[red]✗[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def print_healing_summary(self, summary: HealingSummary) -> None:
        """Print a per-test table followed by the batch totals."""
        table = Table(title="Healing Results", title_style="bold cyan")
        table.add_column("Test", style="bold")
        table.add_column("Outcome")
        table.add_column("Category")
        table.add_column("Fixes", justify="right")
        table.add_column("Original Error")

        for result in summary.results:
            label, color = _STATE_STYLES[result.state]
            table.add_row(
                result.test_id,
                f"[{color}]{label}[/{color}]",
                result.strategy.category.value,
                str(len(result.patch.changed_fixes)),
                truncate(result.original_error),
            )

        self.console.print(table)

        rate = summary.success_rate
        color = _rate_color(rate)
        self.console.print(
            f"\n[bold]{summary.total}[/bold] attempted  "
            f"[green]✓ {summary.healed_count} healed[/green]  "
            f"[red]✗ {summary.still_failing_count} still failing[/red]  "
            f"[bold {color}]{rate}%[/bold {color}] success rate"
        )

        if summary.fixes_applied:
            self.console.print("\n[bold]Healing actions taken:[/bold]")
            for fix in summary.fixes_applied:
                self.console.print(f"  • {fix}")


reporter = CLIReporter()
