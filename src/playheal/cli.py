"""playheal CLI: top-level command group."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler

from playheal import __version__
from playheal.adapters.e2e.playwright_adapter import collect_failed_tests
from playheal.agents.healers import FailureClassifier, HealingOrchestrator, StrategyCatalog
from playheal.agents.reporters import JSONReporter, render_healing_report, reporter
from playheal.config import CONFIG_FILENAME, PlayhealConfig, load_config, validate_config
from playheal.models.healing import HealingSummary

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(level: str, log_file: str, *, verbose: bool) -> None:
    """Send log records to stderr through rich, and optionally to a file."""
    resolved = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [
        RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    ]
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handlers.append(file_handler)
    logging.basicConfig(level=resolved, format="%(message)s", handlers=handlers, force=True)


def _load_config_or_exit(path: str) -> PlayhealConfig:
    try:
        return load_config(path)
    except ValueError as exc:
        reporter.print_error(str(exc))
        raise SystemExit(2) from exc


def _config_to_dict(config: PlayhealConfig) -> dict[str, Any]:
    """Convert PlayhealConfig to a dictionary for display."""
    result = asdict(config)
    result.pop("raw", None)
    return result


@click.group()
@click.version_option(version=__version__, prog_name="playheal")
def cli() -> None:
    """Playheal: automated healing for failing Playwright tests."""


@cli.command()
@click.option(
    "--report",
    "report_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Playwright JSON reporter output from the failed run.",
)
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["terminal", "text", "json"]),
    default=None,
    help="Report format (defaults to report.format from config).",
)
@click.option(
    "--output",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the report to this file instead of stdout.",
)
@click.option("--no-delay", is_flag=True, help="Skip the pause between tests.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def heal(
    report_path: str,
    path: str,
    output_format: str | None,
    output: str | None,
    *,
    no_delay: bool,
    verbose: bool,
) -> None:
    """Heal the failed tests listed in a Playwright JSON report."""
    config = _load_config_or_exit(path)
    _configure_logging(config.logging.level, config.logging.log_file, verbose=verbose)

    errors = validate_config(config)
    if errors:
        for error in errors:
            reporter.print_error(error)
        raise SystemExit(2)

    if not config.auto_heal.enabled:
        reporter.print_warning("Auto-healing is disabled in configuration")
        return

    if no_delay:
        config = replace(config, auto_heal=replace(config.auto_heal, delay_between_tests_ms=0))

    fmt = output_format or config.report.format
    destination = output or config.report.output
    # stdout carries only the report when it is not written to a file
    machine_output = fmt != "terminal" and not destination

    try:
        records = collect_failed_tests(Path(report_path), config.playwright.test_id_pattern)
    except ValueError as exc:
        reporter.print_error(str(exc))
        raise SystemExit(2) from exc

    if records:
        if not machine_output:
            reporter.print_header(f"Healing {len(records)} failed test(s)")
        orchestrator = HealingOrchestrator.from_config(config)
        summary = asyncio.run(orchestrator.heal_batch(records))
    elif machine_output:
        summary = HealingSummary()
    else:
        reporter.print_success("No failed tests to heal")
        return

    if fmt == "json":
        text = JSONReporter().generate_string(summary)
    elif fmt == "text":
        text = render_healing_report(summary)
    else:
        reporter.print_healing_summary(summary)
        text = render_healing_report(summary) if destination else ""

    if destination:
        out_path = Path(destination)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text, encoding="utf-8")
        reporter.print_success(f"Report written to {out_path}")
    elif text:
        click.echo(text, nl=False)

    sys.exit(0 if summary.still_failing_count == 0 else 1)


@cli.command()
@click.argument("message")
def classify(message: str) -> None:
    """Classify an error MESSAGE and show the strategy that would be applied."""
    category = FailureClassifier().classify(message)
    strategy = StrategyCatalog().strategy_for(category)
    click.echo(f"Category: {category.value}")
    click.echo(f"Rationale: {strategy.rationale}")
    click.echo(f"Fixes: {', '.join(strategy.fix_ids)}")


@cli.group("config")
def config_group() -> None:
    """Inspect `.playheal.yml` configuration."""


@config_group.command("show")
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
def config_show(path: str) -> None:
    """Print the effective configuration as JSON."""
    config = _load_config_or_exit(path)
    click.echo(json.dumps(_config_to_dict(config), indent=2))


@config_group.command("validate")
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
def config_validate(path: str) -> None:
    """Check the configuration and report problems."""
    config = _load_config_or_exit(path)
    errors = validate_config(config)
    if errors:
        for error in errors:
            reporter.print_error(error)
        raise SystemExit(1)
    reporter.print_success(f"{CONFIG_FILENAME} is valid")


def main() -> None:
    """Console-script entry point."""
    cli()


if __name__ == "__main__":
    main()
