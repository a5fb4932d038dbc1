"""Configuration parsing from ``.playheal.yml``."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from playheal.adapters.e2e.playwright_adapter import DEFAULT_COMMAND, DEFAULT_TEST_ID_PATTERN
from playheal.models.healing import FailureCategory

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".playheal.yml"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")

_VALID_LOG_LEVELS = ("debug", "info", "warning", "error")
_VALID_REPORT_FORMATS = ("terminal", "text", "json")

# YAML section name for each failure category under ``strategies``
STRATEGY_SECTIONS = {
    FailureCategory.TIMEOUT: "timeout",
    FailureCategory.SELECTOR_AMBIGUITY: "selector",
    FailureCategory.ELEMENT_MISSING: "element_missing",
    FailureCategory.NAVIGATION_FAILURE: "navigation",
    FailureCategory.UNKNOWN: "general",
}


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively resolve environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        elif isinstance(value, list):
            result[key] = [
                _resolve_env_vars(item) if isinstance(item, str) else item for item in value
            ]
        else:
            result[key] = value
    return result


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _int_option(section: dict[str, Any], key: str, default: int, where: str) -> int:
    """Read an integer option, naming the offending key when it is not one."""
    value = section.get(key, default)
    if isinstance(value, bool):
        raise ValueError(f"{where}.{key} must be an integer (got: {value!r})")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{where}.{key} must be an integer (got: {value!r})") from exc


@dataclass
class AutoHealConfig:
    """Healing loop settings."""

    enabled: bool = True
    """Run healing at all."""

    debug_timeout_ms: int = 120_000
    """Upper bound for the reproduction run."""

    rerun_timeout_ms: int = 90_000
    """Upper bound for the verification run after patching."""

    delay_between_tests_ms: int = 2_000
    """Pause between consecutive tests in a batch."""


@dataclass
class PlaywrightConfig:
    """How to invoke the Playwright test runner."""

    command: list[str] = field(default_factory=lambda: list(DEFAULT_COMMAND))
    """Command prefix; ``--grep`` and ``--reporter=json`` are appended."""

    workers: int = 1
    """Worker count for the reproduction run."""

    test_id_pattern: str = DEFAULT_TEST_ID_PATTERN
    """Regex extracting the test identifier (first group) from a test title."""


@dataclass
class StrategyToggle:
    """Per-category switch for the patching step."""

    enabled: bool = True


@dataclass
class StrategiesConfig:
    """Patching constants and per-category switches."""

    test_timeout_ms: int = 60_000
    """Value written by the ``test.setTimeout`` fix."""

    navigation_timeout_ms: int = 60_000
    """Value written into ``page.goto`` options."""

    toggles: dict[str, StrategyToggle] = field(
        default_factory=lambda: {name: StrategyToggle() for name in STRATEGY_SECTIONS.values()}
    )

    def is_enabled(self, category: FailureCategory) -> bool:
        toggle = self.toggles.get(STRATEGY_SECTIONS[category])
        return toggle.enabled if toggle else True


@dataclass
class BackupConfig:
    """Copies of test files taken before patching."""

    enabled: bool = True
    backup_dir: str = ".playheal/backups"
    keep_backups: int = 5


@dataclass
class LoggingConfig:
    """Log level and optional log file."""

    level: str = "info"
    log_file: str = ""


@dataclass
class ReportConfig:
    """Healing report output."""

    format: str = "terminal"
    """Output format: terminal, text, json."""

    output: str = ""
    """File to write the report to (empty = stdout)."""


@dataclass
class PlayhealConfig:
    """Complete playheal configuration from ``.playheal.yml``."""

    root: str
    """Project root directory (where Playwright is run)."""

    auto_heal: AutoHealConfig = field(default_factory=AutoHealConfig)
    playwright: PlaywrightConfig = field(default_factory=PlaywrightConfig)
    strategies: StrategiesConfig = field(default_factory=StrategiesConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    report: ReportConfig = field(default_factory=ReportConfig)

    raw: dict[str, Any] = field(default_factory=dict)
    """Raw parsed YAML for extension/debugging."""

    @property
    def backup_path(self) -> Path:
        """Backup directory, resolved against the project root."""
        path = Path(self.backup.backup_dir)
        return path if path.is_absolute() else Path(self.root) / path


def _parse_auto_heal_config(raw: dict[str, Any]) -> AutoHealConfig:
    section = _section(raw, "auto_heal")
    default = AutoHealConfig()
    return AutoHealConfig(
        enabled=bool(section.get("enabled", default.enabled)),
        debug_timeout_ms=_int_option(
            section, "debug_timeout_ms", default.debug_timeout_ms, "auto_heal"
        ),
        rerun_timeout_ms=_int_option(
            section, "rerun_timeout_ms", default.rerun_timeout_ms, "auto_heal"
        ),
        delay_between_tests_ms=_int_option(
            section, "delay_between_tests_ms", default.delay_between_tests_ms, "auto_heal"
        ),
    )


def _parse_playwright_config(raw: dict[str, Any]) -> PlaywrightConfig:
    section = _section(raw, "playwright")
    command_raw = section.get("command", list(DEFAULT_COMMAND))
    if isinstance(command_raw, str):
        command = command_raw.split()
    elif isinstance(command_raw, list):
        command = [str(part) for part in command_raw]
    else:
        command = list(DEFAULT_COMMAND)

    return PlaywrightConfig(
        command=command,
        workers=_int_option(section, "workers", 1, "playwright"),
        test_id_pattern=str(section.get("test_id_pattern", DEFAULT_TEST_ID_PATTERN)),
    )


def _parse_strategies_config(raw: dict[str, Any]) -> StrategiesConfig:
    section = _section(raw, "strategies")
    timeout_raw = _section(section, "timeout")
    navigation_raw = _section(section, "navigation")

    toggles = {
        name: StrategyToggle(enabled=bool(_section(section, name).get("enabled", True)))
        for name in STRATEGY_SECTIONS.values()
    }

    return StrategiesConfig(
        test_timeout_ms=_int_option(
            timeout_raw, "test_timeout_ms", 60_000, "strategies.timeout"
        ),
        navigation_timeout_ms=_int_option(
            navigation_raw, "navigation_timeout_ms", 60_000, "strategies.navigation"
        ),
        toggles=toggles,
    )


def _parse_backup_config(raw: dict[str, Any]) -> BackupConfig:
    section = _section(raw, "backup")
    return BackupConfig(
        enabled=bool(section.get("enabled", True)),
        backup_dir=str(section.get("backup_dir", ".playheal/backups")),
        keep_backups=_int_option(section, "keep_backups", 5, "backup"),
    )


def _parse_logging_config(raw: dict[str, Any]) -> LoggingConfig:
    section = _section(raw, "logging")
    return LoggingConfig(
        level=str(section.get("level", "info")).lower(),
        log_file=str(section.get("log_file", "")),
    )


def _parse_report_config(raw: dict[str, Any]) -> ReportConfig:
    section = _section(raw, "report")
    return ReportConfig(
        format=str(section.get("format", "terminal")).lower(),
        output=str(section.get("output", "")),
    )


def load_config(root: str | Path) -> PlayhealConfig:
    """Load and parse ``.playheal.yml`` from *root*.

    Falls back to defaults when the file is missing or incomplete.

    Raises:
        ValueError: If the file exists but is not valid YAML, or an integer
            option holds something else.
    """
    root_path = Path(root).resolve()
    config_file = root_path / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_file.is_file():
        text = config_file.read_text(encoding="utf-8")
        try:
            parsed = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_file}: {exc}") from exc
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)
        elif parsed is not None:
            logger.warning("Ignoring %s: top level is not a mapping", config_file)

    return PlayhealConfig(
        root=str(raw.get("root", root_path)),
        auto_heal=_parse_auto_heal_config(raw),
        playwright=_parse_playwright_config(raw),
        strategies=_parse_strategies_config(raw),
        backup=_parse_backup_config(raw),
        logging=_parse_logging_config(raw),
        report=_parse_report_config(raw),
        raw=raw,
    )


def _validate_auto_heal_config(auto_heal: AutoHealConfig) -> list[str]:
    errors: list[str] = []
    if auto_heal.debug_timeout_ms <= 0:
        errors.append(
            f"auto_heal.debug_timeout_ms must be positive (got: {auto_heal.debug_timeout_ms})"
        )
    if auto_heal.rerun_timeout_ms <= 0:
        errors.append(
            f"auto_heal.rerun_timeout_ms must be positive (got: {auto_heal.rerun_timeout_ms})"
        )
    if auto_heal.delay_between_tests_ms < 0:
        errors.append(
            "auto_heal.delay_between_tests_ms must not be negative "
            f"(got: {auto_heal.delay_between_tests_ms})"
        )
    return errors


def _validate_playwright_config(playwright: PlaywrightConfig) -> list[str]:
    errors: list[str] = []
    if not playwright.command:
        errors.append("playwright.command must not be empty")
    if playwright.workers < 1:
        errors.append(f"playwright.workers must be at least 1 (got: {playwright.workers})")
    try:
        pattern = re.compile(playwright.test_id_pattern)
    except re.error as exc:
        errors.append(f"playwright.test_id_pattern is not a valid regex: {exc}")
    else:
        if pattern.groups < 1:
            errors.append("playwright.test_id_pattern must contain a capture group")
    return errors


def _validate_strategies_config(strategies: StrategiesConfig) -> list[str]:
    errors: list[str] = []
    if strategies.test_timeout_ms <= 0:
        errors.append("strategies.timeout.test_timeout_ms must be positive")
    if strategies.navigation_timeout_ms <= 0:
        errors.append("strategies.navigation.navigation_timeout_ms must be positive")
    return errors


def validate_config(config: PlayhealConfig) -> list[str]:
    """Validate the configuration and return a list of error messages.

    Returns an empty list if the configuration is valid.
    """
    errors: list[str] = []

    if not config.root:
        errors.append("root is required")

    errors.extend(_validate_auto_heal_config(config.auto_heal))
    errors.extend(_validate_playwright_config(config.playwright))
    errors.extend(_validate_strategies_config(config.strategies))

    if config.backup.keep_backups < 1:
        errors.append(f"backup.keep_backups must be at least 1 (got: {config.backup.keep_backups})")

    if config.logging.level not in _VALID_LOG_LEVELS:
        errors.append(
            f"logging.level must be one of: {', '.join(_VALID_LOG_LEVELS)} "
            f"(got: {config.logging.level})"
        )

    if config.report.format not in _VALID_REPORT_FORMATS:
        errors.append(
            f"report.format must be one of: {', '.join(_VALID_REPORT_FORMATS)} "
            f"(got: {config.report.format})"
        )

    return errors
