"""Textual patching of Playwright test sources.

Each fix identifier maps to one deterministic, regex-based transformation.
Transformations check for the construct they introduce before inserting
it, so re-running a strategy over an already patched file leaves it
unchanged.
"""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from playheal.agents.healers import strategies as fixes
from playheal.models.healing import PatchOutcome

if TYPE_CHECKING:
    from collections.abc import Callable

    from playheal.models.healing import HealingStrategy

logger = logging.getLogger(__name__)

DEFAULT_TEST_TIMEOUT_MS = 60_000
DEFAULT_NAVIGATION_TIMEOUT_MS = 60_000


class PatchIOError(OSError):
    """Reading, backing up or writing a test file failed."""


# ── Patterns ──────────────────────────────────────────────────────────

_TEST_DECLARATION = re.compile(
    r"^(?P<indent>[ \t]*)test"
    r"(?:\.describe(?:\.(?:serial|parallel|only|skip|fixme))?|\.only|\.skip|\.fixme|\.fail)?"
    r"\(",
    re.MULTILINE,
)

_EXACT_TEXT_LOCATOR = re.compile(
    r"\b(?P<call>getBy(?:Text|Label|Placeholder|Title|AltText))"
    r"\(\s*(?P<arg>(?P<q>['\"`])(?:(?!(?P=q)).)*(?P=q))\s*\)"
)

_GENERIC_LOCATOR = re.compile(
    r"(?P<call>\bpage\.locator\(\s*(?P<q>['\"`])(?:(?!(?P=q)).)*(?P=q)\s*\))"
    r"(?!\s*\.(?:first|last|nth)\()"
)

_CHAINED_CLICK = re.compile(
    r"^(?P<indent>[ \t]*)await\s+(?P<target>page(?:\.\w+\([^;]*?\))+?)"
    r"\.(?:click|dblclick|tap|check)\("
)

_DIRECT_CLICK = re.compile(
    r"^(?P<indent>[ \t]*)await\s+page\.(?:click|dblclick|tap|check)\(\s*"
    r"(?P<selector>(?P<q>['\"`])(?:(?!(?P=q)).)*(?P=q))"
)

_GOTO = re.compile(
    r"\bpage\.goto\(\s*(?P<url>(?P<q>['\"`])(?:(?!(?P=q)).)*(?P=q)|[\w.$]+)\s*"
    r"(?:,\s*\{(?P<opts>[^{}]*)\})?\s*\)"
)

_TIMEOUT_OPTION = re.compile(r"\btimeout\s*:")
_LITERAL_TIMEOUT = re.compile(r"(?P<key>\btimeout\s*:\s*)(?P<ms>\d+)\b(?!\s*[*+/.-])")


# ── Transformations ───────────────────────────────────────────────────


def inject_before_first_test(content: str, directive: str, marker: str) -> str:
    """Insert *directive* on its own line before the first test declaration.

    Nothing is inserted when *marker* already occurs in *content* or the
    file has no test declaration.
    """
    if marker in content:
        return content
    match = _TEST_DECLARATION.search(content)
    if match is None:
        return content
    indent = match.group("indent")
    start = match.start()
    return f"{content[:start]}{indent}{directive}\n{content[start:]}"


def add_exact_matching(content: str) -> str:
    """``getByText('Save')`` -> ``getByText('Save', { exact: true })``."""
    return _EXACT_TEXT_LOCATOR.sub(
        lambda m: f"{m.group('call')}({m.group('arg')}, {{ exact: true }})", content
    )


def add_first_selector(content: str) -> str:
    """``page.locator('.item')`` -> ``page.locator('.item').first()``."""
    return _GENERIC_LOCATOR.sub(lambda m: f"{m.group('call')}.first()", content)


def add_wait_for_element(content: str) -> str:
    """Insert a visibility wait before each click-style interaction on ``page``."""
    out: list[str] = []
    for line in content.splitlines(keepends=True):
        wait = _visibility_wait_for(line)
        if wait is not None and (not out or out[-1].strip() != wait.strip()):
            out.append(wait)
        out.append(line)
    return "".join(out)


def _visibility_wait_for(line: str) -> str | None:
    match = _CHAINED_CLICK.match(line)
    if match is not None:
        target = match.group("target")
    else:
        match = _DIRECT_CLICK.match(line)
        if match is None:
            return None
        target = f"page.locator({match.group('selector')})"
    return f"{match.group('indent')}await {target}.waitFor({{ state: 'visible' }});\n"


def add_load_state_wait(content: str) -> str:
    """Make every ``page.goto`` wait for the ``load`` event explicitly."""

    def _replace(m: re.Match[str]) -> str:
        opts = m.group("opts")
        if opts is None:
            return f"page.goto({m.group('url')}, {{ waitUntil: 'load' }})"
        if "waitUntil" in opts:
            return m.group(0)
        rest = _strip_options(opts)
        merged = f"waitUntil: 'load', {rest}" if rest else "waitUntil: 'load'"
        return f"page.goto({m.group('url')}, {{ {merged} }})"

    return _GOTO.sub(_replace, content)


def increase_navigation_timeout(content: str, timeout_ms: int) -> str:
    """Give every ``page.goto`` a timeout of at least *timeout_ms*.

    Missing timeouts are added and smaller literal ones raised. Larger
    values and non-literal expressions are kept.
    """

    def _raise(t: re.Match[str]) -> str:
        if int(t.group("ms")) >= timeout_ms:
            return t.group(0)
        return f"{t.group('key')}{timeout_ms}"

    def _replace(m: re.Match[str]) -> str:
        opts = m.group("opts")
        if opts is None:
            return f"page.goto({m.group('url')}, {{ timeout: {timeout_ms} }})"
        if _TIMEOUT_OPTION.search(opts):
            raised = _LITERAL_TIMEOUT.sub(_raise, opts)
            if raised == opts:
                return m.group(0)
            return f"page.goto({m.group('url')}, {{{raised}}})"
        rest = _strip_options(opts)
        merged = f"{rest}, timeout: {timeout_ms}" if rest else f"timeout: {timeout_ms}"
        return f"page.goto({m.group('url')}, {{ {merged} }})"

    return _GOTO.sub(_replace, content)


def _strip_options(opts: str) -> str:
    return opts.strip().rstrip(",").strip()


# ── Backups ───────────────────────────────────────────────────────────


class BackupStore:
    """Timestamped copies of test files taken before they are overwritten."""

    def __init__(self, backup_dir: Path, keep: int = 5) -> None:
        if keep < 1:
            raise ValueError(f"keep must be at least 1, got {keep}")
        self._dir = backup_dir
        self._keep = keep

    @property
    def backup_dir(self) -> Path:
        return self._dir

    def backup(self, path: Path) -> Path:
        """Copy *path* into the backup directory and prune old copies."""
        self._dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S%fZ")
        target = self._dir / f"{path.stem}_{stamp}{path.suffix}"
        shutil.copy2(path, target)
        logger.debug("Backed up %s to %s", path, target)
        self._prune(path)
        return target

    def backups_for(self, path: Path) -> list[Path]:
        """Existing backups of *path*, oldest first."""
        if not self._dir.is_dir():
            return []
        name_re = re.compile(
            rf"^{re.escape(path.stem)}_\d{{8}}T\d{{12}}Z{re.escape(path.suffix)}$"
        )
        return sorted(p for p in self._dir.iterdir() if name_re.match(p.name))

    def _prune(self, path: Path) -> None:
        for stale in self.backups_for(path)[: -self._keep]:
            stale.unlink()
            logger.debug("Pruned backup %s", stale)


# ── Applier ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _Fix:
    transform: Callable[[str], str]
    description: str


class PatchApplier:
    """Apply healing strategies to test source text and persist the result."""

    def __init__(
        self,
        *,
        test_timeout_ms: int = DEFAULT_TEST_TIMEOUT_MS,
        navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
        backups: BackupStore | None = None,
    ) -> None:
        self._backups = backups
        self._fixes: dict[str, _Fix] = {
            fixes.INCREASE_TEST_TIMEOUT: _Fix(
                lambda c: inject_before_first_test(
                    c, f"test.setTimeout({test_timeout_ms});", "test.setTimeout("
                ),
                f"Added test.setTimeout({test_timeout_ms}) before the first test declaration",
            ),
            fixes.ADD_EXACT_MATCHING: _Fix(
                add_exact_matching,
                "Added exact matching to text-based locators",
            ),
            fixes.ADD_FIRST_SELECTOR: _Fix(
                add_first_selector,
                "Narrowed page.locator() calls to the first match",
            ),
            fixes.ADD_WAIT_FOR_ELEMENT: _Fix(
                add_wait_for_element,
                "Added visibility waits before click interactions",
            ),
            fixes.ADD_LOAD_STATE_WAIT: _Fix(
                add_load_state_wait,
                "Added waitUntil: 'load' to page.goto() calls",
            ),
            fixes.INCREASE_NAVIGATION_TIMEOUT: _Fix(
                lambda c: increase_navigation_timeout(c, navigation_timeout_ms),
                f"Extended page.goto() timeout to {navigation_timeout_ms}ms",
            ),
            fixes.MARK_TEST_SLOW: _Fix(
                lambda c: inject_before_first_test(c, "test.slow();", "test.slow("),
                "Marked tests as slow with test.slow()",
            ),
        }

    def known_fixes(self) -> list[str]:
        return list(self._fixes)

    def apply(self, content: str, strategy: HealingStrategy) -> tuple[str, list[str]]:
        """Apply every fix of *strategy* to *content*, in order.

        Returns the updated content and one description per fix. A fix
        whose target pattern is absent is still listed.

        Raises:
            ValueError: If the strategy names a fix this applier does not know.
        """
        updated, descriptions, _ = self._apply(content, strategy)
        return updated, descriptions

    def apply_to_file(self, path: Path, strategy: HealingStrategy) -> PatchOutcome:
        """Patch the test file at *path* in place.

        The file is only rewritten when its content changes. IO failures
        are reported through ``PatchOutcome.io_error``.
        """
        try:
            original = self._read(path)
        except PatchIOError as exc:
            logger.warning("%s", exc)
            return PatchOutcome(io_error=f"PatchIOError: {exc}")

        updated, descriptions, changed = self._apply(original, strategy)

        if updated == original:
            logger.info("No changes needed in %s for %s", path, strategy.category.value)
            return PatchOutcome(applied_fixes=descriptions)

        try:
            backup_path = self._persist(path, updated)
        except PatchIOError as exc:
            logger.warning("%s", exc)
            return PatchOutcome(
                applied_fixes=descriptions,
                changed_fixes=changed,
                io_error=f"PatchIOError: {exc}",
            )

        logger.info("Applied %d fixes to %s", len(changed), path)
        return PatchOutcome(
            applied_fixes=descriptions,
            changed_fixes=changed,
            file_modified=True,
            backup_path=str(backup_path) if backup_path else None,
        )

    def _apply(
        self, content: str, strategy: HealingStrategy
    ) -> tuple[str, list[str], list[str]]:
        descriptions: list[str] = []
        changed: list[str] = []
        for fix_id in strategy.fix_ids:
            fix = self._fixes.get(fix_id)
            if fix is None:
                raise ValueError(f"Unknown fix identifier: {fix_id}")
            patched = fix.transform(content)
            if patched != content:
                changed.append(fix_id)
            content = patched
            descriptions.append(fix.description)
        return content, descriptions, changed

    def _read(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PatchIOError(f"Cannot read {path}: {exc}") from exc

    def _persist(self, path: Path, content: str) -> Path | None:
        backup_path = None
        try:
            if self._backups is not None:
                backup_path = self._backups.backup(path)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise PatchIOError(f"Cannot write {path}: {exc}") from exc
        return backup_path
