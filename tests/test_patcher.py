"""Tests for source transformations, backups and the patch applier."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from playheal.agents.healers.patcher import (
    BackupStore,
    PatchApplier,
    add_exact_matching,
    add_first_selector,
    add_load_state_wait,
    add_wait_for_element,
    increase_navigation_timeout,
    inject_before_first_test,
)
from playheal.agents.healers.strategies import StrategyCatalog
from playheal.models.healing import FailureCategory, HealingStrategy

_SPEC = """\
import { test, expect } from '@playwright/test';

test('VAL-001: login', async ({ page }) => {
  await page.goto('https://app.test/login');
  await page.getByText('Sign in').click();
  await page.locator('.item').click();
  await page.click('#submit');
});
"""


def _strategy(category: FailureCategory) -> HealingStrategy:
    return StrategyCatalog().strategy_for(category)


def _write_spec(root: Path, content: str = _SPEC) -> Path:
    spec = root / "tests" / "login.spec.ts"
    spec.parent.mkdir(parents=True, exist_ok=True)
    spec.write_text(content, encoding="utf-8")
    return spec


# ── Transformations ──────────────────────────────────────────────────


class TestInjectBeforeFirstTest:
    def test_inserts_before_first_declaration(self) -> None:
        result = inject_before_first_test(_SPEC, "test.setTimeout(60000);", "test.setTimeout(")

        assert "\ntest.setTimeout(60000);\ntest('VAL-001: login'" in result
        assert result.count("test.setTimeout(") == 1

    def test_keeps_indentation_of_describe_block(self) -> None:
        content = "  test.describe('auth', () => {\n    test('a', async () => {});\n  });\n"

        result = inject_before_first_test(content, "test.slow();", "test.slow(")

        assert result.startswith("  test.slow();\n  test.describe('auth'")

    def test_skips_when_marker_present(self) -> None:
        content = "test.setTimeout(30000);\n" + _SPEC

        result = inject_before_first_test(content, "test.setTimeout(60000);", "test.setTimeout(")

        assert result == content

    def test_skips_without_test_declaration(self) -> None:
        content = "export const helper = () => 1;\n"

        assert inject_before_first_test(content, "test.slow();", "test.slow(") == content


class TestLocatorTransforms:
    def test_add_exact_matching(self) -> None:
        content = (
            "await page.getByText('Save').click();\n"
            "await page.getByLabel(\"Email\").fill('x');\n"
        )

        result = add_exact_matching(content)

        assert "getByText('Save', { exact: true })" in result
        assert 'getByLabel("Email", { exact: true })' in result

    def test_add_exact_matching_leaves_existing_options(self) -> None:
        content = "await page.getByText('Save', { exact: false }).click();\n"

        assert add_exact_matching(content) == content

    def test_add_first_selector(self) -> None:
        content = "await page.locator('.item').click();\n"

        assert add_first_selector(content) == "await page.locator('.item').first().click();\n"

    def test_add_first_selector_skips_narrowed_locators(self) -> None:
        content = (
            "await page.locator('.item').nth(2).click();\n"
            "await page.locator('.row').last().click();\n"
        )

        assert add_first_selector(content) == content


class TestWaitForElement:
    def test_chained_click(self) -> None:
        content = "  await page.locator('#submit').click();\n"

        result = add_wait_for_element(content)

        assert result == (
            "  await page.locator('#submit').waitFor({ state: 'visible' });\n"
            "  await page.locator('#submit').click();\n"
        )

    def test_direct_click_uses_locator(self) -> None:
        content = "await page.click('#submit');\n"

        result = add_wait_for_element(content)

        assert result.splitlines()[0] == (
            "await page.locator('#submit').waitFor({ state: 'visible' });"
        )

    def test_role_locator(self) -> None:
        content = "await page.getByRole('button', { name: 'Save' }).click();\n"

        result = add_wait_for_element(content)

        assert result.splitlines()[0] == (
            "await page.getByRole('button', { name: 'Save' }).waitFor({ state: 'visible' });"
        )

    def test_non_click_lines_untouched(self) -> None:
        content = "await page.fill('#email', 'a@b.c');\nawait expect(page).toHaveURL('/home');\n"

        assert add_wait_for_element(content) == content


class TestNavigationTransforms:
    def test_add_load_state_wait(self) -> None:
        content = "await page.goto('https://app.test');\n"

        assert add_load_state_wait(content) == (
            "await page.goto('https://app.test', { waitUntil: 'load' });\n"
        )

    def test_load_state_merges_existing_options(self) -> None:
        content = "await page.goto(url, { timeout: 5000 });\n"

        assert add_load_state_wait(content) == (
            "await page.goto(url, { waitUntil: 'load', timeout: 5000 });\n"
        )

    def test_existing_wait_until_kept(self) -> None:
        content = "await page.goto('/', { waitUntil: 'networkidle' });\n"

        assert add_load_state_wait(content) == content

    def test_increase_navigation_timeout(self) -> None:
        content = "await page.goto('/');\n"

        assert increase_navigation_timeout(content, 60000) == (
            "await page.goto('/', { timeout: 60000 });\n"
        )

    def test_smaller_timeout_raised(self) -> None:
        content = "await page.goto('/', { waitUntil: 'load', timeout: 5000 });\n"

        result = increase_navigation_timeout(content, 60000)

        assert result == "await page.goto('/', { waitUntil: 'load', timeout: 60000 });\n"
        assert increase_navigation_timeout(result, 60000) == result

    def test_larger_timeout_kept(self) -> None:
        content = "await page.goto('/', { timeout: 90000 });\n"

        assert increase_navigation_timeout(content, 60000) == content

    def test_computed_timeout_kept(self) -> None:
        content = (
            "await page.goto('/', { timeout: NAV_TIMEOUT });\n"
            "await page.goto(url, { timeout: 5 * 1000 });\n"
        )

        assert increase_navigation_timeout(content, 60000) == content

    def test_combined_navigation_fixes(self) -> None:
        content = "await page.goto('https://app.test');\n"

        result = increase_navigation_timeout(add_load_state_wait(content), 60000)

        assert result == (
            "await page.goto('https://app.test', { waitUntil: 'load', timeout: 60000 });\n"
        )


# ── PatchApplier.apply ───────────────────────────────────────────────


@pytest.mark.parametrize("category", list(FailureCategory))
def test_apply_is_idempotent(category: FailureCategory) -> None:
    applier = PatchApplier()
    strategy = _strategy(category)

    once, _ = applier.apply(_SPEC, strategy)
    twice, _ = applier.apply(once, strategy)

    assert once != _SPEC
    assert twice == once


def test_apply_describes_every_fix() -> None:
    _, descriptions = PatchApplier().apply(_SPEC, _strategy(FailureCategory.NAVIGATION_FAILURE))

    assert descriptions == [
        "Added waitUntil: 'load' to page.goto() calls",
        "Extended page.goto() timeout to 60000ms",
    ]


def test_apply_describes_fix_without_target() -> None:
    content = "export const helper = () => 1;\n"

    updated, descriptions = PatchApplier().apply(content, _strategy(FailureCategory.TIMEOUT))

    assert updated == content
    assert descriptions == ["Added test.setTimeout(60000) before the first test declaration"]


def test_apply_uses_configured_timeouts() -> None:
    applier = PatchApplier(test_timeout_ms=90000, navigation_timeout_ms=45000)

    timed, _ = applier.apply(_SPEC, _strategy(FailureCategory.TIMEOUT))
    navigated, _ = applier.apply(_SPEC, _strategy(FailureCategory.NAVIGATION_FAILURE))

    assert "test.setTimeout(90000);" in timed
    assert "timeout: 45000" in navigated


def test_apply_rejects_unknown_fix() -> None:
    strategy = HealingStrategy(FailureCategory.UNKNOWN, ("rewrite_everything",), "nope")

    with pytest.raises(ValueError, match="rewrite_everything"):
        PatchApplier().apply(_SPEC, strategy)


# ── PatchApplier.apply_to_file ───────────────────────────────────────


def test_apply_to_file_writes_changes(tmp_path: Path) -> None:
    spec = _write_spec(tmp_path)

    outcome = PatchApplier().apply_to_file(spec, _strategy(FailureCategory.TIMEOUT))

    assert outcome.file_modified is True
    assert outcome.io_error is None
    assert outcome.changed_fixes == ["increase_test_timeout"]
    assert outcome.backup_path is None
    assert "test.setTimeout(60000);" in spec.read_text(encoding="utf-8")


def test_apply_to_file_leaves_unchanged_file_alone(tmp_path: Path) -> None:
    spec = _write_spec(tmp_path, "test.slow();\n" + _SPEC)
    before = spec.stat().st_mtime_ns

    outcome = PatchApplier().apply_to_file(spec, _strategy(FailureCategory.UNKNOWN))

    assert outcome.file_modified is False
    assert outcome.changed_fixes == []
    assert outcome.applied_fixes == ["Marked tests as slow with test.slow()"]
    assert spec.stat().st_mtime_ns == before


def test_apply_to_file_missing_file(tmp_path: Path) -> None:
    outcome = PatchApplier().apply_to_file(
        tmp_path / "missing.spec.ts", _strategy(FailureCategory.TIMEOUT)
    )

    assert outcome.file_modified is False
    assert outcome.io_error is not None
    assert outcome.io_error.startswith("PatchIOError: Cannot read")


def test_apply_to_file_write_failure(tmp_path: Path) -> None:
    spec = _write_spec(tmp_path)

    with patch.object(Path, "write_text", side_effect=PermissionError("read-only")):
        outcome = PatchApplier().apply_to_file(spec, _strategy(FailureCategory.TIMEOUT))

    assert outcome.file_modified is False
    assert outcome.io_error is not None
    assert outcome.io_error.startswith("PatchIOError: Cannot write")
    assert "read-only" in outcome.io_error
    assert outcome.applied_fixes == [
        "Added test.setTimeout(60000) before the first test declaration"
    ]
    assert outcome.changed_fixes == ["increase_test_timeout"]
    assert spec.read_text(encoding="utf-8") == _SPEC


def test_apply_to_file_takes_backup(tmp_path: Path) -> None:
    spec = _write_spec(tmp_path)
    store = BackupStore(tmp_path / "backups")

    outcome = PatchApplier(backups=store).apply_to_file(
        spec, _strategy(FailureCategory.ELEMENT_MISSING)
    )

    assert outcome.backup_path is not None
    backup = Path(outcome.backup_path)
    assert backup.parent == tmp_path / "backups"
    assert backup.read_text(encoding="utf-8") == _SPEC
    assert "waitFor({ state: 'visible' })" in spec.read_text(encoding="utf-8")


# ── BackupStore ──────────────────────────────────────────────────────


class TestBackupStore:
    def test_rejects_non_positive_keep(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="keep"):
            BackupStore(tmp_path, keep=0)

    def test_backup_name(self, tmp_path: Path) -> None:
        spec = _write_spec(tmp_path)
        store = BackupStore(tmp_path / "backups")

        backup = store.backup(spec)

        assert backup.name.startswith("login.spec_")
        assert backup.name.endswith("Z.ts")
        assert store.backups_for(spec) == [backup]

    def test_prunes_oldest(self, tmp_path: Path) -> None:
        spec = _write_spec(tmp_path)
        backup_dir = tmp_path / "backups"
        backup_dir.mkdir()
        old = [backup_dir / f"login.spec_2020010{i}T000000000000Z.ts" for i in range(1, 4)]
        for path in old:
            path.write_text("old", encoding="utf-8")
        unrelated = backup_dir / "other.spec_20200101T000000000000Z.ts"
        unrelated.write_text("other", encoding="utf-8")
        store = BackupStore(backup_dir, keep=2)

        newest = store.backup(spec)

        assert store.backups_for(spec) == [old[2], newest]
        assert not old[0].exists()
        assert not old[1].exists()
        assert unrelated.exists()

    def test_no_backups_without_directory(self, tmp_path: Path) -> None:
        store = BackupStore(tmp_path / "nowhere")

        assert store.backups_for(tmp_path / "login.spec.ts") == []
