"""Tests for mono_release.changelog."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import click
import pytest

from mono_release.changelog import (
    ChangelogOptions,
    edit_interactively,
    generate,
    should_edit,
    write_changelog,
)
from mono_release.commits import parse_commit
from mono_release.errors import InteractiveEditFailure, StageIOFailure
from mono_release.models import ProjectInfo, VersionDecision
from tests._fakes import FakeVcs


def _decision(**overrides) -> VersionDecision:
    data = dict(
        project="api",
        current_version="1.2.0",
        next_version="1.3.0",
        bump="minor",
        source="manifest:pyproject.toml",
        tag="api@1.3.0",
        previous_tag="api@1.2.0",
        commits=[parse_commit("1" * 40, "feat: add search")],
    )
    data.update(overrides)
    return VersionDecision(**data)


PROJECT = ProjectInfo(name="api", path="packages/api")


class TestWriteChangelog:
    def test_append_is_byte_exact(self, tmp_path: Path) -> None:
        """Appending puts the new text first, a blank line, then the old file."""
        path = tmp_path / "CHANGELOG.md"
        old = "## 1.2.0 (2025-12-01)\n\n* old entry\n"
        path.write_text(old)
        new = "## 1.3.0 (2026-01-02)\n\n* new entry\n"

        write_changelog(path, new, append=True)

        assert path.read_text() == new + "\n\n" + old

    def test_replace(self, tmp_path: Path) -> None:
        path = tmp_path / "CHANGELOG.md"
        path.write_text("old\n")
        write_changelog(path, "new\n", append=False)
        assert path.read_text() == "new\n"

    def test_append_to_missing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "docs" / "CHANGELOG.md"
        write_changelog(path, "new\n", append=True)
        assert path.read_text() == "new\n"

    def test_unwritable(self, tmp_path: Path) -> None:
        path = tmp_path / "CHANGELOG.md"
        path.mkdir()
        with pytest.raises(StageIOFailure):
            write_changelog(path, "new\n", append=False)


class TestInteractive:
    @pytest.mark.parametrize(
        ("interactive", "scope", "expected"),
        [
            (False, "project", False),
            (True, "workspace", True),
            ("all", "project", True),
            ("workspace", "workspace", True),
            ("workspace", "project", False),
            ("projects", "project", True),
        ],
    )
    def test_should_edit(self, interactive, scope, expected) -> None:
        assert should_edit(interactive, scope) is expected

    @patch("mono_release.changelog.click.edit")
    def test_edited_text_returned(self, mock_edit: MagicMock) -> None:
        mock_edit.return_value = "edited\n"
        assert edit_interactively("generated\n", "api") == "edited\n"

    @patch("mono_release.changelog.click.edit")
    def test_unsaved_keeps_text(self, mock_edit: MagicMock) -> None:
        mock_edit.return_value = None
        assert edit_interactively("generated\n", "api") == "generated\n"

    @patch("mono_release.changelog.click.edit")
    def test_editor_failure(self, mock_edit: MagicMock) -> None:
        mock_edit.side_effect = click.ClickException("Editing failed")
        with pytest.raises(InteractiveEditFailure):
            edit_interactively("generated\n", "api")


class TestGenerate:
    def _options(self, **kwargs) -> ChangelogOptions:
        return ChangelogOptions(date="2026-01-02", **kwargs)

    def test_project_changelog(self, tmp_path: Path) -> None:
        result = generate(
            "project", (PROJECT, _decision()), self._options(),
            vcs=FakeVcs(), workspace_root=tmp_path,
        )
        path = tmp_path / "packages/api/CHANGELOG.md"
        assert result.path == path
        assert result.written
        assert path.read_text() == (
            "## 1.3.0 (2026-01-02)\n\n### Features\n\n* add search (1111111)\n\n"
        )
        assert result.commit_range.start == "api@1.2.0"
        assert result.commit_range.end == "f" * 40

    def test_compare_link(self, tmp_path: Path) -> None:
        result = generate(
            "project", (PROJECT, _decision()),
            self._options(repository_url="https://github.com/o/r", dry_run=True),
            vcs=FakeVcs(), workspace_root=tmp_path,
        )
        assert result.text.startswith(
            "## [1.3.0](https://github.com/o/r/compare/api@1.2.0...api@1.3.0) (2026-01-02)"
        )

    def test_dry_run_writes_nothing(self, tmp_path: Path) -> None:
        result = generate(
            "project", (PROJECT, _decision()), self._options(dry_run=True),
            vcs=FakeVcs(), workspace_root=tmp_path,
        )
        assert not result.written
        assert not result.path.exists()
        assert "add search" in result.text

    def test_explicit_range_reads_history(self, tmp_path: Path) -> None:
        vcs = FakeVcs()
        vcs.add_commit("packages/api", "fix: from history")
        result = generate(
            "project", (PROJECT, _decision()),
            self._options(from_ref="api@1.0.0", dry_run=True),
            vcs=vcs, workspace_root=tmp_path,
        )
        assert "from history" in result.text
        assert "add search" not in result.text
        assert vcs.log_queries == [("api@1.0.0", "f" * 40, ("packages/api",))]

    def test_dependency_section(self, tmp_path: Path) -> None:
        decision = _decision(commits=[], bump="patch", next_version="1.2.1", tag="api@1.2.1",
                             dependency_bump=True, bumped_dependencies=["core"])
        result = generate(
            "project", (PROJECT, decision), self._options(dry_run=True),
            vcs=FakeVcs(), workspace_root=tmp_path, dependency_versions={"core": "3.0.0"},
        )
        assert "* **core:** upgraded to 3.0.0" in result.text

    @patch("mono_release.changelog.click.edit")
    def test_interactive_edit_is_written(self, mock_edit: MagicMock, tmp_path: Path) -> None:
        mock_edit.return_value = "hand written\n"
        result = generate(
            "project", (PROJECT, _decision()), self._options(interactive="projects"),
            vcs=FakeVcs(), workspace_root=tmp_path,
        )
        assert result.edited
        assert result.path.read_text() == "hand written\n"

    @patch("mono_release.changelog.click.edit")
    def test_editor_failure_falls_back(self, mock_edit: MagicMock, tmp_path: Path) -> None:
        mock_edit.side_effect = OSError("no editor")
        result = generate(
            "project", (PROJECT, _decision()), self._options(interactive=True, dry_run=True),
            vcs=FakeVcs(), workspace_root=tmp_path,
        )
        assert not result.edited
        assert "add search" in result.text

    def test_workspace_changelog(self, tmp_path: Path) -> None:
        web = _decision(project="web", next_version="0.2.0", current_version="0.1.0", tag="web@0.2.0")
        unchanged = _decision(project="cli", next_version="1.0.0", current_version="1.0.0", tag="cli@1.0.0")
        result = generate(
            "workspace", [_decision(), web, unchanged], self._options(),
            vcs=FakeVcs(), workspace_root=tmp_path,
        )
        assert result.path == tmp_path / "CHANGELOG.md"
        assert result.project is None
        assert "## api 1.3.0" in result.text
        assert "## web 0.2.0" in result.text
        assert "## cli" not in result.text
