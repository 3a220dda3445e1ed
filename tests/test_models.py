"""Tests for mono_release.models."""

from __future__ import annotations

from mono_release.models import (
    STAGES,
    CommitInfo,
    PipelineRun,
    ProjectInfo,
    VersionDecision,
)


def _decision(current: str, next_version: str) -> VersionDecision:
    return VersionDecision(
        project="api",
        current_version=current,
        next_version=next_version,
        bump="none" if current == next_version else "patch",
        source="manifest:pyproject.toml",
        tag=f"api@{next_version}",
    )


class TestProjectInfo:
    def test_create_with_required_fields(self) -> None:
        info = ProjectInfo(name="foo", path="packages/foo")
        assert info.version is None
        assert info.deps == []
        assert info.config.exclude is False

    def test_deps_is_mutable(self) -> None:
        info = ProjectInfo(name="foo", path="pkg")
        info.deps.append("bar")
        assert info.deps == ["bar"]


class TestCommitInfo:
    def test_short_sha(self) -> None:
        commit = CommitInfo(sha="0123456789abcdef", header="fix: x")
        assert commit.short_sha == "0123456"


class TestVersionDecision:
    def test_is_release(self) -> None:
        assert _decision("1.0.0", "1.0.1").is_release

    def test_no_release_when_unchanged(self) -> None:
        assert not _decision("1.0.0", "1.0.0").is_release


class TestPipelineRun:
    def test_add_project_creates_pending_stages(self) -> None:
        run = PipelineRun()
        run.add_project("api")
        assert list(run.outcomes["api"]) == list(STAGES)
        assert run.project_status("api") == "pending"

    def test_failed_wins(self) -> None:
        run = PipelineRun()
        run.add_project("api")
        run.outcome("api", "version").status = "succeeded"
        run.outcome("api", "changelog").status = "failed"
        assert run.project_status("api") == "failed"
        assert run.failed() == ["api"]
        assert not run.success

    def test_succeeded_with_some_skipped(self) -> None:
        run = PipelineRun()
        run.add_project("api")
        for stage in STAGES:
            run.outcome("api", stage).status = "skipped"
        run.outcome("api", "version").status = "succeeded"
        assert run.project_status("api") == "succeeded"
        assert run.success

    def test_all_skipped(self) -> None:
        run = PipelineRun()
        run.add_project("web")
        for stage in STAGES:
            run.outcome("web", stage).status = "skipped"
        assert run.skipped() == ["web"]
        assert run.succeeded() == []
