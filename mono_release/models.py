"""Data models for mono-release.

These Pydantic models represent the core data structures used throughout
the release pipeline. Configuration models live in config.py.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from .config import ProjectReleaseConfig

BumpKind = Literal["major", "minor", "patch", "prerelease", "none"]
StageName = Literal["version", "changelog", "artifact", "publish", "tag"]
StageStatus = Literal["pending", "succeeded", "skipped", "failed"]
ChangelogScope = Literal["project", "workspace"]

STAGES: tuple[StageName, ...] = ("version", "changelog", "artifact", "publish", "tag")


class ProjectInfo(BaseModel):
    """Metadata for a single project in the monorepo workspace.

    Attributes:
        name: Canonical project name, unique within the workspace.
        path: Relative path from workspace root to the project directory.
        version: Version string from the project manifest, if any.
        deps: Internal (workspace) dependency names. External deps are not
              tracked since only internal ones drive propagation.
        config: The project's own release configuration table.
    """

    name: str
    path: str
    version: str | None = None
    deps: list[str] = Field(default_factory=list)
    config: ProjectReleaseConfig = Field(default_factory=ProjectReleaseConfig)


class CommitInfo(BaseModel):
    """A single commit, parsed as a conventional commit where possible.

    Non-conventional messages keep type and scope as None.
    """

    sha: str
    header: str
    type: str | None = None
    scope: str | None = None
    subject: str = ""
    body: str | None = None
    breaking: bool = False
    breaking_message: str | None = None

    @property
    def short_sha(self) -> str:
        return self.sha[:7]


class CommitRange(BaseModel):
    """A resolved commit range. `end` is always a concrete sha."""

    start: str | None
    end: str


class VersionDecision(BaseModel):
    """The resolved current and next version of one project.

    Attributes:
        project: Project name.
        current_version: Version before this release.
        next_version: Version this release produces.
        bump: Bump kind that produced next_version.
        source: Provenance of current_version (e.g. "manifest:pyproject.toml").
        tag: Tag name rendered for next_version.
        previous_tag: Tag the commit analysis started from, if any.
        release_group: Name of the project's release group, if any.
        dependency_bump: True when the bump was synthesized by propagation.
        bumped_dependencies: Internal deps whose version changed in this run.
        synced: True when a fixed release group set next_version.
        commits: Commits analysed to infer the bump.
    """

    project: str
    current_version: str
    next_version: str
    bump: BumpKind
    source: str
    tag: str
    previous_tag: str | None = None
    release_group: str | None = None
    dependency_bump: bool = False
    bumped_dependencies: list[str] = Field(default_factory=list)
    synced: bool = False
    commits: list[CommitInfo] = Field(default_factory=list)

    @property
    def is_release(self) -> bool:
        """True when this decision changes the project's version."""
        return self.next_version != self.current_version


class ChangelogResult(BaseModel):
    """Generated changelog text and where it went."""

    scope: ChangelogScope
    project: str | None = None
    text: str
    commit_range: CommitRange
    path: Path
    written: bool = False
    edited: bool = False


class ArtifactResult(BaseModel):
    """A packed archive.

    In dry-run mode nothing is written and `size` is the total size of the
    selected input files.
    """

    project: str
    format: str
    path: Path
    size: int
    file_count: int
    files: list[str] = Field(default_factory=list)
    dry_run: bool = False


class PublishResult(BaseModel):
    """Outcome of a single registry upload."""

    project: str
    registry: str
    target: str
    dist_tag: str
    access: str
    published: bool = False
    skipped_existing: bool = False
    dry_run: bool = False
    url: str | None = None


class StageOutcome(BaseModel):
    """Status of one stage of one project's pipeline."""

    stage: StageName
    status: StageStatus = "pending"
    detail: str | None = None
    error: str | None = None
    error_type: str | None = None


class RunError(BaseModel):
    """A failure that is not tied to a single project's stage."""

    scope: str
    error: str
    error_type: str


class PipelineRun(BaseModel):
    """Everything one invocation of the orchestrator did.

    Attributes:
        projects: Project names in execution (topological) order.
        outcomes: project → stage → StageOutcome.
        dry_run: Whether persisted side effects were suppressed.
    """

    projects: list[str] = Field(default_factory=list)
    outcomes: dict[str, dict[str, StageOutcome]] = Field(default_factory=dict)
    dry_run: bool = False
    decisions: dict[str, VersionDecision] = Field(default_factory=dict)
    changelogs: dict[str, ChangelogResult] = Field(default_factory=dict)
    artifacts: dict[str, ArtifactResult] = Field(default_factory=dict)
    publishes: dict[str, PublishResult] = Field(default_factory=dict)
    workspace_changelog: ChangelogResult | None = None
    errors: list[RunError] = Field(default_factory=list)

    def add_project(self, name: str) -> None:
        self.projects.append(name)
        self.outcomes[name] = {stage: StageOutcome(stage=stage) for stage in STAGES}

    def outcome(self, project: str, stage: StageName) -> StageOutcome:
        return self.outcomes[project][stage]

    def project_status(self, project: str) -> StageStatus:
        """Collapse a project's stage outcomes into one terminal status."""
        statuses = [o.status for o in self.outcomes[project].values()]
        if "failed" in statuses:
            return "failed"
        if "succeeded" in statuses:
            return "succeeded"
        if "pending" in statuses:
            return "pending"
        return "skipped"

    def failed(self) -> list[str]:
        return [p for p in self.projects if self.project_status(p) == "failed"]

    def succeeded(self) -> list[str]:
        return [p for p in self.projects if self.project_status(p) == "succeeded"]

    def skipped(self) -> list[str]:
        return [p for p in self.projects if self.project_status(p) == "skipped"]

    @property
    def success(self) -> bool:
        """True when no project reached `failed`."""
        return not self.failed()
