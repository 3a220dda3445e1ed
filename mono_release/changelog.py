"""Changelog stage.

Generates changelog text for one project or for the whole workspace and
writes it to the configured file. With `append`, the new entry goes on top
of the existing file content (``new + "\\n\\n" + existing``); otherwise the
file is replaced. An optional interactive edit lets a human adjust the text
before it is written.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date as _date
from pathlib import Path
from typing import Any, Literal

import click
from pydantic import BaseModel

from .commits import filter_commits_for_project
from .errors import InteractiveEditFailure, StageIOFailure
from .models import (
    ChangelogResult,
    ChangelogScope,
    CommitInfo,
    CommitRange,
    ProjectInfo,
    VersionDecision,
)
from .render import RenderContext, render, render_workspace
from .shell import warn
from .toml import atomic_write_text

Interactive = bool | Literal["all", "workspace", "projects"]


class ChangelogOptions(BaseModel):
    """Options for one changelog generation.

    Attributes:
        preset: Render preset name.
        file: Changelog file, relative to the project (or workspace) root.
        append: Prepend to an existing file instead of replacing it.
        repository_url: Base URL used for commit and compare links.
        from_ref: Start of the commit range (defaults to the previous tag).
        to_ref: End of the commit range (defaults to HEAD).
        interactive: Open an editor on the generated text. True/"all"
            edits every changelog; "workspace"/"projects" only that scope.
        dry_run: Generate but never write.
        date: Release date; today when not given.
    """

    preset: str = "angular"
    file: str = "CHANGELOG.md"
    append: bool = True
    repository_url: str | None = None
    from_ref: str | None = None
    to_ref: str | None = None
    interactive: Interactive = False
    dry_run: bool = False
    date: str | None = None


def should_edit(interactive: Interactive, scope: ChangelogScope) -> bool:
    """Whether the interactive setting asks for editing at this scope."""
    if interactive is True or interactive == "all":
        return True
    return interactive == ("workspace" if scope == "workspace" else "projects")


def edit_interactively(text: str, label: str) -> str:
    """Open $VISUAL/$EDITOR on the text and return the edited result.

    Closing the editor without saving keeps the generated text.

    Raises:
        InteractiveEditFailure: If the editor could not be run.
    """
    print(f"  Opening editor for {label} changelog...")
    try:
        edited = click.edit(text, extension=".md", require_save=True)
    except (click.ClickException, OSError) as e:
        raise InteractiveEditFailure(f"Interactive editing failed: {e}", stage="changelog") from e
    return text if edited is None else edited


def _maybe_edit(text: str, options: ChangelogOptions, scope: ChangelogScope, label: str) -> tuple[str, bool]:
    if not should_edit(options.interactive, scope):
        return text, False
    try:
        edited = edit_interactively(text, label)
    except InteractiveEditFailure as e:
        warn(f"{e}; using the generated changelog")
        return text, False
    return edited, edited != text


def write_changelog(path: Path, text: str, *, append: bool) -> None:
    """Write (or prepend) changelog text to a file.

    Raises:
        StageIOFailure: If the file cannot be read or written.
    """
    try:
        if append and path.exists():
            content = text + "\n\n" + path.read_text()
        else:
            content = text
        path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_text(path, content)
    except OSError as e:
        raise StageIOFailure(f"Failed to write changelog {path}: {e}", stage="changelog") from e


def _compare_url(repository_url: str | None, start: str | None, tag: str) -> str | None:
    if not repository_url or not start:
        return None
    base = repository_url.rstrip("/").removesuffix(".git")
    return f"{base}/compare/{start}...{tag}"


def _finish(
    scope: ChangelogScope,
    project: str | None,
    text: str,
    commit_range: CommitRange,
    path: Path,
    options: ChangelogOptions,
) -> ChangelogResult:
    text, edited = _maybe_edit(text, options, scope, project or "workspace")
    existed = path.exists()
    if options.dry_run:
        print(f"  [dry-run] would {'update' if existed and options.append else 'write'} {path}")
    else:
        write_changelog(path, text, append=options.append)
        if existed and not options.append:
            print(f"  Replaced {path}")
        else:
            print(f"  Wrote {path}")
    return ChangelogResult(
        scope=scope,
        project=project,
        text=text,
        commit_range=commit_range,
        path=path,
        written=not options.dry_run,
        edited=edited,
    )


def generate_project_changelog(
    project: ProjectInfo,
    decision: VersionDecision,
    options: ChangelogOptions,
    *,
    vcs: Any,
    workspace_root: Path,
    dependency_versions: Mapping[str, str] | None = None,
    known_projects: Sequence[str] = (),
) -> ChangelogResult:
    """Generate and write one project's changelog entry.

    The commit range defaults to the decision's previous tag up to HEAD; the
    decision's analysed commits are reused unless the range is overridden.
    """
    start = options.from_ref or decision.previous_tag
    end = vcs.resolve_ref(options.to_ref or "HEAD")

    commits: list[CommitInfo]
    if options.from_ref or options.to_ref:
        commits = filter_commits_for_project(
            vcs.commits_since(start, to=end, paths=[project.path]),
            project.name,
            known_projects,
        )
    else:
        commits = list(decision.commits)

    versions = dependency_versions or {}
    ctx = RenderContext(
        version=decision.next_version,
        date=options.date or _date.today().isoformat(),
        repository_url=options.repository_url,
        compare_url=_compare_url(options.repository_url, start, decision.tag),
        dependencies=[(d, versions[d]) for d in decision.bumped_dependencies if d in versions],
    )
    text = render(options.preset, commits, ctx)
    path = workspace_root / project.path / options.file
    return _finish("project", project.name, text, CommitRange(start=start, end=end), path, options)


def generate_workspace_changelog(
    entries: Sequence[VersionDecision],
    options: ChangelogOptions,
    *,
    vcs: Any,
    workspace_root: Path,
) -> ChangelogResult:
    """Generate and write the workspace changelog covering every released project."""
    end = vcs.resolve_ref(options.to_ref or "HEAD")
    projects = {d.project: (d.next_version, list(d.commits)) for d in entries if d.is_release}
    text = render_workspace(
        options.preset,
        projects,
        date=options.date or _date.today().isoformat(),
        repository_url=options.repository_url,
    )
    path = workspace_root / options.file
    return _finish("workspace", None, text, CommitRange(start=options.from_ref, end=end), path, options)


def generate(
    scope: ChangelogScope,
    target: tuple[ProjectInfo, VersionDecision] | Sequence[VersionDecision],
    options: ChangelogOptions,
    *,
    vcs: Any,
    workspace_root: Path,
    **kwargs: Any,
) -> ChangelogResult:
    """Generate a changelog at project or workspace scope.

    Args:
        scope: "project" or "workspace".
        target: (project, decision) for project scope; the run's decisions
            for workspace scope.
        options: Generation options.
        vcs: Version control used to resolve the range end.
        workspace_root: Workspace root directory.
    """
    if scope == "project":
        project, decision = target
        return generate_project_changelog(
            project, decision, options, vcs=vcs, workspace_root=workspace_root, **kwargs
        )
    return generate_workspace_changelog(target, options, vcs=vcs, workspace_root=workspace_root)
