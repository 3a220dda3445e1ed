"""Markdown changelog rendering.

Turns parsed commits into changelog markdown. Three presets are built in:

- ``angular``: one section per commit type, breaking changes first
- ``conventionalcommits``: like angular, but only user-facing types
  (features, fixes, performance, reverts)
- ``compact``: a single summary line ("1 breaking, 2 features, 3 fixes")

Additional presets can be added with register_preset().
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

from pydantic import BaseModel, Field

from .errors import ConfigError
from .models import CommitInfo

TYPE_TITLES: dict[str, str] = {
    "feat": "Features",
    "fix": "Bug Fixes",
    "docs": "Documentation",
    "style": "Styles",
    "refactor": "Code Refactoring",
    "perf": "Performance Improvements",
    "test": "Tests",
    "build": "Build System",
    "ci": "Continuous Integration",
    "chore": "Chores",
    "revert": "Reverts",
}

TYPE_ORDER: list[str] = [
    "feat",
    "fix",
    "perf",
    "refactor",
    "docs",
    "style",
    "test",
    "build",
    "ci",
    "chore",
    "revert",
]

OTHER_TYPE = "other"
NO_CHANGES = "### No changes\n"


class RenderContext(BaseModel):
    """Everything a preset may use besides the commits.

    Attributes:
        version: Version being released; adds a heading when set.
        date: Release date (YYYY-MM-DD).
        repository_url: Base URL for commit links.
        compare_url: Link target for the version heading.
        dependencies: (name, new version) of bumped internal dependencies.
        heading_level: Markdown level of the version heading.
    """

    version: str | None = None
    date: str | None = None
    repository_url: str | None = None
    compare_url: str | None = None
    dependencies: list[tuple[str, str]] = Field(default_factory=list)
    heading_level: int = 2


Preset = Callable[[Sequence[CommitInfo], RenderContext], str]

_PRESETS: dict[str, Preset] = {}


def register_preset(name: str, preset: Preset) -> None:
    """Register a changelog preset under a name (replacing any existing one)."""
    _PRESETS[name] = preset


def available_presets() -> list[str]:
    return sorted(_PRESETS)


def type_title(commit_type: str) -> str:
    if commit_type == OTHER_TYPE:
        return "Other Changes"
    return TYPE_TITLES.get(commit_type, commit_type[:1].upper() + commit_type[1:])


def commit_link(commit: CommitInfo, repository_url: str | None) -> str:
    """Short sha, linked to the commit page when a repository URL is known.

    Example:
        commit_link(c, "https://github.com/o/r.git")
        → "[abc1234](https://github.com/o/r/commit/abc1234...)"
    """
    if not repository_url:
        return commit.short_sha
    base = repository_url.rstrip("/").removesuffix(".git")
    return f"[{commit.short_sha}]({base}/commit/{commit.sha})"


def _entry(commit: CommitInfo, text: str, ctx: RenderContext) -> str:
    scope = f"**{commit.scope}:** " if commit.scope else ""
    return f"* {scope}{text} ({commit_link(commit, ctx.repository_url)})\n"


def _heading(ctx: RenderContext) -> str:
    if not ctx.version:
        return ""
    marks = "#" * ctx.heading_level
    title = f"[{ctx.version}]({ctx.compare_url})" if ctx.compare_url else ctx.version
    date = f" ({ctx.date})" if ctx.date else ""
    return f"{marks} {title}{date}\n\n"


def _sections(
    commits: Sequence[CommitInfo], ctx: RenderContext, types: Iterable[str] | None
) -> str:
    allowed = set(types) if types is not None else None
    sub = "#" * (ctx.heading_level + 1)
    out = ""

    breaking = [c for c in commits if c.breaking]
    if breaking:
        out += f"{sub} ⚠ BREAKING CHANGES\n\n"
        for commit in breaking:
            out += _entry(commit, commit.breaking_message or commit.subject, ctx)
        out += "\n"

    grouped: dict[str, list[CommitInfo]] = {}
    for commit in commits:
        if commit.breaking:
            continue
        kind = commit.type or OTHER_TYPE
        if allowed is not None and kind not in allowed:
            continue
        grouped.setdefault(kind, []).append(commit)

    ordered = [t for t in TYPE_ORDER if t in grouped]
    ordered += sorted(t for t in grouped if t not in TYPE_ORDER and t != OTHER_TYPE)
    if OTHER_TYPE in grouped:
        ordered.append(OTHER_TYPE)

    for kind in ordered:
        out += f"{sub} {type_title(kind)}\n\n"
        for commit in grouped[kind]:
            out += _entry(commit, commit.subject, ctx)
        out += "\n"

    if ctx.dependencies:
        out += f"{sub} Dependencies\n\n"
        for name, version in ctx.dependencies:
            out += f"* **{name}:** upgraded to {version}\n"
        out += "\n"

    return out


def angular(commits: Sequence[CommitInfo], ctx: RenderContext) -> str:
    body = _sections(commits, ctx, None)
    return _heading(ctx) + (body or NO_CHANGES)


def conventionalcommits(commits: Sequence[CommitInfo], ctx: RenderContext) -> str:
    body = _sections(commits, ctx, ("feat", "fix", "perf", "revert"))
    return _heading(ctx) + (body or NO_CHANGES)


def summarize(commits: Sequence[CommitInfo]) -> str:
    """One-line summary of a set of commits.

    Example:
        "1 breaking, 2 features, 1 fixes, 3 other"
    """
    if not commits:
        return "No changes"
    breaking = sum(1 for c in commits if c.breaking)
    features = sum(1 for c in commits if c.type == "feat" and not c.breaking)
    fixes = sum(1 for c in commits if c.type == "fix" and not c.breaking)
    other = len(commits) - breaking - features - fixes
    parts = [
        f"{n} {label}"
        for n, label in (
            (breaking, "breaking"),
            (features, "features"),
            (fixes, "fixes"),
            (other, "other"),
        )
        if n
    ]
    return ", ".join(parts)


def compact(commits: Sequence[CommitInfo], ctx: RenderContext) -> str:
    line = summarize(commits)
    if ctx.dependencies:
        deps = ", ".join(f"{n}@{v}" for n, v in ctx.dependencies)
        line = f"{line}; dependencies: {deps}" if commits else f"dependencies: {deps}"
    return _heading(ctx) + line + "\n"


register_preset("angular", angular)
register_preset("conventionalcommits", conventionalcommits)
register_preset("compact", compact)


def render(preset: str, commits: Sequence[CommitInfo], ctx: RenderContext | None = None) -> str:
    """Render commits with a named preset.

    Raises:
        ConfigError: If the preset is unknown.
    """
    if preset not in _PRESETS:
        raise ConfigError(
            f"Unknown changelog preset '{preset}' "
            f"(available: {', '.join(available_presets())})"
        )
    return _PRESETS[preset](commits, ctx or RenderContext())


def render_workspace(
    preset: str,
    projects: dict[str, tuple[str, Sequence[CommitInfo]]],
    *,
    date: str | None = None,
    repository_url: str | None = None,
) -> str:
    """Render a workspace changelog with one section per released project.

    Commits without a scope (or with scope ``*``) are additionally listed
    once under "Global Changes".

    Args:
        preset: Preset used for each section.
        projects: Map of project name → (next version, commits).
        date: Release date for the top heading.
        repository_url: Base URL for commit links.
    """
    out = f"# {date}\n\n" if date else ""
    if not projects:
        return out + NO_CHANGES

    for name in sorted(projects):
        version, commits = projects[name]
        out += f"## {name} {version}\n\n"
        out += render(preset, commits, RenderContext(repository_url=repository_url, heading_level=2))
        if not out.endswith("\n\n"):
            out += "\n"

    seen: set[str] = set()
    global_commits: list[CommitInfo] = []
    for name in sorted(projects):
        for commit in projects[name][1]:
            if (not commit.scope or commit.scope == "*") and commit.sha not in seen:
                seen.add(commit.sha)
                global_commits.append(commit)
    if global_commits:
        out += "## Global Changes\n\n"
        out += render(preset, global_commits, RenderContext(repository_url=repository_url, heading_level=2))

    return out.rstrip("\n") + "\n"
