"""Release pipeline: select → resolve → propagate → per-project stages.

This module orchestrates a release across the workspace:
1. Select the projects taking part (include/exclude patterns, groups,
   config exclusions, optionally only those changed since a ref)
2. Resolve each project's current and next version
3. Propagate bumps to dependents and across fixed release groups
4. Generate the workspace changelog
5. For each project, in dependency order, run the stages:
   version → changelog → artifact → publish → tag

A failing stage stops that project's pipeline (its later stages are
skipped and its uncommitted file edits are restored) but never the other
projects. Only a dependency cycle or an invalid configuration aborts the
whole run. In dry-run mode every decision is computed and reported, but
nothing is written, tagged or published.
"""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from fnmatch import fnmatchcase
from pathlib import Path

import httpx
from pydantic import BaseModel, Field

from .archives import get_encoder
from .artifact import PackOptions, pack, render_template, template_variables
from .changelog import ChangelogOptions, Interactive, generate
from .ci import is_ci
from .config import ChangelogConfig, ReleaseAs, ResolvedProjectConfig
from .errors import ConfigError, ReleaseError, StageIOFailure, UnresolvableVersion
from .graph import dependents_closure, topo_sort
from .manifests import write_version
from .models import STAGES, PipelineRun, RunError, StageName, StageStatus, VersionDecision
from .propagate import PropagationPolicy, propagate
from .publish import RegistryFactory, publish_project
from .registry import create_registry
from .resolver import build_source_chain, resolve_version, tag_glob
from .shell import step, warn
from .vcs import Git
from .workspace import Workspace

# Files at the workspace root whose change affects every project
ROOT_FILES = {"pyproject.toml", "uv.lock"}

# Errors a stage may raise that are scoped to the project
STAGE_ERRORS = (ReleaseError, OSError, ValueError, subprocess.CalledProcessError, httpx.HTTPError)


class ReleaseOptions(BaseModel):
    """Invocation options for one release run.

    Attributes:
        dry_run: Compute everything, persist nothing.
        release_as: Bump kind forced on every changed project.
        preid: Prerelease identifier for prerelease bumps.
        version: Exact next version for every changed project.
        include: Only projects matching one of these patterns.
        exclude: Drop projects matching one of these patterns.
        groups: Only projects in one of these release groups.
        only_changed: Only infer bumps for projects changed since `since`
            (or `base`, or each project's last tag) and their dependents.
        base: Base branch/ref for change detection.
        since: Commit for change detection; wins over base.
        interactive: Open an editor on generated changelogs.
        strict: Treat skipped projects as a failed run.
        ci_only: Refuse non-dry runs outside CI. None uses the config.
    """

    dry_run: bool = False
    release_as: ReleaseAs | None = None
    preid: str | None = None
    version: str | None = None
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)
    only_changed: bool = False
    base: str | None = None
    since: str | None = None
    interactive: Interactive = False
    strict: bool = False
    ci_only: bool | None = None


def _matches(name: str, patterns: list[str]) -> bool:
    return any(fnmatchcase(name, p) for p in patterns)


def select_projects(workspace: Workspace, options: ReleaseOptions) -> list[str]:
    """Apply include/exclude patterns, config exclusions and group filters.

    Returns:
        Sorted names of the selected projects.
    """
    unknown = set(options.groups) - set(workspace.config.groups)
    if unknown:
        raise ConfigError(f"Unknown release group(s): {', '.join(sorted(unknown))}")

    selected: list[str] = []
    for name in sorted(workspace.projects):
        config = workspace.resolved[name]
        if config.excluded:
            continue
        if options.include and not _matches(name, options.include):
            continue
        if options.exclude and _matches(name, options.exclude):
            continue
        if options.groups and config.release_group not in options.groups:
            continue
        selected.append(name)
    return selected


def detect_changes(
    workspace: Workspace, names: list[str], vcs, *, since: str | None = None
) -> set[str]:
    """Determine which selected projects changed.

    A project is changed if:
    1. It has no previous tag (first release), or
    2. Any file in its directory changed since `since` (or its last tag), or
    3. The root pyproject.toml or uv.lock changed since then, or
    4. Any of its dependencies changed (transitively).

    Returns:
        Set of changed project names (a subset of names).
    """
    step("Detecting changes")

    dirty: set[str] = set()
    for name in names:
        info = workspace.projects[name]
        ref = since or vcs.latest_tag_matching(tag_glob(workspace.resolved[name]))
        if not ref:
            dirty.add(name)
            print(f"  {name}: new project")
            continue

        changed_files = vcs.changed_files_since(ref)
        prefix = info.path.rstrip("/") + "/"
        if any(f.startswith(prefix) for f in changed_files):
            dirty.add(name)
            print(f"  {name}: changed since {ref}")
        elif changed_files & ROOT_FILES:
            dirty.add(name)
            print(f"  {name}: root config changed since {ref}")

    closure = dependents_closure(workspace.graph, dirty) & set(names)
    for name in sorted(closure - dirty):
        print(f"  {name}: dirty (depends on a changed project)")
    return closure


def _fail(run: PipelineRun, project: str, stage: StageName, error: BaseException) -> None:
    outcome = run.outcome(project, stage)
    outcome.status = "failed"
    outcome.error = str(error)
    outcome.error_type = type(error).__name__
    warn(f"{project} {stage} failed: {error}")


def _skip_rest(run: PipelineRun, project: str, detail: str) -> None:
    for outcome in run.outcomes[project].values():
        if outcome.status == "pending":
            outcome.status = "skipped"
            outcome.detail = detail


def plan_release(
    workspace: Workspace,
    options: ReleaseOptions,
    *,
    vcs=None,
    registry_factory: RegistryFactory = create_registry,
) -> PipelineRun:
    """Select projects and compute their propagated version decisions.

    Nothing is written. Projects whose version could not be resolved have
    their version stage marked failed (or skipped when they were not
    changed and so would not release anyway).

    Raises:
        CyclicDependency: If the dependency graph has a cycle.
        ConfigError: If an option names an unknown release group.
    """
    vcs = vcs or Git(workspace.root, dry_run=options.dry_run)
    order = topo_sort(workspace.graph)

    step("Selecting projects")
    selected = select_projects(workspace, options)
    if not selected:
        print("  No projects selected")
    run = PipelineRun(dry_run=options.dry_run)
    for name in order:
        if name in selected:
            run.add_project(name)
            print(f"  {name} ({workspace.projects[name].path})")

    if options.only_changed:
        changed = detect_changes(workspace, selected, vcs, since=options.since or options.base)
    else:
        changed = set(selected)

    step("Resolving versions")
    decisions: dict[str, VersionDecision] = {}
    for name in run.projects:
        info = workspace.projects[name]
        config = workspace.resolved[name]
        is_candidate = name in changed
        sources = dict(
            project_dir=workspace.root / info.path,
            config=config,
            vcs=vcs,
            registry_client=(lambda c=config: registry_factory(c.registry)),
        )
        fallback = list(config.fallback_sources)
        if config.first_release and "initial" not in fallback:
            fallback.append("initial")
        try:
            decision = resolve_version(
                info,
                config,
                build_source_chain(config.version_sources, **sources),
                build_source_chain(fallback, **sources),
                vcs=vcs,
                release_as=options.release_as if is_candidate else None,
                preid=options.preid,
                explicit_version=options.version if is_candidate else None,
                infer=is_candidate,
                known_projects=list(workspace.projects),
            )
        except UnresolvableVersion as e:
            if is_candidate:
                _fail(run, name, "version", e)
            else:
                print(f"  {name}: no version, unchanged")
            _skip_rest(run, name, "version unresolved")
            continue
        except STAGE_ERRORS as e:
            _fail(run, name, "version", e)
            _skip_rest(run, name, "version failed")
            continue
        decisions[name] = decision

    step("Propagating bumps")
    policy = PropagationPolicy.from_configs({n: workspace.resolved[n] for n in decisions})
    for decision in propagate(decisions, workspace.graph, policy):
        run.decisions[decision.project] = decision
        print_decision(decision)
    return run


def print_decision(decision: VersionDecision) -> None:
    if not decision.is_release:
        print(f"  {decision.project}: {decision.current_version} (no release)")
        return
    why = decision.bump
    if decision.dependency_bump:
        why = f"patch, dependency bump: {', '.join(decision.bumped_dependencies)}"
    elif decision.synced:
        why = f"synced with group {decision.release_group or '<workspace>'}"
    print(f"  {decision.project}: {decision.current_version} → {decision.next_version} ({why}) [{decision.tag}]")


class FileBackup:
    """Original contents of the files a release edits, so they can be put back.

    A file that did not exist is remembered as None and removed on restore.
    Only the first `remember` of a path counts.
    """

    def __init__(self) -> None:
        self.originals: dict[Path, bytes | None] = {}

    def remember(self, path: Path) -> None:
        if path not in self.originals:
            self.originals[path] = path.read_bytes() if path.exists() else None

    def forget(self) -> None:
        self.originals.clear()

    def restore(self, root: Path) -> None:
        for path, data in self.originals.items():
            try:
                if data is None:
                    path.unlink(missing_ok=True)
                else:
                    path.write_bytes(data)
            except OSError as e:
                warn(f"Could not restore {path.relative_to(root)}: {e}")
                continue
            print(f"  Restored {path.relative_to(root)}")
        self.originals.clear()


class _ProjectContext:
    """What the stages of one project share."""

    def __init__(self, run: PipelineRun, workspace: Workspace, name: str) -> None:
        self.run = run
        self.workspace = workspace
        self.name = name
        self.info = workspace.projects[name]
        self.config: ResolvedProjectConfig = workspace.resolved[name]
        self.decision = run.decisions[name]
        self.project_dir = workspace.root / self.info.path
        self.written: list[Path] = []
        self.backup = FileBackup()


StageResult = tuple[StageStatus, str | None]


def _stage_version(ctx: _ProjectContext, options: ReleaseOptions, vcs) -> StageResult:
    decision = ctx.decision
    pins: dict[str, str] = {}
    if ctx.config.pin_dependencies:
        pins = {
            dep: ctx.run.decisions[dep].next_version
            for dep in ctx.info.deps
            if dep in ctx.run.decisions and ctx.run.decisions[dep].is_release
        }
    files = [ctx.project_dir / f for f in ctx.config.version_files if (ctx.project_dir / f).exists()]
    if not files:
        warn(f"{ctx.name}: no version file found; the version is recorded by the tag only")
    for path in files:
        if options.dry_run:
            print(f"  [dry-run] would set {path.relative_to(ctx.workspace.root)} to {decision.next_version}")
            continue
        ctx.backup.remember(path)
        write_version(
            path,
            decision.next_version,
            version_path=ctx.config.version_path,
            internal_dep_versions=pins,
        )
        ctx.written.append(path)
        print(f"  {path.relative_to(ctx.workspace.root)}: {decision.current_version} → {decision.next_version}")
    return "succeeded", f"{decision.current_version} → {decision.next_version}"


def _stage_changelog(ctx: _ProjectContext, options: ReleaseOptions, vcs) -> StageResult:
    changelog = ctx.config.changelog
    if not changelog.enabled:
        return "skipped", "changelog disabled"
    if not options.dry_run:
        ctx.backup.remember(ctx.project_dir / changelog.file)
    result = generate(
        "project",
        (ctx.info, ctx.decision),
        ChangelogOptions(
            preset=changelog.preset,
            file=changelog.file,
            append=changelog.append,
            repository_url=changelog.repository_url,
            interactive=options.interactive,
            dry_run=options.dry_run,
        ),
        vcs=vcs,
        workspace_root=ctx.workspace.root,
        dependency_versions={n: d.next_version for n, d in ctx.run.decisions.items()},
        known_projects=list(ctx.workspace.projects),
    )
    ctx.run.changelogs[ctx.name] = result
    if result.written:
        ctx.written.append(result.path)
    return "succeeded", str(result.path)


def _stage_artifact(ctx: _ProjectContext, options: ReleaseOptions, vcs) -> StageResult:
    artifact = ctx.config.artifact
    if artifact is None:
        return "skipped", "no artifact configured"
    pack_options = PackOptions(
        project=ctx.name,
        version=ctx.decision.next_version,
        output_dir=artifact.output_dir,
        name=artifact.name,
        workspace_root=ctx.workspace.root,
        hash=vcs.current_short_hash(),
        strip_prefix=artifact.strip_prefix,
        compression_level=artifact.compression_level,
        preserve_permissions=artifact.preserve_permissions,
        metadata=artifact.metadata,
        dry_run=options.dry_run,
    )
    variables = template_variables(pack_options, artifact.format, get_encoder(artifact.format).extension)
    source_root = ctx.project_dir / render_template(artifact.source_dir, variables)
    result = pack(source_root, artifact.include, artifact.exclude, artifact.format, pack_options)
    ctx.run.artifacts[ctx.name] = result
    return "succeeded", str(result.path)


def _stage_publish(
    ctx: _ProjectContext, options: ReleaseOptions, vcs, registry_factory: RegistryFactory
) -> StageResult:
    if not ctx.config.publish:
        return "skipped", "publishing disabled"
    result = publish_project(
        ctx.decision,
        ctx.config,
        ctx.run.artifacts.get(ctx.name),
        registry_factory=registry_factory,
        dry_run=options.dry_run,
    )
    ctx.run.publishes[ctx.name] = result
    if result.skipped_existing:
        return "succeeded", f"already published: {result.target}"
    return "succeeded", result.target


def _stage_tag(
    ctx: _ProjectContext,
    options: ReleaseOptions,
    vcs,
    created_tags: set[str],
    shared_files: list[Path],
) -> StageResult:
    git_config = ctx.workspace.config.git
    if not (git_config.commit or git_config.tag):
        return "skipped", "git commit and tag disabled"
    values = {"projectName": ctx.name, "version": ctx.decision.next_version}
    tag = ctx.decision.tag
    if options.dry_run:
        actions = [a for a, on in (("commit", git_config.commit), (f"tag {tag}", git_config.tag)) if on]
        print(f"  [dry-run] would {' and '.join(actions)}")
        return "succeeded", tag
    if git_config.tag and tag not in created_tags and vcs.tag_exists(tag):
        raise StageIOFailure(f"Tag {tag} already exists", project=ctx.name, stage="tag")
    if git_config.commit:
        paths = [p.relative_to(ctx.workspace.root).as_posix() for p in [*ctx.written, *shared_files]]
        vcs.commit(git_config.commit_message.format_map(values), paths)
        # committed edits are no longer rolled back
        ctx.backup.forget()
        shared_files.clear()
    if git_config.tag:
        if tag in created_tags:
            return "succeeded", f"{tag} (shared)"
        vcs.create_tag(tag, git_config.tag_message.format_map(values))
        created_tags.add(tag)
        print(f"  {tag}")
        if git_config.push:
            vcs.push(git_config.remote, tags=[tag])
    return "succeeded", tag


def _workspace_changelog(
    run: PipelineRun, workspace: Workspace, options: ReleaseOptions, vcs, backup: FileBackup
) -> None:
    released = [d for d in run.decisions.values() if d.is_release]
    if not workspace.config.workspace_changelog or not released:
        return
    step("Workspace changelog")
    changelog = workspace.config.changelog or ChangelogConfig()
    try:
        if not options.dry_run:
            backup.remember(workspace.root / changelog.file)
        run.workspace_changelog = generate(
            "workspace",
            released,
            ChangelogOptions(
                preset=changelog.preset,
                file=changelog.file,
                append=changelog.append,
                repository_url=changelog.repository_url,
                interactive=options.interactive,
                dry_run=options.dry_run,
            ),
            vcs=vcs,
            workspace_root=workspace.root,
        )
    except STAGE_ERRORS as e:
        run.errors.append(RunError(scope="workspace-changelog", error=str(e), error_type=type(e).__name__))
        warn(f"workspace changelog failed: {e}")


def run_release(
    workspace: Workspace,
    options: ReleaseOptions,
    *,
    vcs=None,
    registry_factory: RegistryFactory = create_registry,
) -> PipelineRun:
    """Execute the full release pipeline.

    Args:
        workspace: Discovered workspace snapshot.
        options: Invocation options.
        vcs: Version control; a Git on the workspace root by default.
        registry_factory: Builds registry clients from registry configs.

    Returns:
        The PipelineRun with every decision, result and stage outcome.

    Raises:
        CyclicDependency: If the dependency graph has a cycle.
        ConfigError: If the run is refused (ci-only outside CI) or an option
            is invalid. Raised before any stage executes.
    """
    ci_only = options.ci_only if options.ci_only is not None else workspace.config.ci_only
    if ci_only and not options.dry_run and not is_ci():
        raise ConfigError("Releases are restricted to CI (ci-only); use --dry-run to preview locally")

    vcs = vcs or Git(workspace.root, dry_run=options.dry_run)
    run = plan_release(workspace, options, vcs=vcs, registry_factory=registry_factory)

    root_backup = FileBackup()
    _workspace_changelog(run, workspace, options, vcs, root_backup)
    # workspace-level files ride along with the first project commit
    shared_files: list[Path] = []
    if run.workspace_changelog is not None and run.workspace_changelog.written:
        shared_files.append(run.workspace_changelog.path)

    created_tags: set[str] = set()
    stages: dict[StageName, Callable[[_ProjectContext], StageResult]] = {
        "version": lambda ctx: _stage_version(ctx, options, vcs),
        "changelog": lambda ctx: _stage_changelog(ctx, options, vcs),
        "artifact": lambda ctx: _stage_artifact(ctx, options, vcs),
        "publish": lambda ctx: _stage_publish(ctx, options, vcs, registry_factory),
        "tag": lambda ctx: _stage_tag(ctx, options, vcs, created_tags, shared_files),
    }

    for name in run.projects:
        decision = run.decisions.get(name)
        if decision is None:
            continue
        if not decision.is_release:
            _skip_rest(run, name, "no changes")
            continue

        step(f"Releasing {name} {decision.next_version}")
        ctx = _ProjectContext(run, workspace, name)
        for stage in STAGES:
            outcome = run.outcome(name, stage)
            try:
                outcome.status, outcome.detail = stages[stage](ctx)
            except STAGE_ERRORS as e:
                _fail(run, name, stage, e)
                _skip_rest(run, name, f"{stage} failed")
                ctx.backup.restore(workspace.root)
                break

    if shared_files and not run.succeeded():
        # nothing was released, so the workspace changelog describes nothing
        root_backup.restore(workspace.root)

    print_summary(run)
    return run


def print_summary(run: PipelineRun) -> None:
    step("Summary" + (" (dry run)" if run.dry_run else ""))
    for name in run.projects:
        status = run.project_status(name)
        decision = run.decisions.get(name)
        version = f" {decision.next_version}" if decision and decision.is_release else ""
        line = f"  {name}{version}: {status}"
        if status == "failed":
            failed = next(o for o in run.outcomes[name].values() if o.status == "failed")
            line += f" at {failed.stage} ({failed.error_type}: {failed.error})"
        print(line)
    for error in run.errors:
        print(f"  {error.scope}: failed ({error.error_type}: {error.error})")
