"""CLI entry point for mono-release."""

from __future__ import annotations

import json
from pathlib import Path

import click

from mono_release.config import ResolvedProjectConfig
from mono_release.errors import ReleaseError
from mono_release.graph import topo_sort
from mono_release.models import PipelineRun
from mono_release.pipeline import ReleaseOptions, plan_release, run_release
from mono_release.resolver import render_tag_name, tag_glob
from mono_release.shell import step, warn
from mono_release.workspace import Workspace, discover_workspace, print_workspace

INTERACTIVE_CHOICES = ["true", "all", "workspace", "projects"]


def release_options(func):
    """Options shared by `plan` and `run`."""
    options = [
        click.option("--release-as", type=click.Choice(["major", "minor", "patch", "prerelease"]),
                     help="Force this bump kind on every changed project."),
        click.option("--preid", help="Prerelease identifier (e.g. rc, beta)."),
        click.option("--version", "explicit_version", metavar="VERSION",
                     help="Release every changed project at exactly this version."),
        click.option("--include", multiple=True, metavar="PATTERN",
                     help="Only projects matching this glob (repeatable)."),
        click.option("--exclude", multiple=True, metavar="PATTERN",
                     help="Skip projects matching this glob (repeatable)."),
        click.option("--group", "groups", multiple=True, metavar="NAME",
                     help="Only projects in this release group (repeatable)."),
        click.option("--only-changed", is_flag=True,
                     help="Only bump projects changed since --since/--base or their last tag."),
        click.option("--base", metavar="REF", help="Base branch for change detection."),
        click.option("--since", metavar="SHA", help="Commit for change detection (wins over --base)."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _options(**kwargs) -> ReleaseOptions:
    interactive = kwargs.pop("interactive", None)
    return ReleaseOptions(
        release_as=kwargs["release_as"],
        preid=kwargs["preid"],
        version=kwargs["explicit_version"],
        include=list(kwargs["include"]),
        exclude=list(kwargs["exclude"]),
        groups=list(kwargs["groups"]),
        only_changed=kwargs["only_changed"],
        base=kwargs["base"],
        since=kwargs["since"],
        dry_run=kwargs.get("dry_run", True),
        strict=kwargs.get("strict", False),
        interactive=True if interactive == "true" else (interactive or False),
    )


def _load(root: Path) -> Workspace:
    step("Discovering workspace projects")
    try:
        workspace = discover_workspace(root)
    except ReleaseError as e:
        raise click.ClickException(str(e)) from e
    print_workspace(workspace)
    return workspace


def _write_output(output_path: str, name: str, value: str) -> None:
    with open(output_path, "a") as fh:
        fh.write(f"{name}={value}\n")


@click.group()
@click.version_option(package_name="mono-release")
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Workspace root (contains the root pyproject.toml).",
)
@click.pass_context
def cli(ctx: click.Context, root: Path) -> None:
    """Monorepo release orchestrator: version, changelog, pack, publish."""
    ctx.obj = root


@cli.command()
@release_options
@click.option(
    "--github-output",
    type=click.Path(dir_okay=False),
    envvar="GITHUB_OUTPUT",
    help="Append the plan as GitHub Actions step outputs to this file.",
)
@click.pass_obj
def plan(root: Path, github_output: str | None, **kwargs) -> None:
    """Resolve and print the release plan without changing anything."""
    workspace = _load(root)
    try:
        run = plan_release(workspace, _options(**kwargs))
    except ReleaseError as e:
        raise click.ClickException(str(e)) from e

    releases = {
        name: d.next_version for name, d in run.decisions.items() if d.is_release
    }
    if not releases:
        click.echo("\nNothing to release.")
    if github_output:
        _write_output(github_output, "releases", json.dumps(releases))
        _write_output(github_output, "projects", json.dumps(sorted(releases)))
        tags = sorted({run.decisions[n].tag for n in releases})
        _write_output(github_output, "tags", json.dumps(tags))
        _write_output(github_output, "has_releases", json.dumps(bool(releases)))
    if run.failed():
        raise SystemExit(1)


@cli.command(name="run")
@release_options
@click.option("--dry-run", is_flag=True, help="Compute and report everything, change nothing.")
@click.option(
    "--interactive",
    type=click.Choice(INTERACTIVE_CHOICES),
    is_flag=False,
    flag_value="all",
    default=None,
    help="Edit generated changelogs in $EDITOR (all, workspace or projects).",
)
@click.option("--strict", is_flag=True, help="Exit non-zero when any project was skipped.")
@click.pass_obj
def run_command(root: Path, **kwargs) -> None:
    """Run the release pipeline (usually called from CI)."""
    workspace = _load(root)
    try:
        run = run_release(workspace, _options(**kwargs))
    except ReleaseError as e:
        raise click.ClickException(str(e)) from e
    code = exit_code(run, strict=kwargs["strict"])
    if code:
        raise SystemExit(code)


def _describe(config: ResolvedProjectConfig) -> list[str]:
    registry = "-"
    if config.registry:
        registry = f"{config.registry.type} ({config.registry.url or 'default'})"
    changelog = "disabled"
    if config.changelog.enabled:
        changelog = f"{config.changelog.file} ({config.changelog.preset})"
    return [
        f"release group: {config.release_group or '-'} ({config.relationship})",
        f"excluded: {'yes' if config.excluded else 'no'}",
        f"tags: {tag_glob(config)}",
        f"version files: {', '.join(config.version_files) or '-'}",
        f"version sources: {' → '.join(config.version_sources + config.fallback_sources) or '-'}",
        f"registry: {registry}",
        f"changelog: {changelog}",
        f"artifact: {config.artifact.format if config.artifact else '-'}",
        f"publish: {'yes' if config.publish else 'no'}",
    ]


@cli.command()
@click.option("--project", "project_name", metavar="NAME", help="Only validate this project.")
@click.pass_obj
def validate(root: Path, project_name: str | None) -> None:
    """Check the release configuration and show what each project resolves to.

    Exits non-zero when the configuration cannot be loaded, the dependency
    graph has a cycle or a tag template is invalid. Other findings are
    printed as warnings.
    """
    workspace = _load(root)
    names = sorted(workspace.projects)
    if project_name is not None:
        if project_name not in workspace.projects:
            raise click.ClickException(f"Unknown project: {project_name}")
        names = [project_name]

    try:
        topo_sort(workspace.graph)
        for name in names:
            render_tag_name(workspace.resolved[name], "0.0.0")
    except ReleaseError as e:
        raise click.ClickException(str(e)) from e

    warnings = 0
    for name in names:
        config = workspace.resolved[name]
        step(f"Project {name}")
        for line in _describe(config):
            click.echo(f"  {line}")
        project_dir = workspace.root / workspace.projects[name].path
        if not config.excluded and not any((project_dir / f).exists() for f in config.version_files):
            warn(f"{name}: none of the version files exist; the version is recorded by the tag only")
            warnings += 1
        if config.publish and config.registry is None and not config.excluded:
            warn(f"{name}: publishing is enabled but no registry is configured")
            warnings += 1

    if warnings:
        click.echo(f"\nConfiguration is valid, with {warnings} warning(s).")
    else:
        click.echo("\nConfiguration is valid.")


def exit_code(run: PipelineRun, *, strict: bool = False) -> int:
    """0 on success; 1 if any project failed (or, with strict, was skipped)."""
    if not run.success or run.errors:
        return 1
    if strict and run.skipped():
        return 1
    return 0
