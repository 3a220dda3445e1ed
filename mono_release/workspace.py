"""Workspace discovery.

Reads [tool.uv.workspace].members from the root pyproject.toml to find
project directories, then extracts name, version, internal deps and the
project's own [tool.mono-release] table from each project's pyproject.toml.
The result is loaded once per invocation and never modified.
"""

from __future__ import annotations

import glob
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import (
    GlobalReleaseConfig,
    ProjectReleaseConfig,
    ResolvedProjectConfig,
    resolve_project_config,
)
from .deps import dep_canonical_name
from .errors import ConfigError
from .models import ProjectInfo
from .toml import (
    get_all_dependency_strings,
    get_project_name,
    get_project_version,
    get_tool_table,
    get_workspace_member_globs,
    load_pyproject,
)


def _validate(model: type, data: dict, where: str):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid [tool.mono-release] in {where}:\n{e}") from e


class Workspace(BaseModel):
    """An immutable snapshot of the workspace for one run.

    Attributes:
        root: Absolute workspace root.
        projects: Map of project name → ProjectInfo.
        config: Global release configuration.
        resolved: Map of project name → resolved configuration.
    """

    model_config = ConfigDict(frozen=True)

    root: Path
    projects: dict[str, ProjectInfo]
    config: GlobalReleaseConfig = Field(default_factory=GlobalReleaseConfig)
    resolved: dict[str, ResolvedProjectConfig] = Field(default_factory=dict)

    @classmethod
    def build(
        cls, root: Path, projects: dict[str, ProjectInfo], config: GlobalReleaseConfig
    ) -> Workspace:
        """Validate group membership and resolve every project's config."""
        config.check_membership({n: p.config for n, p in projects.items()})
        resolved = {
            name: resolve_project_config(name, info.config, config)
            for name, info in projects.items()
        }
        return cls(root=root, projects=projects, config=config, resolved=resolved)

    @property
    def graph(self) -> dict[str, list[str]]:
        return {name: list(info.deps) for name, info in self.projects.items()}


def discover_workspace(root: Path) -> Workspace:
    """Scan the workspace and discover all projects.

    Raises:
        ConfigError: If the workspace or any project configuration is invalid.
    """
    root = root.resolve()
    root_doc = load_pyproject(root / "pyproject.toml")
    global_config = _validate(
        GlobalReleaseConfig, get_tool_table(root_doc), "pyproject.toml"
    )

    member_dirs: list[Path] = []
    for pattern in get_workspace_member_globs(root_doc):
        for match in sorted(glob.glob(pattern, root_dir=root)):
            p = root / match
            if (p / "pyproject.toml").exists():
                member_dirs.append(p)

    if not member_dirs:
        raise ConfigError("No projects found matching workspace members")

    # First pass: collect basic info from each project
    projects: dict[str, ProjectInfo] = {}
    raw_deps: dict[str, list[str]] = {}

    for d in member_dirs:
        rel = d.relative_to(root).as_posix()
        doc = load_pyproject(d / "pyproject.toml")
        name = get_project_name(doc, d.name)
        if name in projects:
            raise ConfigError(
                f"Duplicate project name '{name}' ({projects[name].path} and {rel})"
            )
        projects[name] = ProjectInfo(
            name=name,
            path=rel,
            version=get_project_version(doc),
            config=_validate(
                ProjectReleaseConfig, get_tool_table(doc), f"{rel}/pyproject.toml"
            ),
        )
        raw_deps[name] = get_all_dependency_strings(doc)

    # Second pass: keep only internal deps
    for name, deps in raw_deps.items():
        seen: set[str] = set()
        for dep_str in deps:
            dep_name = dep_canonical_name(dep_str)
            if dep_name in projects and dep_name != name and dep_name not in seen:
                projects[name].deps.append(dep_name)
                seen.add(dep_name)

    return Workspace.build(root, projects, global_config)


def print_workspace(workspace: Workspace) -> None:
    for name, info in workspace.projects.items():
        deps = f" → [{', '.join(info.deps)}]" if info.deps else ""
        version = info.version or "<no version>"
        print(f"  {name} {version} ({info.path}){deps}")
