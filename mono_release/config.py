"""Release configuration models and layered override resolution.

Configuration is read from ``[tool.mono-release]`` tables (workspace root
for global settings and release groups, each member's pyproject.toml for
per-project settings) and validated once at load time. Every stage consumes
a single ResolvedProjectConfig computed by resolve_project_config(), where
the most specific layer wins:

    per-project > release group > global > built-in default

Nested tables (registry, changelog, tag-naming) are merged key by key, so a
project can override just ``dist-tag`` of the global registry.
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigError

Relationship = Literal["independent", "fixed"]
ReleaseAs = Literal["major", "minor", "patch", "prerelease"]
SourceName = Literal["manifest", "git-tag", "registry", "initial"]
RegistryType = Literal["npm", "http", "command"]


def _kebab(name: str) -> str:
    return name.replace("_", "-")


class ConfigModel(BaseModel):
    """Base for TOML-backed config: kebab-case keys, unknown keys rejected."""

    model_config = ConfigDict(
        alias_generator=_kebab, populate_by_name=True, extra="forbid", frozen=True
    )


class TagNaming(ConfigModel):
    """Tag template. `format` placeholders: {projectName}, {version},
    {prefix}, {suffix}, {releaseGroupName}."""

    format: str | None = None
    prefix: str = ""
    suffix: str = ""


class RegistryConfig(ConfigModel):
    """Where and how a project is published.

    Credentials are never stored in config; `username-env`/`password-env`
    name the environment variables holding them.
    """

    type: RegistryType = "npm"
    url: str | None = None
    repository: str | None = None
    access: Literal["public", "restricted"] = "public"
    dist_tag: str = "latest"
    command: str | None = None
    metadata_url: str | None = None
    username_env: str = "MONO_RELEASE_REGISTRY_USERNAME"
    password_env: str = "MONO_RELEASE_REGISTRY_PASSWORD"
    path_strategy: Literal["version", "hash"] = "version"
    skip_existing: bool = True
    publish_dir: str | None = None


class ChangelogConfig(ConfigModel):
    enabled: bool = True
    file: str = "CHANGELOG.md"
    preset: str = "angular"
    append: bool = True
    repository_url: str | None = None


class ArtifactConfig(ConfigModel):
    """Archive spec. `source-dir` is relative to the project root,
    `output-dir` to the workspace root; both accept template variables."""

    source_dir: str = "dist"
    output_dir: str = "dist/artifacts"
    name: str = "{projectName}-{version}.{extension}"
    format: str = "tgz"
    include: list[str] = Field(default_factory=lambda: ["**/*"])
    exclude: list[str] = Field(default_factory=list)
    strip_prefix: str | None = None
    compression_level: int | None = Field(default=None, ge=0, le=9)
    preserve_permissions: bool = False
    metadata: dict[str, Any] | None = None


class GitConfig(ConfigModel):
    commit: bool = True
    tag: bool = True
    push: bool = False
    remote: str = "origin"
    commit_message: str = "chore(release): {projectName} {version}"
    tag_message: str = "{projectName} {version}"


class ReleaseSettings(ConfigModel):
    """Fields that can be set globally, per release group and per project.

    None means "not set at this layer".
    """

    relationship: Relationship | None = None
    version_files: list[str] | None = None
    version_path: str | None = None
    version_sources: list[SourceName] | None = None
    fallback_sources: list[SourceName] | None = None
    first_release: bool | None = None
    tag_naming: TagNaming | None = None
    registry: RegistryConfig | None = None
    changelog: ChangelogConfig | None = None
    track_deps: bool | None = None
    pin_dependencies: bool | None = None
    release_as: ReleaseAs | None = None
    preid: str | None = None
    publish: bool | None = None


class ReleaseGroup(ReleaseSettings):
    """A named set of projects (names or glob patterns) sharing settings."""

    projects: list[str] = Field(min_length=1)

    def matches(self, project: str) -> bool:
        return any(fnmatchcase(project, pattern) for pattern in self.projects)


class ProjectReleaseConfig(ReleaseSettings):
    """A project's own ``[tool.mono-release]`` table."""

    group: str | None = None
    exclude: bool = False
    artifact: ArtifactConfig | None = None


class GlobalReleaseConfig(ReleaseSettings):
    """Workspace-wide settings from the root ``[tool.mono-release]`` table."""

    exclude: list[str] = Field(default_factory=list)
    groups: dict[str, ReleaseGroup] = Field(default_factory=dict)
    git: GitConfig = Field(default_factory=GitConfig)
    workspace_changelog: bool = False
    ci_only: bool = False

    def is_excluded(self, project: str, project_config: ProjectReleaseConfig) -> bool:
        if project_config.exclude:
            return True
        return any(fnmatchcase(project, pattern) for pattern in self.exclude)

    def group_for(
        self, project: str, project_config: ProjectReleaseConfig
    ) -> str | None:
        """Return the name of the release group a project belongs to.

        An explicit `group` in the project's config wins over pattern
        matching against the groups' project lists.
        """
        if project_config.group:
            if project_config.group not in self.groups:
                raise ConfigError(
                    f"Unknown release group '{project_config.group}'", project=project
                )
            return project_config.group
        for name, group in self.groups.items():
            if group.matches(project):
                return name
        return None

    def check_membership(self, projects: dict[str, ProjectReleaseConfig]) -> None:
        """Ensure every non-excluded project is in at most one release group."""
        for name, project_config in projects.items():
            if self.is_excluded(name, project_config) or project_config.group:
                continue
            matched = [g for g, group in self.groups.items() if group.matches(name)]
            if len(matched) > 1:
                raise ConfigError(
                    f"Project belongs to several release groups: {', '.join(matched)}",
                    project=name,
                )


class ResolvedProjectConfig(BaseModel):
    """Fully resolved configuration for one project. Consumed by all stages."""

    model_config = ConfigDict(frozen=True)

    name: str
    release_group: str | None
    excluded: bool
    relationship: Relationship
    version_files: list[str]
    version_path: str
    version_sources: list[SourceName]
    fallback_sources: list[SourceName]
    first_release: bool
    tag_naming: TagNaming
    registry: RegistryConfig | None
    changelog: ChangelogConfig
    artifact: ArtifactConfig | None
    track_deps: bool
    pin_dependencies: bool
    release_as: ReleaseAs | None
    preid: str | None
    publish: bool


DEFAULTS: dict[str, Any] = {
    "relationship": "independent",
    "version_files": ["pyproject.toml", "package.json"],
    "version_path": "version",
    "version_sources": ["manifest", "git-tag", "registry"],
    "fallback_sources": [],
    "first_release": False,
    "track_deps": True,
    "pin_dependencies": True,
    "release_as": None,
    "preid": None,
}

_NESTED: dict[str, type[ConfigModel]] = {
    "tag_naming": TagNaming,
    "registry": RegistryConfig,
    "changelog": ChangelogConfig,
}


def default_tag_format(relationship: Relationship, group: str | None) -> str:
    """Default tag template for a versioning relationship."""
    if relationship == "independent":
        return "{projectName}@{version}"
    if group:
        return "{releaseGroupName}-v{version}"
    return "v{version}"


def _merge_nested(
    cls: type[ConfigModel], layers: list[ConfigModel | None]
) -> ConfigModel | None:
    """Merge explicitly-set keys of each layer, least specific first."""
    present = [layer for layer in layers if layer is not None]
    if not present:
        return None
    data: dict[str, Any] = {}
    for layer in present:
        data.update(layer.model_dump(include=layer.model_fields_set))
    return cls(**data)


def resolve_project_config(
    name: str, project_config: ProjectReleaseConfig, global_config: GlobalReleaseConfig
) -> ResolvedProjectConfig:
    """Resolve one project's configuration across all layers."""
    group_name = global_config.group_for(name, project_config)
    group = global_config.groups.get(group_name) if group_name else None
    # most specific first
    layers: list[ReleaseSettings] = [
        layer for layer in (project_config, group, global_config) if layer is not None
    ]

    values: dict[str, Any] = {}
    for field, default in DEFAULTS.items():
        values[field] = next(
            (getattr(layer, field) for layer in layers if getattr(layer, field) is not None),
            default,
        )

    for field, cls in _NESTED.items():
        values[field] = _merge_nested(
            cls, [getattr(layer, field) for layer in reversed(layers)]
        )

    tag_naming = values["tag_naming"] or TagNaming()
    if tag_naming.format is None:
        tag_naming = tag_naming.model_copy(
            update={"format": default_tag_format(values["relationship"], group_name)}
        )

    registry = values["registry"]
    publish = next(
        (layer.publish for layer in layers if layer.publish is not None),
        registry is not None,
    )

    return ResolvedProjectConfig(
        name=name,
        release_group=group_name,
        excluded=global_config.is_excluded(name, project_config),
        tag_naming=tag_naming,
        registry=registry,
        changelog=values["changelog"] or ChangelogConfig(),
        artifact=project_config.artifact,
        publish=publish,
        **{k: values[k] for k in DEFAULTS},
    )
