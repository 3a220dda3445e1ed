"""Version resolution: current version, bump kind and next version.

The current version of a project comes from an ordered chain of version
sources. The first source that yields a parseable version wins; sources that
fail to read, fail to parse or find nothing are recorded and skipped. If the
whole chain fails, the fallback chain is tried the same way.

The bump kind is taken from an explicit override when given, otherwise
inferred from the conventional commits since the project's previous tag.
"""

from __future__ import annotations

import re
import subprocess
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any, Protocol

from .commits import filter_commits_for_project
from .config import ReleaseAs, ResolvedProjectConfig, SourceName
from .errors import ConfigError, InvalidTagName, ReleaseError, UnresolvableVersion
from .manifests import read_version
from .models import BumpKind, CommitInfo, ProjectInfo, VersionDecision
from .versions import (
    bump_kind_between,
    bump_version,
    compare_versions,
    infer_bump,
    is_valid_version,
    parse_version,
    tags_by_precedence,
)

_VERSION_TOKEN = "\x00version\x00"
_BAD_TAG_CHARS = re.compile(r"[\s~^:?*\[\\]|\.\.|@\{")


# Tag names


def render_tag_name(config: ResolvedProjectConfig, version: str) -> str:
    """Render a project's tag template for a version.

    Examples:
        "{projectName}@{version}" → "api@1.3.0"
        "{releaseGroupName}-v{version}" → "core-v2.0.0"
        "{prefix}v{version}{suffix}" with prefix="pkg/" → "pkg/v1.0.0"

    Raises:
        InvalidTagName: If the result is not a valid git tag name.
    """
    naming = config.tag_naming
    try:
        name = (naming.format or "").format(
            projectName=config.name,
            version=version,
            prefix=naming.prefix,
            suffix=naming.suffix,
            releaseGroupName=config.release_group or "",
        )
    except (KeyError, IndexError, ValueError) as e:
        raise InvalidTagName(
            f"Bad tag template '{naming.format}': {e}", project=config.name
        ) from e
    if version != _VERSION_TOKEN and version != "*":
        validate_tag_name(name, project=config.name)
    return name


def validate_tag_name(name: str, *, project: str | None = None) -> None:
    """Reject names git would refuse as a tag (see git-check-ref-format)."""
    if (
        not name
        or _BAD_TAG_CHARS.search(name)
        or name.startswith(("/", "-", "."))
        or name.endswith(("/", ".", ".lock"))
        or "//" in name
    ):
        raise InvalidTagName(f"Invalid tag name '{name}'", project=project)


def tag_glob(config: ResolvedProjectConfig) -> str:
    """Glob matching every tag of the project, for `git tag --list`."""
    return render_tag_name(config, "*")


def tag_version(config: ResolvedProjectConfig, tag: str) -> str | None:
    """Extract the version from one of the project's tags, or None."""
    template = render_tag_name(config, _VERSION_TOKEN)
    head, _, tail = template.partition(_VERSION_TOKEN)
    match = re.fullmatch(re.escape(head) + r"(?P<version>.+)" + re.escape(tail), tag)
    if not match or not is_valid_version(match["version"]):
        return None
    return match["version"]


def project_tags(vcs: Any, config: ResolvedProjectConfig) -> list[tuple[str, str]]:
    """The project's (tag, version) pairs, highest semver precedence first.

    Tags without a parseable version are dropped.
    """
    pattern = tag_glob(config)
    found: list[tuple[str, str]] = []
    for tag in tags_by_precedence(vcs.list_tags(pattern), pattern):
        version = tag_version(config, tag)
        if version is not None:
            found.append((tag, version))
    return found


# Version sources


class VersionSource(Protocol):
    """One way of finding a project's current version."""

    name: str

    def read(self) -> tuple[str, str] | None:
        """Return (version, provenance) or None when nothing was found."""


class ManifestSource:
    """First readable configured version file that contains a version."""

    name = "manifest"

    def __init__(self, project_dir: Path, files: Sequence[str], version_path: str) -> None:
        self.project_dir = project_dir
        self.files = files
        self.version_path = version_path

    def read(self) -> tuple[str, str] | None:
        errors: list[str] = []
        for file in self.files:
            path = self.project_dir / file
            if not path.exists():
                continue
            try:
                version = read_version(path, self.version_path)
            except (OSError, ValueError, ConfigError) as e:
                errors.append(f"{file}: {e}")
                continue
            if version is not None:
                return version, f"manifest:{file}"
        if errors:
            raise ValueError("; ".join(errors))
        return None


class GitTagSource:
    """Highest tag matching the project's tag template."""

    name = "git-tag"

    def __init__(self, vcs: Any, config: ResolvedProjectConfig) -> None:
        self.vcs = vcs
        self.config = config

    def read(self) -> tuple[str, str] | None:
        tags = project_tags(self.vcs, self.config)
        if not tags:
            return None
        tag, version = tags[0]
        return version, f"git-tag:{tag}"


class RegistrySource:
    """Latest version the configured registry has published.

    The client is built on first read, so a registry that is never
    consulted is never contacted or validated.
    """

    name = "registry"

    def __init__(self, client_factory: Callable[[], Any] | None, project: str) -> None:
        self.client_factory = client_factory
        self.project = project

    def read(self) -> tuple[str, str] | None:
        if self.client_factory is None:
            return None
        client = self.client_factory()
        try:
            version = client.latest_version(self.project)
        finally:
            client.close()
        if version is None:
            return None
        return version, f"registry:{client.name}"


class InitialSource:
    """Version 0.0.0 for projects that were never released."""

    name = "initial"

    def read(self) -> tuple[str, str] | None:
        return "0.0.0", "initial"


def build_source_chain(
    names: Iterable[SourceName],
    *,
    project_dir: Path,
    config: ResolvedProjectConfig,
    vcs: Any,
    registry_client: Callable[[], Any] | None = None,
) -> list[VersionSource]:
    """Instantiate the configured version sources, in order.

    `registry_client` builds the registry client; it is only called when
    the registry source is read and a registry is configured.
    """
    chain: list[VersionSource] = []
    for name in names:
        if name == "manifest":
            chain.append(ManifestSource(project_dir, config.version_files, config.version_path))
        elif name == "git-tag":
            chain.append(GitTagSource(vcs, config))
        elif name == "registry":
            factory = registry_client if config.registry else None
            chain.append(RegistrySource(factory, config.name))
        elif name == "initial":
            chain.append(InitialSource())
    return chain


def read_current_version(
    project: str, source_chain: Sequence[VersionSource], fallback_chain: Sequence[VersionSource]
) -> tuple[str, str]:
    """Return (version, provenance) from the first source that succeeds.

    Raises:
        UnresolvableVersion: Listing every attempted source and why it failed.
    """
    attempts: list[str] = []
    for chain in (source_chain, fallback_chain):
        for source in chain:
            try:
                found = source.read()
            except (OSError, ValueError, ReleaseError, subprocess.CalledProcessError) as e:
                attempts.append(f"{source.name}: {e}")
                continue
            if found is None:
                attempts.append(f"{source.name}: no version found")
                continue
            version, provenance = found
            if not is_valid_version(version):
                attempts.append(f"{source.name}: '{version}' is not a semantic version")
                continue
            return str(parse_version(version)), provenance
    if not attempts:
        attempts.append("no version sources configured")
    raise UnresolvableVersion("Could not determine current version", project=project, attempts=attempts)


# Resolution


def find_previous_tag(vcs: Any, config: ResolvedProjectConfig, current: str) -> str | None:
    """Tag the commit analysis starts from.

    The tag of the current version when it exists, otherwise the project's
    highest tag, otherwise None (analyse the whole history).
    """
    own = render_tag_name(config, current)
    if vcs.tag_exists(own):
        return own
    tags = project_tags(vcs, config)
    return tags[0][0] if tags else None


def resolve_version(
    project: ProjectInfo,
    config: ResolvedProjectConfig,
    source_chain: Sequence[VersionSource],
    fallback_chain: Sequence[VersionSource] = (),
    *,
    vcs: Any,
    release_as: ReleaseAs | None = None,
    preid: str | None = None,
    explicit_version: str | None = None,
    infer: bool = True,
    known_projects: Iterable[str] = (),
) -> VersionDecision:
    """Decide a project's current and next version.

    Args:
        project: The project being resolved.
        config: Its resolved configuration.
        source_chain: Sources tried in order for the current version.
        fallback_chain: Sources tried when the whole source chain fails.
        vcs: Version control used for tags and commit history.
        release_as: Explicit bump kind; overrides commit inference.
        preid: Prerelease identifier for prerelease bumps.
        explicit_version: Exact next version; overrides release_as.
        infer: If False, no commits are analysed and the bump is none
            unless given explicitly.
        known_projects: All project names, for scope-based commit filtering.

    Returns:
        The VersionDecision; bump "none" means next == current.

    Raises:
        UnresolvableVersion: No source produced a version.
        ConfigError: explicit_version is invalid or lower than current.
        InvalidTagName: The tag template renders an invalid tag.
    """
    current, source = read_current_version(project.name, source_chain, fallback_chain)
    if infer:
        release_as = release_as or config.release_as
    preid = preid or config.preid

    previous_tag: str | None = None
    commits: list[CommitInfo] = []
    if infer or release_as or explicit_version:
        previous_tag = find_previous_tag(vcs, config, current)
        commits = filter_commits_for_project(
            vcs.commits_since(previous_tag, paths=[project.path]),
            project.name,
            known_projects,
        )

    bump: BumpKind
    if explicit_version:
        if not is_valid_version(explicit_version):
            raise ConfigError(
                f"Explicit version '{explicit_version}' is not a semantic version",
                project=project.name,
            )
        next_version = str(parse_version(explicit_version))
        if compare_versions(next_version, current) < 0:
            raise ConfigError(
                f"Explicit version {next_version} is lower than current {current}",
                project=project.name,
            )
        bump = bump_kind_between(current, next_version)
    else:
        if release_as:
            bump = release_as
        elif infer:
            bump = infer_bump(commits)
        else:
            bump = "none"
        next_version = bump_version(current, bump, preid)

    return VersionDecision(
        project=project.name,
        current_version=current,
        next_version=next_version,
        bump=bump,
        source=source,
        tag=render_tag_name(config, next_version),
        previous_tag=previous_tag,
        release_group=config.release_group,
        commits=commits,
    )
