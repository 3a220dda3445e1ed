"""Dependency handling utilities.

Parses PEP 508 dependency strings and pins internal workspace dependencies
to the versions released in the same run.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import tomlkit
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

from .errors import ConfigError
from .toml import dependency_arrays, load_pyproject, save_pyproject


def dep_canonical_name(dep_str: str) -> str:
    """Extract the canonical package name from a PEP 508 dependency string.

    Examples:
        "requests>=2.0" → "requests"
        "My_Package[extra]~=1.0" → "my-package"

    Raises:
        ConfigError: If the string is not a valid requirement.
    """
    try:
        return canonicalize_name(Requirement(dep_str).name)
    except InvalidRequirement as e:
        raise ConfigError(f"Invalid dependency '{dep_str}': {e}") from e


def pin_dep(dep_str: str, version: str) -> str:
    """Replace a dependency's specifier with an exact pin.

    Extras (sorted) and environment markers are kept.

    Examples:
        pin_dep("pkg[b,a]~=1.0", "1.5.0") → "pkg[a,b]==1.5.0"
        pin_dep("pkg; python_version<'3.12'", "1.0.0")
            → 'pkg==1.0.0; python_version < "3.12"'
    """
    req = Requirement(dep_str)
    extras = f"[{','.join(sorted(req.extras))}]" if req.extras else ""
    marker = f"; {req.marker}" if req.marker else ""
    return f"{req.name}{extras}=={version}{marker}"


def pin_internal_deps(doc: tomlkit.TOMLDocument, versions: Mapping[str, str]) -> list[str]:
    """Pin every listed dependency found in `versions`, editing doc in place.

    Args:
        doc: Parsed pyproject.toml.
        versions: Canonical name → version to pin.

    Returns:
        Canonical names that were pinned, in the order they were met.
    """
    pinned: list[str] = []
    for deps in dependency_arrays(doc):
        for i, dep in enumerate(deps):
            if not isinstance(dep, str):
                continue  # include-group table
            name = dep_canonical_name(str(dep))
            if name in versions:
                deps[i] = pin_dep(str(dep), versions[name])
                pinned.append(name)
    return pinned


def rewrite_pyproject(
    pyproject_path: Path,
    new_version: str,
    internal_dep_versions: Mapping[str, str],
) -> None:
    """Set [project].version and pin internal dependencies released with it.

    Formatting and comments are preserved by tomlkit.

    Args:
        pyproject_path: Path to the pyproject.toml file.
        new_version: New version string to set.
        internal_dep_versions: Canonical name → version; only dependencies
            released in this run should be passed.

    Raises:
        ConfigError: If the file has no [project] table.
    """
    doc = load_pyproject(pyproject_path)
    project = doc.get("project")
    if project is None:
        raise ConfigError(f"No [project] table in {pyproject_path}")
    project["version"] = new_version
    if internal_dep_versions:
        pin_internal_deps(doc, internal_dep_versions)
    save_pyproject(pyproject_path, doc)
