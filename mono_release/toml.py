"""TOML reading and writing utilities.

Uses tomlkit to preserve formatting and comments when modifying pyproject.toml
files, so version bumps produce minimal, reviewable diffs.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import tomlkit
from packaging.utils import canonicalize_name
from tomlkit.exceptions import ParseError

from .errors import ConfigError

TOOL_NAME = "mono-release"


def load_pyproject(path: Path) -> tomlkit.TOMLDocument:
    """Load and parse a pyproject.toml file.

    Returns a TOMLDocument that preserves formatting when modified and saved.

    Raises:
        ConfigError: If the file is not valid TOML.
    """
    try:
        return tomlkit.parse(path.read_text())
    except ParseError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def save_pyproject(path: Path, doc: tomlkit.TOMLDocument) -> None:
    """Save a TOMLDocument back to disk, preserving original formatting.

    The document is written to a sibling temporary file first and then
    renamed over the target, so readers never observe a half-written file.
    """
    atomic_write_text(path, tomlkit.dumps(doc))


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to path through a temporary file in the same directory."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def get_project_name(doc: tomlkit.TOMLDocument, fallback: str) -> str:
    """Extract the canonical package name from [project].name.

    Names are normalized per PEP 503 (lowercase, hyphens instead of
    underscores) for consistent comparison.

    Args:
        doc: Parsed pyproject.toml document.
        fallback: Value to use if name is not specified.
    """
    return canonicalize_name(doc.get("project", {}).get("name", fallback))


def get_project_version(doc: tomlkit.TOMLDocument) -> str | None:
    """Extract version from [project].version, or None if absent."""
    version = doc.get("project", {}).get("version")
    return str(version) if version is not None else None


def dependency_arrays(doc: tomlkit.TOMLDocument) -> Iterator[list]:
    """Yield every dependency list of a pyproject.toml.

    The lists are the live tomlkit arrays, so callers may edit them in place:
    [project].dependencies, each [project].optional-dependencies extra and
    each [dependency-groups] group (PEP 735).
    """
    project = doc.get("project", {})
    candidates = [project.get("dependencies")]
    candidates += list(project.get("optional-dependencies", {}).values())
    candidates += list(doc.get("dependency-groups", {}).values())
    for deps in candidates:
        if isinstance(deps, list):
            yield deps


def get_all_dependency_strings(doc: tomlkit.TOMLDocument) -> list[str]:
    """Collect all PEP 508 dependency strings from a pyproject.toml.

    Include-group tables inside dependency groups are skipped.
    """
    return [str(d) for deps in dependency_arrays(doc) for d in deps if isinstance(d, str)]


def get_workspace_member_globs(doc: tomlkit.TOMLDocument) -> list[str]:
    """Extract workspace member glob patterns from [tool.uv.workspace].

    These patterns (e.g., "packages/*", "libs/*") define which directories
    contain workspace projects.

    Raises:
        ConfigError: If no workspace members are defined.
    """
    members = doc.get("tool", {}).get("uv", {}).get("workspace", {}).get("members")
    if not members:
        raise ConfigError("No [tool.uv.workspace] members defined in root pyproject.toml")
    return [str(m) for m in members]


def get_tool_table(doc: tomlkit.TOMLDocument) -> dict[str, Any]:
    """Return the [tool.mono-release] table as plain Python data ({} if absent)."""
    table = doc.get("tool", {}).get(TOOL_NAME)
    if table is None:
        return {}
    return table.unwrap()
