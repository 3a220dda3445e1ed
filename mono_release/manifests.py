"""Version file reading and writing.

A project's version lives in one or more version files, listed in its
`version-files` setting. The file type decides how the version is located:

- ``pyproject.toml``: ``[project].version`` (internal deps pinned on write)
- ``*.json``: the value at the dotted `version-path` (default ``version``)
- anything else: the whole stripped file content
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .deps import rewrite_pyproject
from .errors import StageIOFailure
from .toml import atomic_write_text, get_project_version, load_pyproject


def _lookup(data: Any, dotted: str) -> Any:
    for key in dotted.split("."):
        if not isinstance(data, dict) or key not in data:
            return None
        data = data[key]
    return data


def _assign(data: dict[str, Any], dotted: str, value: str) -> None:
    *parents, leaf = dotted.split(".")
    for key in parents:
        data = data.setdefault(key, {})
    data[leaf] = value


def read_version(path: Path, version_path: str = "version") -> str | None:
    """Read the version stored in a version file.

    Returns:
        The version string, or None if the file has no version.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file content cannot be parsed.
    """
    if path.name == "pyproject.toml":
        return get_project_version(load_pyproject(path))
    if path.suffix == ".json":
        value = _lookup(json.loads(path.read_text()), version_path)
        return str(value) if value is not None else None
    text = path.read_text().strip()
    return text or None


def write_version(
    path: Path,
    version: str,
    *,
    version_path: str = "version",
    internal_dep_versions: dict[str, str] | None = None,
) -> None:
    """Store a new version in a version file.

    Raises:
        StageIOFailure: If the file cannot be read, parsed or written.
    """
    try:
        if path.name == "pyproject.toml":
            rewrite_pyproject(path, version, internal_dep_versions or {})
        elif path.suffix == ".json":
            data = json.loads(path.read_text())
            _assign(data, version_path, version)
            atomic_write_text(path, json.dumps(data, indent=2) + "\n")
        else:
            atomic_write_text(path, version + "\n")
    except (OSError, ValueError) as e:
        raise StageIOFailure(f"Failed to write version to {path}: {e}", stage="version") from e
