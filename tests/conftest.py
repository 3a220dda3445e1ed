"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
import tomlkit

from mono_release.workspace import Workspace, discover_workspace
from tests._fakes import FakeVcs


@pytest.fixture
def fake_vcs() -> FakeVcs:
    return FakeVcs()


WorkspaceFactory = Callable[..., Workspace]


@pytest.fixture
def make_workspace(tmp_path: Path) -> WorkspaceFactory:
    """Build a uv workspace on disk and discover it.

    Usage:
        make_workspace(
            {"a": {"version": "1.0.0", "deps": ["b"], "config": {...}}},
            config={"relationship": "fixed"},
        )
    """

    def factory(projects: dict[str, dict], config: dict | None = None) -> Workspace:
        root_doc = tomlkit.document()
        root_doc["project"] = {"name": "root", "version": "0.0.0"}
        root_doc["tool"] = {
            "uv": {"workspace": {"members": ["packages/*"]}},
            "mono-release": config or {},
        }
        (tmp_path / "pyproject.toml").write_text(tomlkit.dumps(root_doc))

        for name, entry in projects.items():
            project_dir = tmp_path / "packages" / name
            project_dir.mkdir(parents=True, exist_ok=True)
            doc = tomlkit.document()
            project: dict = {"name": name}
            if entry.get("version") is not None:
                project["version"] = entry["version"]
            project["dependencies"] = [f"{d}>=0" for d in entry.get("deps", [])]
            doc["project"] = project
            if entry.get("config"):
                doc["tool"] = {"mono-release": entry["config"]}
            (project_dir / "pyproject.toml").write_text(tomlkit.dumps(doc))
            for rel, content in entry.get("files", {}).items():
                path = project_dir / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

        return discover_workspace(tmp_path)

    return factory


@pytest.fixture
def tmp_pyproject(tmp_path: Path) -> Path:
    """Create a temporary pyproject.toml file."""
    content = """\
[project]
name = "test-package"
version = "1.0.0"
dependencies = [
    "requests>=2.0",
    "internal-dep>=1.0",
]

[project.optional-dependencies]
dev = ["pytest>=8.0", "another-internal>=0.5"]

[dependency-groups]
test = ["pytest>=8.0", "group-internal>=0.1"]
"""
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(content)
    return pyproject


@pytest.fixture
def sample_toml_doc() -> tomlkit.TOMLDocument:
    """Create a sample TOML document."""
    content = """\
[project]
name = "my-package"
version = "2.0.0"
dependencies = ["click>=8.0", "pydantic>=2.0"]

[project.optional-dependencies]
dev = ["pytest>=8.0"]

[dependency-groups]
test = ["hypothesis>=6.0"]

[tool.uv.workspace]
members = ["packages/*", "libs/*"]

[tool.mono-release]
relationship = "fixed"
exclude = ["internal-*"]
"""
    return tomlkit.parse(content)
